import logging

from config import Config

logger = logging.getLogger(__name__)


def progress_for(elapsed_ms, completion_ms=Config.TASK_COMPLETION_TIME_MS):
    """Map a hold time onto a 0-100 percentage, saturating at 100."""
    if completion_ms <= 0:
        raise ValueError(f"completion_ms must be positive, got {completion_ms}")
    return max(0.0, min(elapsed_ms / completion_ms * 100.0, 100.0))


class Task:
    """One liveness challenge, e.g. "turn head right"."""

    def __init__(self, name, label, condition, position=0):
        self.name = name
        self.label = label
        self.condition = condition
        self.position = position
        self.completed = False
        self.progress = 0.0

    def is_satisfied(self, features, thresholds) -> bool:
        return bool(self.condition(features, thresholds))

    def as_dict(self):
        return {
            "name": self.name,
            "label": self.label,
            "completed": self.completed,
            "progress": 100.0 if self.completed else self.progress,
        }

    def __repr__(self):
        return f"Task({self.name!r}, completed={self.completed}, progress={self.progress:.1f})"


class HoldTimer:
    """
    Tracks when each task's condition last became continuously true.

    tick(name, satisfied, now) returns:
      None  -> condition false, start time cleared
      0     -> first true observation, start time stored
      ms    -> time since the current true run began
    """

    def __init__(self):
        self._starts = {}

    def tick(self, task_name, satisfied, now):
        if not satisfied:
            self._starts.pop(task_name, None)
            return None

        start = self._starts.get(task_name)
        if start is None:
            self._starts[task_name] = now
            return 0
        return now - start

    def start_time(self, task_name):
        return self._starts.get(task_name)

    def clear(self, task_name):
        self._starts.pop(task_name, None)


class TaskSequencer:
    """
    Ordered task list with a single active index.

    Index runs 0..N where N == len(tasks) is the terminal "all complete" state.
    Only the active task may accumulate hold time; it advances the index by
    exactly one when its progress reaches 100.
    """

    def __init__(self, tasks, completion_ms=Config.TASK_COMPLETION_TIME_MS):
        if completion_ms <= 0:
            raise ValueError(f"completion_ms must be positive, got {completion_ms}")
        self.tasks = list(tasks)
        for position, task in enumerate(self.tasks):
            task.position = position
        self.completion_ms = completion_ms
        self.index = 0
        self.timer = HoldTimer()

    @property
    def active_task(self):
        if self.is_complete:
            return None
        return self.tasks[self.index]

    @property
    def is_complete(self) -> bool:
        return self.index >= len(self.tasks)

    def tick(self, task_name, satisfied, now):
        """Feed one observation for `task_name`; returns its progress, or None if ignored."""
        task = self.active_task
        if task is None or task.name != task_name:
            return None

        elapsed = self.timer.tick(task_name, satisfied, now)
        if elapsed is None:
            task.progress = 0.0
            return task.progress

        task.progress = progress_for(elapsed, self.completion_ms)
        logger.debug("task %s held %sms (%.1f%%)", task_name, elapsed, task.progress)

        if task.progress >= 100.0:
            self._complete(task)
        return task.progress

    def _complete(self, task):
        task.completed = True
        task.progress = 100.0
        self.timer.clear(task.name)
        self.index += 1
        logger.info("Task %s completed (%d/%d)", task.name, self.index, len(self.tasks))

    def as_dicts(self):
        return [task.as_dict() for task in self.tasks]
