import logging
import math

from config import Config
from liveness.calibration import Calibrator
from liveness.errors import InvalidFrameError
from liveness.evaluators import (
    BreathFeatures,
    BreathThresholds,
    SpectrumSnapshot,
    amplitude_spectrum,
    band_intensity,
    breath_settled,
    evaluate,
    exhale_detected,
    inhale_detected,
)
from liveness.task_engine import Task, TaskSequencer

logger = logging.getLogger(__name__)


class BreathTracker:
    """
    Streaming breath liveness:
      inhale -> rising breath noise, then silence held for 3s
      exhale -> falling breath noise, then silence held for 3s

    A breath is "detected" when the band intensity crosses the breath threshold
    in the task's direction; the task only holds while the intensity has since
    dropped below the silence threshold. The detected latch lasts until the
    sequencer moves to the next task.

    While calibrating, samples go to the calibrator and no task is evaluated.
    """

    modality = "breath"

    TASKS = (
        ("inhale", "Take a deep breath and hold for 3 seconds", inhale_detected),
        ("exhale", "Exhale and hold for 3 seconds", exhale_detected),
    )

    def __init__(
        self,
        thresholds=None,
        completion_ms=Config.TASK_COMPLETION_TIME_MS,
        calibrator=None,
        band=Config.BREATH_FREQ_RANGE,
    ):
        self.thresholds = thresholds or BreathThresholds(
            Config.INITIAL_BREATH_THRESHOLD,
            Config.INITIAL_SILENCE_THRESHOLD,
        )
        self.sequencer = TaskSequencer(
            [Task(name, label, condition) for name, label, condition in self.TASKS],
            completion_ms,
        )
        self.calibrator = calibrator or Calibrator()
        self.band = band

        self.previous_intensity = 0.0
        self.breath_detected = False

        # live display values
        self.breath_intensity = 0.0
        self.is_breathing = False

    @property
    def current_action(self):
        task = self.sequencer.active_task
        return task.name if task else None

    @property
    def status(self):
        return "PASSED" if self.sequencer.is_complete else "IN_PROGRESS"

    @property
    def is_calibrating(self):
        return self.calibrator.active

    # --------------------------------------------------

    def start_calibration(self, now):
        """Returns the id of the new calibration run."""
        return self.calibrator.start(now)

    def finish_calibration(self, run_id):
        """Adopt thresholds from run `run_id`; False leaves the old ones in place."""
        thresholds = self.calibrator.finish(run_id)
        if thresholds is None:
            return False
        self.thresholds = thresholds
        return True

    # --------------------------------------------------

    def update(self, snapshot, now):
        deadline = self.calibrator.deadline
        if deadline is not None and now >= deadline:
            self.finish_calibration(self.calibrator.run_id)

        intensity = None
        if snapshot is not None:
            intensity = band_intensity(snapshot.spectrum, snapshot.sample_rate, *self.band)

        if intensity is None:
            self.is_breathing = False
            task = self.sequencer.active_task
            if task is not None and not self.is_calibrating:
                self.sequencer.tick(task.name, False, now)
            return self.status, self.view()

        self.breath_intensity = intensity
        self.is_breathing = intensity > self.thresholds.breath

        if self.is_calibrating:
            self.calibrator.add_sample(intensity)
        elif not self.sequencer.is_complete:
            self._evaluate(intensity, now)

        self.previous_intensity = intensity
        return self.status, self.view()

    def _evaluate(self, intensity, now):
        features = BreathFeatures(intensity, intensity - self.previous_intensity)
        task = self.sequencer.active_task

        if evaluate(task, features, self.thresholds):
            self.breath_detected = True

        satisfied = self.breath_detected and breath_settled(features, self.thresholds)

        index = self.sequencer.index
        self.sequencer.tick(task.name, satisfied, now)
        if self.sequencer.index != index:
            self.breath_detected = False

    # --------------------------------------------------

    def view(self):
        task = self.sequencer.active_task
        if self.is_calibrating:
            instruction = "Calibrating, please stay quiet"
        else:
            instruction = task.label if task else "Liveness PASSED"
        return {
            "status": self.status,
            "modality": self.modality,
            "current_task_index": self.sequencer.index,
            "instruction": instruction,
            "tasks": self.sequencer.as_dicts(),
            "breath_intensity": self.breath_intensity,
            "is_breathing": self.is_breathing,
            "breath_threshold": self.thresholds.breath,
            "silence_threshold": self.thresholds.silence,
            "is_calibrating": self.is_calibrating,
        }

    def finalize(self):
        meta = {
            "pending_action": self.current_action,
            "tasks": self.sequencer.as_dicts(),
        }
        if self.sequencer.is_complete:
            return "PASSED", meta
        return "FAILED", meta


def parse_spectrum(payload, buffer_size=Config.AUDIO_BUFFER_SIZE):
    """
    Build a SpectrumSnapshot from a frame payload carrying either an amplitude
    spectrum or a raw PCM buffer:
      {"spectrum": [...], "sample_rate": 48000}
      {"samples": [...], "sample_rate": 48000}
    """
    if not isinstance(payload, dict):
        raise InvalidFrameError("breath frame must be an object")

    try:
        sample_rate = float(payload["sample_rate"])
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidFrameError("missing or bad sample_rate") from e
    if not math.isfinite(sample_rate) or sample_rate <= 0:
        raise InvalidFrameError(f"bad sample_rate: {sample_rate}")

    try:
        if payload.get("spectrum") is not None:
            spectrum = [float(v) for v in payload["spectrum"]]
        elif payload.get("samples") is not None:
            spectrum = amplitude_spectrum(payload["samples"], buffer_size)
        else:
            raise InvalidFrameError("frame has neither spectrum nor samples")
    except (TypeError, ValueError) as e:
        raise InvalidFrameError("non-numeric audio data") from e

    return SpectrumSnapshot(spectrum, sample_rate)
