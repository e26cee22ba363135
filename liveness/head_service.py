import logging

import cv2
import numpy as np

from config import Config
from liveness.errors import CaptureUnavailableError, InvalidFrameError
from liveness.evaluators import (
    HeadSnapshot,
    HeadThresholds,
    Point,
    evaluate,
    head_features,
    open_mouth,
    turn_left,
    turn_right,
)
from liveness.task_engine import Task, TaskSequencer

logger = logging.getLogger(__name__)

LANDMARK_FIELDS = HeadSnapshot._fields


class HeadRotationTracker:
    """
    Streaming head-rotation liveness:
      turn_right -> user turns head RIGHT (held 3s)
      turn_left  -> then turns head LEFT (held 3s)
      open_mouth -> then opens mouth wide (held 3s)

    update(snapshot, now_ms) returns:
      ("IN_PROGRESS", view) or ("PASSED", view)
    finalize() returns:
      ("PASSED", meta) or ("FAILED", meta)
    """

    modality = "head"

    TASKS = (
        ("turn_right", "Turn your head to the right", turn_right),
        ("turn_left", "Turn your head to the left", turn_left),
        ("open_mouth", "Open your mouth wide", open_mouth),
    )

    def __init__(self, thresholds=None, completion_ms=Config.TASK_COMPLETION_TIME_MS):
        self.thresholds = thresholds or HeadThresholds(
            Config.HEAD_TURN_THRESHOLD_PERCENTAGE,
            Config.MOUTH_OPEN_THRESHOLD_PERCENTAGE,
        )
        self.sequencer = TaskSequencer(
            [Task(name, label, condition) for name, label, condition in self.TASKS],
            completion_ms,
        )

        # live display values
        self.face_detected = False
        self.left_rotation = 0.0
        self.right_rotation = 0.0
        self.mouth_openness = 0.0

    @property
    def current_action(self):
        task = self.sequencer.active_task
        return task.name if task else None

    @property
    def status(self):
        return "PASSED" if self.sequencer.is_complete else "IN_PROGRESS"

    def update(self, snapshot, now):
        features = head_features(snapshot)

        self.face_detected = features is not None
        if features is None:
            self.left_rotation = self.right_rotation = self.mouth_openness = 0.0
        else:
            self.left_rotation = features.rotation_pct if features.rotation_x > 0 else 0.0
            self.right_rotation = features.rotation_pct if features.rotation_x < 0 else 0.0
            self.mouth_openness = features.mouth_pct

        task = self.sequencer.active_task
        if task is not None:
            self.sequencer.tick(task.name, evaluate(task, features, self.thresholds), now)

        return self.status, self.view()

    def view(self):
        task = self.sequencer.active_task
        return {
            "status": self.status,
            "modality": self.modality,
            "current_task_index": self.sequencer.index,
            "instruction": task.label if task else "Liveness PASSED",
            "tasks": self.sequencer.as_dicts(),
            "face_detected": self.face_detected,
            "left_rotation": self.left_rotation,
            "right_rotation": self.right_rotation,
            "mouth_openness": self.mouth_openness,
        }

    def finalize(self):
        meta = {
            "pending_action": self.current_action,
            "tasks": self.sequencer.as_dicts(),
        }
        if self.sequencer.is_complete:
            return "PASSED", meta
        return "FAILED", meta


def parse_landmarks(payload):
    """
    Build a HeadSnapshot from a client-side landmark payload:
      {"left_eye": [x, y], "right_eye": {"x": .., "y": ..}, ...}
    An explicit null means no face was found.
    """
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise InvalidFrameError("landmarks must be an object")

    points = []
    for field in LANDMARK_FIELDS:
        raw = payload.get(field)
        try:
            if isinstance(raw, dict):
                point = Point(float(raw["x"]), float(raw["y"]))
            else:
                x, y = raw
                point = Point(float(x), float(y))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidFrameError(f"bad landmark {field!r}: {raw!r}") from e
        points.append(point)
    return HeadSnapshot(*points)


def decode_jpeg_to_bgr(jpeg_bytes: bytes):
    arr = np.frombuffer(jpeg_bytes, dtype=np.uint8)
    return cv2.imdecode(arr, cv2.IMREAD_COLOR)


# =========================================================

class LivenessService:
    """Loads MediaPipe FaceMesh once and turns camera frames into head snapshots."""

    def __init__(self, mirror=Config.MIRROR_FRAMES):
        self.mirror = mirror
        self._face_mesh = None

    @property
    def face_mesh(self):
        if self._face_mesh is None:
            try:
                import mediapipe as mp

                self._face_mesh = mp.solutions.face_mesh.FaceMesh(
                    static_image_mode=False,
                    max_num_faces=1,
                    refine_landmarks=True,
                    min_detection_confidence=0.5,
                    min_tracking_confidence=0.5,
                )
            except (ImportError, AttributeError, RuntimeError) as e:
                logger.error("FaceMesh could not be loaded: %s", e)
                raise CaptureUnavailableError("landmark model unavailable") from e
            logger.info("FaceMesh loaded")
        return self._face_mesh

    def extract(self, frame_bgr):
        """Returns a HeadSnapshot, or None when no face is visible."""
        if self.mirror:
            frame_bgr = cv2.flip(frame_bgr, 1)

        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        res = self.face_mesh.process(rgb)
        if not res.multi_face_landmarks:
            return None

        lm = res.multi_face_landmarks[0].landmark
        return HeadSnapshot(
            left_eye=Point(lm[Config.LEFT_EYE_INDEX].x, lm[Config.LEFT_EYE_INDEX].y),
            right_eye=Point(lm[Config.RIGHT_EYE_INDEX].x, lm[Config.RIGHT_EYE_INDEX].y),
            nose_tip=Point(lm[Config.NOSE_TIP_INDEX].x, lm[Config.NOSE_TIP_INDEX].y),
            upper_lip=Point(lm[Config.UPPER_LIP_INDEX].x, lm[Config.UPPER_LIP_INDEX].y),
            lower_lip=Point(lm[Config.LOWER_LIP_INDEX].x, lm[Config.LOWER_LIP_INDEX].y),
        )

    def snapshot_from_jpeg(self, jpeg_bytes):
        if isinstance(jpeg_bytes, bytearray):
            jpeg_bytes = bytes(jpeg_bytes)
        frame = decode_jpeg_to_bgr(jpeg_bytes) if jpeg_bytes else None
        if frame is None:
            raise InvalidFrameError("bad_frame")
        return self.extract(frame)
