"""
Breath baseline calibration: samples ambient noise for a fixed window and
scales its mean into new breath/silence thresholds.
"""

import logging
import math

import numpy as np

from config import Config
from liveness.evaluators import BreathThresholds

logger = logging.getLogger(__name__)


def derive_thresholds(
    samples,
    breath_multiplier=Config.CALIBRATION_BREATH_MULTIPLIER,
    silence_multiplier=Config.CALIBRATION_SILENCE_MULTIPLIER,
):
    """Returns BreathThresholds, or None when the samples give no usable mean."""
    if len(samples) == 0:
        return None
    mean = float(np.mean(samples))
    if not math.isfinite(mean):
        return None
    return BreathThresholds(mean * breath_multiplier, mean * silence_multiplier)


class Calibrator:
    def __init__(
        self,
        window_ms=Config.CALIBRATION_TIME_MS,
        breath_multiplier=Config.CALIBRATION_BREATH_MULTIPLIER,
        silence_multiplier=Config.CALIBRATION_SILENCE_MULTIPLIER,
    ):
        self.window_ms = window_ms
        self.breath_multiplier = breath_multiplier
        self.silence_multiplier = silence_multiplier

        self.buffer = []
        self.active = False
        self.started_at = None
        self.run_id = 0

    @property
    def deadline(self):
        if not self.active:
            return None
        return self.started_at + self.window_ms

    def start(self, now):
        """Begin a run and return its id; a run already in progress is discarded."""
        if self.active:
            logger.info("Calibration run %d restarted", self.run_id)
        self.buffer = []
        self.active = True
        self.started_at = now
        self.run_id += 1
        logger.info("Calibration run %d started", self.run_id)
        return self.run_id

    def add_sample(self, value):
        if self.active:
            self.buffer.append(value)

    def finish(self, run_id):
        """
        End run `run_id` and derive thresholds from its buffer.

        Returns the new BreathThresholds, or None if the run id is stale or the
        buffer could not produce a valid mean (caller keeps its thresholds).
        """
        if not self.active or run_id != self.run_id:
            return None

        samples, self.buffer = self.buffer, []
        self.active = False
        self.started_at = None

        thresholds = derive_thresholds(samples, self.breath_multiplier, self.silence_multiplier)
        if thresholds is None:
            logger.warning(
                "Calibration run %d produced no usable samples (%d collected); keeping thresholds",
                run_id, len(samples),
            )
            return None

        logger.info(
            "Calibration run %d: %d samples -> breath=%.5f silence=%.5f",
            run_id, len(samples), thresholds.breath, thresholds.silence,
        )
        return thresholds
