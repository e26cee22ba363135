"""
Per-modality feature math and task conditions.

Head rotation works on normalized FaceMesh landmarks; breath works on an
amplitude spectrum. Every condition has the signature
``condition(features, thresholds) -> bool`` so it can be attached to a Task.
"""

import math
from collections import namedtuple

import numpy as np

from config import Config

Point = namedtuple("Point", ["x", "y"])

HeadSnapshot = namedtuple(
    "HeadSnapshot", ["left_eye", "right_eye", "nose_tip", "upper_lip", "lower_lip"]
)
HeadFeatures = namedtuple("HeadFeatures", ["rotation_x", "rotation_pct", "mouth_pct"])
HeadThresholds = namedtuple("HeadThresholds", ["rotation", "mouth"])

SpectrumSnapshot = namedtuple("SpectrumSnapshot", ["spectrum", "sample_rate"])
BreathFeatures = namedtuple("BreathFeatures", ["intensity", "delta"])
BreathThresholds = namedtuple("BreathThresholds", ["breath", "silence"])


def _clamp_pct(value):
    return max(0.0, min(100.0, value))


def _valid_point(point):
    if point is None:
        return False
    x, y = point
    return (
        math.isfinite(x) and math.isfinite(y)
        and 0.0 <= x <= 1.0 and 0.0 <= y <= 1.0
    )


def evaluate(task, features, thresholds) -> bool:
    """Missing or invalid features never satisfy a task."""
    if features is None:
        return False
    return task.is_satisfied(features, thresholds)


# --------------------------------------------------
# HEAD ROTATION

def head_features(
    snapshot,
    max_rotation=Config.MAX_HEAD_ROTATION,
    mouth_distance=Config.MOUTH_OPEN_DISTANCE,
):
    if snapshot is None or not all(_valid_point(p) for p in snapshot):
        return None

    eye_mid_x = (snapshot.left_eye.x + snapshot.right_eye.x) / 2
    rotation_x = snapshot.nose_tip.x - eye_mid_x
    rotation_pct = _clamp_pct(abs(rotation_x / max_rotation) * 100)

    mouth_gap = snapshot.lower_lip.y - snapshot.upper_lip.y
    mouth_pct = _clamp_pct(mouth_gap / mouth_distance * 100)

    return HeadFeatures(rotation_x, rotation_pct, mouth_pct)


def turn_right(features, thresholds):
    return features.rotation_x < 0 and features.rotation_pct > thresholds.rotation


def turn_left(features, thresholds):
    return features.rotation_x > 0 and features.rotation_pct > thresholds.rotation


def open_mouth(features, thresholds):
    return features.mouth_pct > thresholds.mouth


# --------------------------------------------------
# BREATH

def amplitude_spectrum(samples, buffer_size=Config.AUDIO_BUFFER_SIZE):
    """Hann-windowed magnitude spectrum of one audio buffer (buffer_size / 2 bins)."""
    buf = np.zeros(buffer_size, dtype=np.float64)
    data = np.asarray(samples, dtype=np.float64)[:buffer_size]
    buf[: data.size] = data
    magnitudes = np.abs(np.fft.rfft(buf * np.hanning(buffer_size)))
    return magnitudes[: buffer_size // 2]


def band_intensity(
    spectrum,
    sample_rate,
    low_freq=Config.BREATH_FREQ_RANGE[0],
    high_freq=Config.BREATH_FREQ_RANGE[1],
):
    """Mean amplitude of the bins covering [low_freq, high_freq]; None if unusable."""
    spectrum = np.asarray(spectrum, dtype=np.float64)
    n = spectrum.size
    if n == 0 or not sample_rate or sample_rate <= 0:
        return None

    bin_width = sample_rate / n
    low = int(math.floor(low_freq / bin_width))
    high = int(math.ceil(high_freq / bin_width))

    total = float(spectrum[low: min(high, n - 1) + 1].sum())
    intensity = total / (high - low + 1)
    if not math.isfinite(intensity):
        return None
    return intensity


def inhale_detected(features, thresholds):
    return features.delta > 0 and features.intensity > thresholds.breath


def exhale_detected(features, thresholds):
    return features.delta < 0 and features.intensity > thresholds.breath


def breath_settled(features, thresholds):
    return features.intensity < thresholds.silence
