from liveness.evaluators import HeadSnapshot, Point, SpectrumSnapshot

SAMPLE_RATE = 48000
SPECTRUM_BINS = 512


def make_head(nose_x=0.5, eye_mid_x=0.5, lip_gap=0.0):
    """Synthetic landmarks: eyes 0.2 apart around eye_mid_x, lips at y=0.6."""
    return HeadSnapshot(
        left_eye=Point(eye_mid_x - 0.1, 0.4),
        right_eye=Point(eye_mid_x + 0.1, 0.4),
        nose_tip=Point(nose_x, 0.5),
        upper_lip=Point(0.5, 0.6),
        lower_lip=Point(0.5, 0.6 + lip_gap),
    )


def make_spectrum(level):
    """Flat spectrum whose 50-3000 Hz band intensity equals `level`."""
    return SpectrumSnapshot([level] * SPECTRUM_BINS, SAMPLE_RATE)
