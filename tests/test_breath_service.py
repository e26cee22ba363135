"""
Breath session tests: latch/silence detection, sequencing and calibration.
"""
import pytest

from conftest import make_spectrum
from liveness.breath_service import BreathTracker, parse_spectrum
from liveness.errors import InvalidFrameError
from liveness.evaluators import BreathThresholds, SpectrumSnapshot

QUIET = make_spectrum(0.0)
LOUD = make_spectrum(0.01)
SETTLED = make_spectrum(0.002)


def inhale(tracker, start=0):
    """Rising breath, then silence held for the full completion time."""
    tracker.update(QUIET, start)
    tracker.update(LOUD, start + 100)
    tracker.update(SETTLED, start + 200)
    return tracker.update(SETTLED, start + 3200)


class TestBreathDetection:
    def test_initial_view(self):
        view = BreathTracker().view()
        assert view["modality"] == "breath"
        assert view["breath_threshold"] == pytest.approx(0.001)
        assert view["silence_threshold"] == pytest.approx(0.005)
        assert view["is_calibrating"] is False
        assert [t["name"] for t in view["tasks"]] == ["inhale", "exhale"]

    def test_quiet_rise_below_breath_threshold_does_not_progress(self):
        tracker = BreathTracker(thresholds=BreathThresholds(0.012, 0.007))
        tracker.update(SETTLED, 0)
        _, view = tracker.update(SETTLED, 3500)
        assert view["tasks"][0]["progress"] == 0.0
        assert tracker.breath_detected is False

    def test_peak_alone_does_not_progress(self):
        tracker = BreathTracker()
        tracker.update(QUIET, 0)
        _, view = tracker.update(LOUD, 100)
        assert tracker.breath_detected is True
        assert view["is_breathing"] is True
        assert view["tasks"][0]["progress"] == 0.0

    def test_inhale_completes_after_return_to_silence(self):
        tracker = BreathTracker()
        tracker.update(QUIET, 0)
        tracker.update(LOUD, 100)
        _, view = tracker.update(SETTLED, 200)
        assert tracker.sequencer.timer.start_time("inhale") == 200

        _, view = tracker.update(SETTLED, 1700)
        assert view["tasks"][0]["progress"] == pytest.approx(50.0)

        status, view = tracker.update(SETTLED, 3200)
        assert status == "IN_PROGRESS"
        assert view["tasks"][0]["completed"]
        assert view["current_task_index"] == 1

    def test_latch_resets_when_task_advances(self):
        tracker = BreathTracker()
        inhale(tracker)
        assert tracker.breath_detected is False

        _, view = tracker.update(SETTLED, 3300)
        assert view["tasks"][1]["progress"] == 0.0
        assert tracker.sequencer.timer.start_time("exhale") is None

    def test_latch_persists_through_interruption(self):
        tracker = BreathTracker()
        tracker.update(QUIET, 0)
        tracker.update(LOUD, 100)
        tracker.update(SETTLED, 200)
        _, view = tracker.update(make_spectrum(0.006), 1000)
        assert view["tasks"][0]["progress"] == 0.0

        # falling frame is not an inhale trigger, the latch carries over
        tracker.update(SETTLED, 1100)
        assert tracker.sequencer.timer.start_time("inhale") == 1100

    def test_exhale_needs_falling_breath(self):
        tracker = BreathTracker()
        inhale(tracker)

        tracker.update(make_spectrum(0.004), 3300)
        assert tracker.breath_detected is False
        tracker.update(LOUD, 3400)
        assert tracker.breath_detected is False

        tracker.update(make_spectrum(0.004), 3500)
        assert tracker.breath_detected is True
        status, view = tracker.update(make_spectrum(0.004), 6500)
        assert status == "PASSED"
        assert view["current_task_index"] == 2
        assert view["instruction"] == "Liveness PASSED"

    def test_invalid_frame_resets_timer(self):
        tracker = BreathTracker()
        tracker.update(QUIET, 0)
        tracker.update(LOUD, 100)
        tracker.update(SETTLED, 200)
        _, view = tracker.update(SpectrumSnapshot([], 48000), 1000)
        assert view["tasks"][0]["progress"] == 0.0
        assert tracker.sequencer.timer.start_time("inhale") is None
        assert tracker.previous_intensity == pytest.approx(0.002)

    def test_frames_after_completion_ignored(self):
        tracker = BreathTracker()
        inhale(tracker)
        tracker.update(make_spectrum(0.004), 3300)
        tracker.update(make_spectrum(0.003), 3400)
        tracker.update(make_spectrum(0.003), 6400)
        assert tracker.sequencer.is_complete

        status, view = tracker.update(LOUD, 7000)
        assert status == "PASSED"
        assert view["breath_intensity"] == pytest.approx(0.01)
        assert view["current_task_index"] == 2


class TestBreathCalibration:
    def test_calibration_sets_thresholds_from_mean(self):
        tracker = BreathTracker()
        run = tracker.start_calibration(0)
        for now, level in ((100, 0.01), (200, 0.02), (300, 0.03)):
            tracker.update(make_spectrum(level), now)

        assert tracker.finish_calibration(run) is True
        assert tracker.thresholds.breath == pytest.approx(0.024)
        assert tracker.thresholds.silence == pytest.approx(0.014)
        assert tracker.is_calibrating is False

    def test_empty_calibration_keeps_thresholds(self):
        tracker = BreathTracker()
        before = tracker.thresholds
        run = tracker.start_calibration(0)

        assert tracker.finish_calibration(run) is False
        assert tracker.thresholds == before
        assert tracker.is_calibrating is False

    def test_calibration_suspends_task_evaluation(self):
        tracker = BreathTracker()
        tracker.start_calibration(0)
        tracker.update(QUIET, 100)
        tracker.update(LOUD, 200)
        _, view = tracker.update(SETTLED, 300)

        assert view["is_calibrating"] is True
        assert view["instruction"] == "Calibrating, please stay quiet"
        assert tracker.breath_detected is False
        assert tracker.sequencer.timer.start_time("inhale") is None
        assert tracker.previous_intensity == pytest.approx(0.002)

    def test_invalid_frames_not_sampled(self):
        tracker = BreathTracker()
        run = tracker.start_calibration(0)
        tracker.update(None, 100)
        assert tracker.calibrator.buffer == []
        assert tracker.finish_calibration(run) is False

    def test_frame_past_deadline_finishes_run(self):
        tracker = BreathTracker()
        tracker.start_calibration(0)
        tracker.update(make_spectrum(0.01), 1000)
        _, view = tracker.update(make_spectrum(0.01), 5000)

        assert view["is_calibrating"] is False
        assert view["breath_threshold"] == pytest.approx(0.012)
        assert view["silence_threshold"] == pytest.approx(0.007)

    def test_custom_thresholds(self):
        tracker = BreathTracker(thresholds=BreathThresholds(0.1, 0.05))
        assert tracker.view()["breath_threshold"] == 0.1


class TestParseSpectrum:
    def test_spectrum_payload(self):
        snapshot = parse_spectrum({"spectrum": [0.1, 0.2], "sample_rate": 44100})
        assert snapshot.spectrum == [0.1, 0.2]
        assert snapshot.sample_rate == 44100.0

    def test_samples_payload(self):
        snapshot = parse_spectrum({"samples": [0.0] * 1024, "sample_rate": 48000})
        assert len(snapshot.spectrum) == 512

    def test_missing_sample_rate(self):
        with pytest.raises(InvalidFrameError):
            parse_spectrum({"spectrum": [0.1]})

    def test_bad_sample_rate(self):
        with pytest.raises(InvalidFrameError):
            parse_spectrum({"spectrum": [0.1], "sample_rate": 0})

    def test_no_audio_data(self):
        with pytest.raises(InvalidFrameError):
            parse_spectrum({"sample_rate": 48000})

    def test_non_numeric(self):
        with pytest.raises(InvalidFrameError):
            parse_spectrum({"spectrum": ["loud"], "sample_rate": 48000})

    def test_not_an_object(self):
        with pytest.raises(InvalidFrameError):
            parse_spectrum(b"\x00\x01")
