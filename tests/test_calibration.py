"""
Unit tests for breath baseline calibration.
"""
import math

import pytest

from liveness.calibration import Calibrator, derive_thresholds


class TestDeriveThresholds:
    def test_scales_mean(self):
        result = derive_thresholds([0.01, 0.02, 0.03])
        assert result.breath == pytest.approx(0.024)
        assert result.silence == pytest.approx(0.014)

    def test_custom_multipliers(self):
        result = derive_thresholds([2.0, 4.0], breath_multiplier=2.0, silence_multiplier=0.5)
        assert result.breath == pytest.approx(6.0)
        assert result.silence == pytest.approx(1.5)

    def test_empty_buffer_gives_none(self):
        assert derive_thresholds([]) is None

    def test_non_finite_mean_gives_none(self):
        assert derive_thresholds([0.1, math.inf]) is None


class TestCalibrator:
    def test_start_clears_previous_buffer(self):
        cal = Calibrator()
        run = cal.start(0)
        cal.add_sample(0.5)
        cal.finish(run)

        cal.start(10000)
        assert cal.buffer == []

    def test_samples_ignored_when_inactive(self):
        cal = Calibrator()
        cal.add_sample(0.5)
        assert cal.buffer == []

    def test_finish_returns_thresholds_and_deactivates(self):
        cal = Calibrator()
        run = cal.start(0)
        for value in (0.01, 0.02, 0.03):
            cal.add_sample(value)

        result = cal.finish(run)
        assert result.breath == pytest.approx(0.024)
        assert not cal.active
        assert cal.buffer == []

    def test_empty_run_fails_closed(self):
        cal = Calibrator()
        run = cal.start(0)
        assert cal.finish(run) is None
        assert not cal.active

    def test_start_while_active_restarts_run(self):
        cal = Calibrator()
        first = cal.start(0)
        cal.add_sample(0.5)

        second = cal.start(100)
        assert second == first + 1
        assert cal.active
        assert cal.buffer == []
        assert cal.deadline == 100 + cal.window_ms

        assert cal.finish(first) is None
        assert cal.active
        cal.add_sample(0.1)
        assert cal.finish(second).breath == pytest.approx(0.12)

    def test_stale_run_id_is_ignored(self):
        cal = Calibrator()
        first = cal.start(0)
        cal.finish(first)
        second = cal.start(6000)
        cal.add_sample(0.1)

        assert cal.finish(first) is None
        assert cal.active
        assert cal.finish(second) is not None

    def test_deadline(self):
        cal = Calibrator(window_ms=5000)
        assert cal.deadline is None
        cal.start(1000)
        assert cal.deadline == 6000
