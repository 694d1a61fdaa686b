import asyncio

import numpy as np
import pytest

from voicelink.config import MeterConfig
from voicelink.core.level_meter import LevelMeter, normalized_level


def _tap(value: float, bins: int = 128):
    return lambda: np.full(bins, value)


class TestNormalizedLevel:
    def test_mean_over_ceiling(self):
        assert normalized_level(np.full(128, 50.0), 100.0) == pytest.approx(0.5)

    def test_clamped_to_one(self):
        assert normalized_level(np.full(128, 255.0), 100.0) == 1.0

    def test_empty_spectrum(self):
        assert normalized_level(np.zeros(0), 100.0) == 0.0


class TestLevelMeter:
    def test_output_volume_and_talking(self, session):
        meter = LevelMeter(session, output_ceiling=100.0, talking_threshold=0.1)
        meter.attach_output(_tap(30.0))

        reading = meter.tick()

        assert reading.volume == pytest.approx(0.3)
        assert reading.is_talking is True
        assert session.levels is reading

    def test_quiet_output_is_not_talking(self, session):
        meter = LevelMeter(session, output_ceiling=100.0, talking_threshold=0.1)
        meter.attach_output(_tap(5.0))

        assert meter.tick().is_talking is False

    def test_input_level_is_smoothed(self, session):
        """Input level moves 30% of the way toward each new reading."""
        meter = LevelMeter(session, input_ceiling=80.0, input_smoothing=0.3)
        meter.attach_input(_tap(80.0))

        first = meter.tick().input_level
        second = meter.tick().input_level

        assert first == pytest.approx(0.3)
        assert second == pytest.approx(0.3 + 0.7 * 0.3)

    def test_no_taps_reports_silence(self, session):
        meter = LevelMeter(session)

        reading = meter.tick()

        assert reading.volume == 0.0
        assert reading.input_level == 0.0
        assert reading.is_talking is False

    def test_from_config(self, session):
        meter = LevelMeter.from_config(session, MeterConfig(refresh_hz=30.0, input_ceiling=40.0))

        assert meter.interval == pytest.approx(1 / 30)
        assert meter.input_ceiling == 40.0

    @pytest.mark.asyncio
    async def test_runs_until_stopped(self, session):
        meter = LevelMeter(session, refresh_hz=200.0)
        meter.attach_output(_tap(50.0))

        meter.start()
        assert meter.running is True
        await asyncio.sleep(0.02)
        assert session.levels.volume == pytest.approx(0.5)

        await meter.stop()
        assert meter.running is False

    @pytest.mark.asyncio
    async def test_stop_resets_smoothing(self, session):
        meter = LevelMeter(session)
        meter.attach_input(_tap(80.0))
        meter.tick()

        await meter.stop()
        reading = meter.tick()

        assert reading.input_level == 0.0
