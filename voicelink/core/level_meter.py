"""
Loudness telemetry for the presentation layer.

A fixed-cadence asyncio loop samples the byte-scaled spectrum of the playback
and microphone taps. Output volume drives the talking indicator; the input
level is exponentially smoothed so meters do not jitter. These readings are
display-only and play no part in capture gating.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Callable, Optional

import numpy as np
import structlog

from voicelink.core.models import LevelReading, SessionState

logger = structlog.get_logger(__name__)

SpectrumTap = Callable[[], np.ndarray]


def normalized_level(frequency_data: np.ndarray, ceiling: float) -> float:
    """Mean bin magnitude divided by ``ceiling``, clamped to [0, 1]."""
    if frequency_data is None or len(frequency_data) == 0:
        return 0.0
    return float(min(1.0, max(0.0, float(np.mean(frequency_data)) / ceiling)))


class LevelMeter:
    def __init__(
        self,
        session: SessionState,
        refresh_hz: float = 60.0,
        output_ceiling: float = 100.0,
        input_ceiling: float = 80.0,
        talking_threshold: float = 0.1,
        input_smoothing: float = 0.3,
    ):
        self._session = session
        self.interval = 1.0 / refresh_hz
        self.output_ceiling = output_ceiling
        self.input_ceiling = input_ceiling
        self.talking_threshold = talking_threshold
        self.input_smoothing = input_smoothing
        self._output_tap: Optional[SpectrumTap] = None
        self._input_tap: Optional[SpectrumTap] = None
        self._smoothed_input = 0.0
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, session: SessionState, meter_config) -> "LevelMeter":
        return cls(
            session,
            refresh_hz=meter_config.refresh_hz,
            output_ceiling=meter_config.output_ceiling,
            input_ceiling=meter_config.input_ceiling,
            talking_threshold=meter_config.talking_threshold,
            input_smoothing=meter_config.input_smoothing,
        )

    def attach_output(self, tap: Optional[SpectrumTap]) -> None:
        self._output_tap = tap

    def attach_input(self, tap: Optional[SpectrumTap]) -> None:
        self._input_tap = tap

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> LevelReading:
        """Take one reading and publish it on the session."""
        reading = LevelReading(
            volume=self._session.levels.volume,
            is_talking=self._session.levels.is_talking,
            input_level=self._smoothed_input,
        )

        output_tap = self._output_tap
        if output_tap is not None:
            volume = normalized_level(output_tap(), self.output_ceiling)
            reading.volume = volume
            reading.is_talking = volume > self.talking_threshold

        input_tap = self._input_tap
        if input_tap is not None:
            raw = normalized_level(input_tap(), self.input_ceiling)
            self._smoothed_input = (
                self._smoothed_input * (1.0 - self.input_smoothing) + raw * self.input_smoothing
            )
            reading.input_level = self._smoothed_input

        self._session.levels = reading
        return reading

    async def _run(self) -> None:
        while True:
            try:
                self.tick()
            except Exception as e:
                logger.debug("Level meter tick failed", error=str(e))
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="voicelink-level-meter")

    async def stop(self) -> None:
        task, self._task = self._task, None
        self._output_tap = None
        self._input_tap = None
        self._smoothed_input = 0.0
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task
