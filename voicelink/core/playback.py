"""
Gapless playback scheduling for inbound model audio.

Each decoded chunk starts at ``max(cursor, device_time)`` and advances the
cursor by its duration, so chunks play back to back in arrival order as long
as each one arrives before its slot begins. An interruption stops everything
and resets the cursor so the next chunk starts immediately.
"""

from __future__ import annotations

import binascii
import threading
from typing import Optional, Set, Union

import numpy as np
import structlog
from prometheus_client import Counter

from voicelink.audio import decode_base64_pcm16
from voicelink.audio.devices import OutputDevice, PlaybackSource
from voicelink.core.models import SessionState

logger = structlog.get_logger(__name__)

_PLAYBACK_CHUNKS_SCHEDULED = Counter(
    "voicelink_playback_chunks_scheduled_total",
    "Inbound audio chunks scheduled for playback",
)
_PLAYBACK_SOURCES_FLUSHED = Counter(
    "voicelink_playback_sources_flushed_total",
    "Scheduled or playing sources stopped by an interruption or teardown",
)


class PlaybackScheduler:
    """Orders inbound chunks on the output device clock.

    ``schedule`` and ``flush`` run on the event loop; completion callbacks
    arrive on the audio thread and only ever remove from the active set.
    """

    def __init__(self, output: OutputDevice, session: SessionState, sample_rate: int = 24000):
        self._output = output
        self._session = session
        self.sample_rate = sample_rate
        self._cursor = 0.0
        self._active: Set[PlaybackSource] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def cursor(self) -> float:
        return self._cursor

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def enqueue_base64(self, data: Union[str, bytes]) -> Optional[float]:
        """Decode a base64 PCM16 chunk and schedule it.

        Returns the scheduled start time, or ``None`` when the chunk was
        dropped (undecodable, empty, or the scheduler is closed).
        """
        try:
            samples = decode_base64_pcm16(data)
        except (binascii.Error, ValueError) as e:
            logger.warning("Dropping undecodable audio chunk", error=str(e))
            return None
        return self.schedule(samples)

    def schedule(self, samples: np.ndarray) -> Optional[float]:
        if self._closed or not self._session.alive.is_set():
            return None
        if samples.size == 0:
            return None

        source = self._output.create_source(samples)
        start = max(self._cursor, self._output.current_time)
        with self._lock:
            self._active.add(source)
        try:
            source.start(start, self._on_source_ended)
        except Exception:
            with self._lock:
                self._active.discard(source)
            raise
        self._cursor = start + source.duration

        _PLAYBACK_CHUNKS_SCHEDULED.inc()
        logger.debug(
            "Audio chunk scheduled",
            start=round(start, 4),
            duration=round(source.duration, 4),
            cursor=round(self._cursor, 4),
        )
        return start

    def _on_source_ended(self, source: PlaybackSource) -> None:
        with self._lock:
            self._active.discard(source)

    def _stop_all(self) -> int:
        with self._lock:
            sources = list(self._active)
            self._active.clear()
        for source in sources:
            try:
                source.stop()
            except Exception as e:
                logger.debug("Playback source stop failed", error=str(e))
        if sources:
            _PLAYBACK_SOURCES_FLUSHED.inc(len(sources))
        return len(sources)

    def flush(self) -> int:
        """Barge-in: stop every scheduled source and reset the cursor."""
        stopped = self._stop_all()
        self._cursor = 0.0
        logger.info("Playback flushed on interruption", stopped_sources=stopped)
        return stopped

    def close(self) -> None:
        """Teardown: stop and discard everything, refuse further chunks."""
        self._closed = True
        self._stop_all()
        self._cursor = 0.0
