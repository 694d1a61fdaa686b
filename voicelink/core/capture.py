"""
Microphone capture line.

Runs on the PortAudio input thread: every frame is resampled to the Live API
input rate, measured, gated and, when the full transmission predicate holds,
encoded as PCM16 and handed to a non-blocking send. The predicate is
re-evaluated per frame from the shared session flags; nothing is cached.
"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import structlog
from prometheus_client import Counter

from voicelink.audio import float_to_pcm16le, peak_amplitude, resample_linear
from voicelink.core.models import SessionState

logger = structlog.get_logger(__name__)

_CAPTURE_FRAMES = Counter(
    "voicelink_capture_frames_total",
    "Microphone frames by outcome",
    labelnames=("outcome",),
)


class AudioCaptureLine:
    def __init__(
        self,
        session: SessionState,
        send: Callable[[bytes], None],
        native_rate: int,
        target_rate: int = 16000,
        noise_gate_threshold: float = 0.025,
        log_every_n_frames: int = 50,
    ):
        self._session = session
        self._send = send
        self.native_rate = native_rate
        self.target_rate = target_rate
        self.noise_gate_threshold = noise_gate_threshold
        self._log_every = log_every_n_frames
        self.frames_sent = 0

    def should_transmit(self, peak: float) -> bool:
        """connected ∧ greeting open ∧ not muted ∧ peak ≥ threshold."""
        return self._session.transmission_allowed() and peak >= self.noise_gate_threshold

    def _gate_reason(self, peak: float) -> Optional[str]:
        session = self._session
        if not session.alive.is_set() or not session.is_connected:
            return "inactive"
        if not session.greeting_open.is_set():
            return "greeting"
        if session.muted.is_set():
            return "muted"
        if peak < self.noise_gate_threshold:
            return "noise_gate"
        return None

    def on_frame(self, samples: np.ndarray) -> bool:
        """Process one microphone frame. Returns True if it was sent."""
        if not self._session.alive.is_set():
            return False

        resampled = resample_linear(samples, self.native_rate, self.target_rate)
        peak = peak_amplitude(resampled)

        reason = self._gate_reason(peak)
        if reason is not None:
            _CAPTURE_FRAMES.labels(outcome=reason).inc()
            return False

        pcm = float_to_pcm16le(resampled)
        try:
            self._send(pcm)
        except Exception as e:
            # Never let a send failure reach the audio thread
            logger.warning("Dropping capture frame; send failed", error=str(e))
            _CAPTURE_FRAMES.labels(outcome="send_failed").inc()
            return False

        self.frames_sent += 1
        _CAPTURE_FRAMES.labels(outcome="sent").inc()
        if self.frames_sent % self._log_every == 0:
            logger.debug(
                "Sending audio frame",
                frame_number=self.frames_sent,
                peak=round(peak, 4),
                session_id=self._session.session_id,
            )
        return True
