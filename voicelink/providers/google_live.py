"""
Google Gemini Live API channel.

Thin adapter over the Live API bidirectional WebSocket. It opens the socket,
sends the session setup for the selected character, and reports everything
the server does as channel events through the sink it was built with:

- ``setupComplete``      -> ChannelOpened
- ``serverContent``      -> ChannelMessage(payload)
- clean close            -> ChannelClosed(code, reason)
- abnormal close before setup completes, or a receive error -> ChannelFailed

Audio flow:
- Input: PCM16 LE mono 16 kHz, base64 in ``realtimeInput.mediaChunks``
- Output: PCM16 LE mono 24 kHz, base64 in ``serverContent.modelTurn.parts``
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any, Callable, Dict, Optional

import structlog
import websockets
from prometheus_client import Counter, Gauge
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from voicelink.audio import encode_base64_pcm16
from voicelink.characters import CharacterProfile
from voicelink.config import LiveApiConfig
from voicelink.core.channel import (
    ChannelClosed,
    ChannelEvent,
    ChannelFailed,
    ChannelMessage,
    ChannelOpened,
    EventSink,
    parse_server_content,
)
from voicelink.core.errors import (
    ChannelConnectionError,
    CredentialMissingError,
    ErrorKind,
    classify_failure,
)

logger = structlog.get_logger(__name__)

_LIVE_SESSIONS = Gauge(
    "voicelink_live_active_sessions",
    "Number of open Gemini Live channels",
)
_LIVE_AUDIO_SENT = Counter(
    "voicelink_live_audio_bytes_sent_total",
    "PCM16 bytes sent to the Live API",
)
_LIVE_AUDIO_RECEIVED = Counter(
    "voicelink_live_audio_bytes_received_total",
    "Base64 audio payload bytes received from the Live API",
)

_CLOSE_CODE_MEANINGS = {
    1000: "Normal closure",
    1001: "Going away",
    1002: "Protocol error",
    1003: "Unsupported data",
    1006: "Abnormal closure (no close frame)",
    1007: "Invalid frame payload data",
    1008: "Policy violation (likely API key or permission issue)",
    1009: "Message too big",
    1011: "Internal server error",
}


def _close_details(exc: ConnectionClosed):
    frame = getattr(exc, "rcvd", None)
    if frame is None:
        return None, ""
    return frame.code, frame.reason or ""


class GeminiLiveChannel:
    """One Live API session for one character."""

    def __init__(
        self,
        config: LiveApiConfig,
        character: CharacterProfile,
        sink: EventSink,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.config = config
        self.character = character
        self._sink = sink
        self._connect = connect
        self.websocket = None
        self._receive_task: Optional[asyncio.Task] = None
        self._send_lock = asyncio.Lock()
        self._setup_complete = False
        self._closing = False
        self._counted = False

    @classmethod
    def factory(cls, config: LiveApiConfig) -> Callable[[CharacterProfile, EventSink], "GeminiLiveChannel"]:
        def build(character: CharacterProfile, sink: EventSink) -> GeminiLiveChannel:
            return cls(config, character, sink)
        return build

    @property
    def setup_complete(self) -> bool:
        return self._setup_complete

    def _emit(self, event: ChannelEvent) -> None:
        if self._closing:
            return
        self._sink(event)

    async def open(self) -> None:
        """Connect, start receiving and send the setup message.

        Raises:
            CredentialMissingError: If no API key is configured
            ChannelConnectionError: If the WebSocket cannot be established
        """
        api_key = (self.config.api_key or "").strip()
        if not api_key:
            raise CredentialMissingError(
                "API key missing: set GEMINI_API_KEY to use the Live API"
            )

        logger.info(
            "Opening Gemini Live channel",
            model=self.config.model,
            character=self.character.key,
            voice=self.character.voice_id,
        )
        try:
            websocket = await self._connect(
                f"{self.config.endpoint}?key={api_key}",
                max_size=self.config.max_message_bytes,
            )
        except Exception as exc:
            raise ChannelConnectionError(f"Failed to connect to Gemini Live: {exc}") from exc

        if self._closing:
            # close() ran while the handshake was in flight
            await websocket.close()
            raise ChannelConnectionError("Gemini Live channel closed while opening")
        self.websocket = websocket

        _LIVE_SESSIONS.inc()
        self._counted = True

        # Receive loop first so setupComplete cannot be missed
        self._receive_task = asyncio.create_task(
            self._receive_loop(), name=f"gemini-live-receive-{self.character.key}"
        )
        await self._send_setup()

    def build_setup_message(self) -> Dict[str, Any]:
        return {
            "setup": {
                "model": f"models/{self.config.model}",
                "generationConfig": {
                    "responseModalities": list(self.config.response_modalities),
                    "speechConfig": {
                        "voiceConfig": {
                            "prebuiltVoiceConfig": {"voiceName": self.character.voice_id}
                        }
                    },
                },
                "systemInstruction": {
                    "parts": [{"text": self.character.system_instruction}]
                },
            }
        }

    async def _send_setup(self) -> None:
        await self._send_message(self.build_setup_message())
        logger.debug("Sent Gemini Live setup", voice=self.character.voice_id)

    async def _send_message(self, message: Dict[str, Any]) -> None:
        websocket = self.websocket
        if websocket is None or self._closing:
            raise ChannelConnectionError("Gemini Live channel is not open")
        async with self._send_lock:
            await websocket.send(json.dumps(message))

    async def send_client_turn(self, text: str, role: str = "user", turn_complete: bool = True) -> None:
        await self._send_message(
            {
                "clientContent": {
                    "turns": [{"role": role, "parts": [{"text": text}]}],
                    "turnComplete": turn_complete,
                }
            }
        )

    async def send_realtime_audio(self, pcm16: bytes) -> None:
        rate = self.config.input_sample_rate_hz
        await self._send_message(
            {
                "realtimeInput": {
                    "mediaChunks": [
                        {
                            "mimeType": f"audio/pcm;rate={rate}",
                            "data": encode_base64_pcm16(pcm16),
                        }
                    ]
                }
            }
        )
        _LIVE_AUDIO_SENT.inc(len(pcm16))

    async def _receive_loop(self) -> None:
        websocket = self.websocket
        try:
            async for raw in websocket:
                if isinstance(raw, (bytes, bytearray)):
                    raw = raw.decode("utf-8")
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.error("Failed to decode Gemini Live message", error=str(e))
                    continue
                self._handle_server_message(data)
        except ConnectionClosedOK as exc:
            code, reason = _close_details(exc)
            self._report_close(code, reason)
            return
        except ConnectionClosed as exc:
            code, reason = _close_details(exc)
            logger.warning(
                "Gemini Live WebSocket closed abnormally",
                code=code,
                meaning=_CLOSE_CODE_MEANINGS.get(code, "Unknown"),
                reason=reason,
            )
            if not self._setup_complete:
                message = f"Gemini Live connection closed during setup ({code}): {reason}"
                if classify_failure(reason) is ErrorKind.API_KEY_MISSING:
                    # e.g. 1008 "API key not valid. Please pass a valid API key."
                    self._emit(ChannelFailed(CredentialMissingError(message)))
                else:
                    self._emit(ChannelFailed(ChannelConnectionError(message)))
            else:
                self._emit(ChannelClosed(code, reason))
            return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Gemini Live receive loop error", error=str(exc), exc_info=True)
            self._emit(ChannelFailed(exc))
            return

        self._report_close(getattr(websocket, "close_code", None), getattr(websocket, "close_reason", "") or "")

    def _report_close(self, code: Optional[int], reason: str) -> None:
        logger.info(
            "Gemini Live WebSocket closed",
            code=code,
            meaning=_CLOSE_CODE_MEANINGS.get(code, "Unknown"),
            reason=reason,
        )
        self._emit(ChannelClosed(code, reason))

    def _handle_server_message(self, data: Dict[str, Any]) -> None:
        if "setupComplete" in data:
            self._setup_complete = True
            logger.info("Gemini Live setup complete")
            self._emit(ChannelOpened())
        elif "serverContent" in data:
            content = parse_server_content(data)
            for chunk in content.audio_chunks if content else ():
                _LIVE_AUDIO_RECEIVED.inc(len(chunk))
            self._emit(ChannelMessage(data))
        elif "goAway" in data:
            logger.warning("Gemini Live server sent goAway", detail=data.get("goAway"))
        else:
            logger.debug("Ignoring Gemini Live message", keys=list(data.keys()))

    async def close(self) -> None:
        """Close the socket and stop receiving. Safe to call more than once."""
        if self._closing:
            return
        self._closing = True

        task, self._receive_task = self._receive_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        websocket, self.websocket = self.websocket, None
        if websocket is not None:
            try:
                await websocket.close()
            except Exception as e:
                logger.debug("Gemini Live close raised", error=str(e))

        if self._counted:
            self._counted = False
            _LIVE_SESSIONS.dec()
        self._setup_complete = False
        logger.info("Gemini Live channel closed")
