"""
Remote channel contract.

A channel delivers its lifecycle as one stream of tagged events
(``ChannelOpened | ChannelMessage | ChannelClosed | ChannelFailed``) pushed
into a sink supplied at construction. The controller binds that sink, so the
channel never holds a reference back to the controller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from voicelink.characters import CharacterProfile


@dataclass(frozen=True)
class ChannelOpened:
    pass


@dataclass(frozen=True)
class ChannelMessage:
    payload: Dict[str, Any]


@dataclass(frozen=True)
class ChannelClosed:
    code: Optional[int] = None
    reason: str = ""


@dataclass(frozen=True)
class ChannelFailed:
    error: BaseException


ChannelEvent = Union[ChannelOpened, ChannelMessage, ChannelClosed, ChannelFailed]
EventSink = Callable[[ChannelEvent], None]


class RemoteChannel(Protocol):
    async def open(self) -> None:
        """Connect and send the session setup. ``ChannelOpened`` follows via the sink."""

    async def send_client_turn(self, text: str, role: str = "user", turn_complete: bool = True) -> None: ...

    async def send_realtime_audio(self, pcm16: bytes) -> None: ...

    async def close(self) -> None: ...


ChannelFactory = Callable[[CharacterProfile, EventSink], RemoteChannel]


@dataclass
class ServerContent:
    """The parts of a ``serverContent`` message the session acts on."""

    audio_chunks: List[str] = field(default_factory=list)
    turn_complete: bool = False
    interrupted: bool = False


def parse_server_content(payload: Dict[str, Any]) -> Optional[ServerContent]:
    """Extract audio and turn signals; ``None`` for non-content messages.

    Audio is read from ``serverContent.modelTurn.parts[*].inlineData.data``
    in part order.
    """
    content = payload.get("serverContent")
    if not isinstance(content, dict):
        return None

    chunks: List[str] = []
    model_turn = content.get("modelTurn")
    if not isinstance(model_turn, dict):
        model_turn = {}
    for part in model_turn.get("parts") or []:
        inline = part.get("inlineData") if isinstance(part, dict) else None
        if not isinstance(inline, dict):
            continue
        mime = inline.get("mimeType") or "audio/pcm"
        data = inline.get("data")
        if data and mime.startswith("audio/"):
            chunks.append(data)

    return ServerContent(
        audio_chunks=chunks,
        turn_complete=bool(content.get("turnComplete", False)),
        interrupted=bool(content.get("interrupted", False)),
    )
