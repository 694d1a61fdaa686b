"""
Session state shared by the controller and the audio components.

The controller owns one ``SessionState`` and hands the same object to the
capture line, the playback scheduler and the level meter. Flags read from the
PortAudio threads are ``AtomicFlag`` instances: reads never take a lock.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from voicelink.characters import CharacterProfile
from voicelink.core.errors import ErrorKind


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


class AtomicFlag:
    """Boolean flag with lock-free reads.

    A single attribute store is atomic under the interpreter lock, so ``set``,
    ``clear`` and ``is_set`` need no locking. ``toggle`` is a read-modify-write
    and serializes writers only.
    """

    __slots__ = ("_value", "_write_lock")

    def __init__(self, initial: bool = False):
        self._value = bool(initial)
        self._write_lock = threading.Lock()

    def is_set(self) -> bool:
        return self._value

    def set(self) -> None:
        self._value = True

    def clear(self) -> None:
        self._value = False

    def toggle(self) -> bool:
        with self._write_lock:
            self._value = not self._value
            return self._value

    def __bool__(self) -> bool:
        return self._value

    def __repr__(self) -> str:
        return f"AtomicFlag({self._value})"


class OneShotLatch(AtomicFlag):
    """Flag that can only move from unset to set.

    ``trip`` returns True only for the call that actually set it. ``clear`` is
    reserved for session destruction.
    """

    __slots__ = ()

    def trip(self) -> bool:
        if self._value:
            return False
        with self._write_lock:
            if self._value:
                return False
            self._value = True
            return True

    def toggle(self) -> bool:
        raise TypeError("OneShotLatch cannot be toggled")


@dataclass
class LevelReading:
    volume: float = 0.0
    is_talking: bool = False
    input_level: float = 0.0


class SessionState:
    """Mutable per-controller session record."""

    def __init__(self, character: CharacterProfile):
        self.character = character
        self.state = ConnectionState.DISCONNECTED
        self.error_kind: Optional[ErrorKind] = None
        self.session_id: Optional[str] = None
        self.muted = AtomicFlag()
        self.greeting_open = OneShotLatch()
        # Cleared first during teardown; every device callback checks it on entry
        self.alive = AtomicFlag()
        self.levels = LevelReading()

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def transmission_allowed(self) -> bool:
        """Session-side half of the capture predicate (amplitude excluded)."""
        return (
            self.alive.is_set()
            and self.state is ConnectionState.CONNECTED
            and self.greeting_open.is_set()
            and not self.muted.is_set()
        )

    def reset(self) -> None:
        """Return every per-session field to its initial value.

        ``state`` and ``error_kind`` are left to the caller, which decides
        between DISCONNECTED and ERROR.
        """
        self.alive.clear()
        self.muted.clear()
        self.greeting_open.clear()
        self.session_id = None
        self.levels = LevelReading()
