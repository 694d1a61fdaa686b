"""
Failure taxonomy and classification.

Every failure a session can hit, whether raised during ``connect`` or reported
by the remote channel mid-session, is reduced to exactly one ``ErrorKind``.
``classify_failure`` is pure and total: it accepts exceptions, strings or
``None`` and always returns the same kind for the same input.

Evaluation order is fixed: permission denied, device not found, platform not
supported, credential missing, network, connection, unknown. A structured
category (``SessionFailure.category`` or a recognised exception type) is
checked first across the exception chain; message text is the fallback.
"""

from __future__ import annotations

import errno
import re
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple

from websockets.exceptions import InvalidStatus, WebSocketException


class ErrorKind(str, Enum):
    MIC_PERMISSION_DENIED = "MIC_PERMISSION_DENIED"
    MIC_NOT_FOUND = "MIC_NOT_FOUND"
    BROWSER_NOT_SUPPORTED = "BROWSER_NOT_SUPPORTED"
    API_KEY_MISSING = "API_KEY_MISSING"
    API_CONNECTION_FAILED = "API_CONNECTION_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    SESSION_ENDED = "SESSION_ENDED"
    UNKNOWN = "UNKNOWN"


class FailureCategory(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    DEVICE_NOT_FOUND = "device_not_found"
    NOT_SUPPORTED = "not_supported"
    CREDENTIAL_MISSING = "credential_missing"
    NETWORK = "network"
    CONNECTION = "connection"


# Priority order; the first matching category wins
_CATEGORY_PRIORITY: Tuple[Tuple[FailureCategory, ErrorKind], ...] = (
    (FailureCategory.PERMISSION_DENIED, ErrorKind.MIC_PERMISSION_DENIED),
    (FailureCategory.DEVICE_NOT_FOUND, ErrorKind.MIC_NOT_FOUND),
    (FailureCategory.NOT_SUPPORTED, ErrorKind.BROWSER_NOT_SUPPORTED),
    (FailureCategory.CREDENTIAL_MISSING, ErrorKind.API_KEY_MISSING),
    (FailureCategory.NETWORK, ErrorKind.NETWORK_ERROR),
    (FailureCategory.CONNECTION, ErrorKind.API_CONNECTION_FAILED),
)

_MESSAGE_PATTERNS: Dict[FailureCategory, re.Pattern] = {
    FailureCategory.PERMISSION_DENIED: re.compile(
        r"permission|not ?allowed|access denied|denied access|\bdenied\b", re.IGNORECASE
    ),
    FailureCategory.DEVICE_NOT_FOUND: re.compile(
        r"(device|microphone)[^.]*not ?found|notfounderror|no (default )?(input |output )?device|"
        r"device unavailable|invalid (input |output )?device|no microphone|requested device",
        re.IGNORECASE,
    ),
    FailureCategory.NOT_SUPPORTED: re.compile(
        r"not ?supported|unsupported|portaudio library|no audio backend|no host api",
        re.IGNORECASE,
    ),
    FailureCategory.CREDENTIAL_MISSING: re.compile(
        r"api[ _-]?key|credential|unauthori[sz]ed|\b401\b|\b403\b", re.IGNORECASE
    ),
    FailureCategory.NETWORK: re.compile(
        r"network|offline|internet|name resolution|getaddrinfo|unreachable|\bdns\b",
        re.IGNORECASE,
    ),
    FailureCategory.CONNECTION: re.compile(
        r"connect|websocket|socket|handshake|closed|timed? ?out|\b100[0-9]\b|\b101[01]\b",
        re.IGNORECASE,
    ),
}

_NETWORK_ERRNOS = {errno.ENETUNREACH, errno.EHOSTUNREACH, errno.ENETDOWN}


class SessionFailure(Exception):
    """Base class for failures raised while acquiring or running a session."""

    category: Optional[FailureCategory] = None

    def __init__(self, message: str = "", category: Optional[FailureCategory] = None):
        super().__init__(message)
        if category is not None:
            self.category = category


class MicPermissionError(SessionFailure):
    category = FailureCategory.PERMISSION_DENIED


class MicNotFoundError(SessionFailure):
    category = FailureCategory.DEVICE_NOT_FOUND


class AudioCapabilityError(SessionFailure):
    category = FailureCategory.NOT_SUPPORTED


class CredentialMissingError(SessionFailure):
    category = FailureCategory.CREDENTIAL_MISSING


class NetworkUnavailableError(SessionFailure):
    category = FailureCategory.NETWORK


class ChannelConnectionError(SessionFailure):
    category = FailureCategory.CONNECTION


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _structured_category(exc: BaseException) -> Optional[FailureCategory]:
    category = getattr(exc, "category", None)
    if isinstance(category, FailureCategory):
        return category
    if isinstance(exc, PermissionError):
        return FailureCategory.PERMISSION_DENIED
    if isinstance(exc, socket.gaierror):
        return FailureCategory.NETWORK
    if isinstance(exc, InvalidStatus):
        status = getattr(getattr(exc, "response", None), "status_code", None)
        if status in (401, 403):
            return FailureCategory.CREDENTIAL_MISSING
        return FailureCategory.CONNECTION
    if isinstance(exc, WebSocketException):
        return FailureCategory.CONNECTION
    if isinstance(exc, OSError) and exc.errno in _NETWORK_ERRNOS:
        return FailureCategory.NETWORK
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return FailureCategory.CONNECTION
    return None


def _kind_for(category: FailureCategory) -> ErrorKind:
    for candidate, kind in _CATEGORY_PRIORITY:
        if candidate is category:
            return kind
    return ErrorKind.UNKNOWN


def _failure_text(failure: object) -> str:
    if isinstance(failure, BaseException):
        return " ".join(f"{type(exc).__name__}: {exc}" for exc in _exception_chain(failure))
    return str(failure)


def classify_failure(failure: object) -> ErrorKind:
    """Map a raw failure to exactly one ``ErrorKind``."""
    if failure is None:
        return ErrorKind.UNKNOWN
    if isinstance(failure, ErrorKind):
        return failure

    if isinstance(failure, BaseException):
        categories = {
            category
            for exc in _exception_chain(failure)
            if (category := _structured_category(exc)) is not None
        }
        for category, kind in _CATEGORY_PRIORITY:
            if category in categories:
                return kind

    text = _failure_text(failure)
    for category, _ in _CATEGORY_PRIORITY:
        if _MESSAGE_PATTERNS[category].search(text):
            return _kind_for(category)
    return ErrorKind.UNKNOWN


class Affordance(str, Enum):
    RETRY = "retry"
    RECHECK_PERMISSION = "recheck_permission"
    DISMISS = "dismiss"


@dataclass(frozen=True)
class ErrorPresentation:
    title: str
    message: str
    action: str
    affordance: Affordance


ERROR_PRESENTATION: Dict[ErrorKind, ErrorPresentation] = {
    ErrorKind.MIC_PERMISSION_DENIED: ErrorPresentation(
        title="Microphone Blocked",
        message="I can't hear you! Please ask a grown-up to allow microphone access.",
        action="Allow Microphone",
        affordance=Affordance.RECHECK_PERMISSION,
    ),
    ErrorKind.MIC_NOT_FOUND: ErrorPresentation(
        title="No Microphone Found",
        message="I can't find your microphone! Please plug one in or ask a grown-up for help.",
        action="Try Again",
        affordance=Affordance.RETRY,
    ),
    ErrorKind.BROWSER_NOT_SUPPORTED: ErrorPresentation(
        title="Audio Not Supported",
        message="This device can't play or record sound! Please ask a grown-up for help.",
        action="OK",
        affordance=Affordance.DISMISS,
    ),
    ErrorKind.API_KEY_MISSING: ErrorPresentation(
        title="Setup Needed",
        message="The app needs to be set up! Please ask a grown-up for help.",
        action="OK",
        affordance=Affordance.DISMISS,
    ),
    ErrorKind.API_CONNECTION_FAILED: ErrorPresentation(
        title="Connection Problem",
        message="I couldn't connect to my brain! Let's try again.",
        action="Try Again",
        affordance=Affordance.RETRY,
    ),
    ErrorKind.NETWORK_ERROR: ErrorPresentation(
        title="No Internet",
        message="I can't reach the internet! Please check your connection.",
        action="Try Again",
        affordance=Affordance.RETRY,
    ),
    ErrorKind.SESSION_ENDED: ErrorPresentation(
        title="Call Ended",
        message="Our call got disconnected. Want to call again?",
        action="Call Again",
        affordance=Affordance.RETRY,
    ),
    ErrorKind.UNKNOWN: ErrorPresentation(
        title="Oops!",
        message="Something went wrong. Let's try again!",
        action="Try Again",
        affordance=Affordance.RETRY,
    ),
}


def presentation_for(kind: Optional[ErrorKind]) -> Optional[ErrorPresentation]:
    if kind is None:
        return None
    return ERROR_PRESENTATION[kind]


def is_retryable(kind: ErrorKind) -> bool:
    """True when the end user can recover by retrying (or re-granting access)."""
    return ERROR_PRESENTATION[kind].affordance is not Affordance.DISMISS
