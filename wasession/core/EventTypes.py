from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Set, Union

if TYPE_CHECKING:
    from wasession.state import DeviceIdentity


class FrameType(str, Enum):
    """Gateway wire frame types."""

    # Client -> gateway
    HELLO = "HELLO"                      # Open session; jid null asks for pairing
    SEND_TEXT = "SEND_TEXT"              # Plain text message to one address
    LOGOUT = "LOGOUT"                    # Revoke this device on the remote side

    # Gateway -> client
    AUTH_OK = "AUTH_OK"                  # Session material accepted
    AUTH_REJECTED = "AUTH_REJECTED"      # Session material expired or revoked
    PAIR_CODE = "PAIR_CODE"              # Fresh pairing ref, rotated periodically
    PAIR_SUCCESS = "PAIR_SUCCESS"        # Code scanned and approved
    PAIR_ERROR = "PAIR_ERROR"            # Terminal pairing failure or timeout
    MESSAGE = "MESSAGE"                  # Incoming chat message
    RESULT = "RESULT"                    # Response to SEND_TEXT / LOGOUT (payload.ref)
    LOGGED_OUT = "LOGGED_OUT"            # Remote side revoked this device
    ERROR = "ERROR"                      # Gateway-level error

    @classmethod
    def from_string(cls, value: str) -> FrameType:
        """Convert string to FrameType enum, raise ValueError if unknown."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown frame type: {value}")

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if string is a valid frame type."""
        try:
            cls(value)
            return True
        except ValueError:
            return False


class EventKind(str, Enum):
    """Routing key for the EventDispatcher."""
    PAIRING = "pairing"
    MESSAGE = "message"
    CONNECTION = "connection"


# Pairing failure event names as reported by the remote side
PAIR_TIMEOUT = "timeout"
PAIR_ERROR = "error"
PAIR_CLIENT_OUTDATED = "err-client-outdated"
PAIR_SCANNED_WITHOUT_MULTIDEVICE = "err-scanned-without-multidevice"
PAIR_UNEXPECTED_STATE = "err-unexpected-state"

PAIR_FAILURE_EVENTS: Set[str] = {
    PAIR_TIMEOUT,
    PAIR_ERROR,
    PAIR_CLIENT_OUTDATED,
    PAIR_SCANNED_WITHOUT_MULTIDEVICE,
    PAIR_UNEXPECTED_STATE,
}


# ========================================
#           INBOUND EVENTS
# ========================================

@dataclass(frozen=True)
class PairingCode:
    code: str
    kind = EventKind.PAIRING


@dataclass(frozen=True)
class PairingSuccess:
    identity: "DeviceIdentity"
    kind = EventKind.PAIRING

    @property
    def jid(self) -> Optional[str]:
        return self.identity.jid


@dataclass(frozen=True)
class PairingFailure:
    reason: str
    detail: Optional[str] = None
    kind = EventKind.PAIRING

    @property
    def expired(self) -> bool:
        return self.reason == PAIR_TIMEOUT


@dataclass(frozen=True)
class IncomingMessage:
    message_id: str
    sender: str
    chat: str
    text: str
    ts: int
    kind = EventKind.MESSAGE


@dataclass(frozen=True)
class Connected:
    """Remote side confirmed the session is fully authenticated."""
    jid: str
    kind = EventKind.CONNECTION


@dataclass(frozen=True)
class Disconnected:
    """The transport stream ended without a local disconnect()."""
    reason: str = "stream closed"
    kind = EventKind.CONNECTION


@dataclass(frozen=True)
class LoggedOut:
    """Remote side revoked this device."""
    reason: str = "logged out"
    kind = EventKind.CONNECTION


PairingEvent = Union[PairingCode, PairingSuccess, PairingFailure]
ConnectionEvent = Union[Connected, Disconnected, LoggedOut]
InboundEvent = Union[PairingCode, PairingSuccess, PairingFailure, IncomingMessage,
                     Connected, Disconnected, LoggedOut]
