from __future__ import annotations
from typing import Optional


class SessionError(Exception):
    """Base class for every failure surfaced to a command handler."""
    pass
class StorageUnavailable(SessionError):
    """The credential store cannot be created, opened or initialized."""
    pass
class ConnectError(SessionError):
    """Establishing the gateway session failed."""
    pass
class SessionExpired(ConnectError):
    """Stored session material was rejected; pairing again is required."""
    pass
class TransportError(ConnectError):
    """Network or handshake failure, or a request the gateway refused."""
    pass
class NotPaired(SessionError):
    """The command needs a paired device identity and there is none."""
    pass
class InvalidRecipient(SessionError):
    """The recipient does not parse into a participant address."""
    pass
class ConfigError(SessionError):
    """A configuration file or environment value is invalid."""
    pass


class PairingFailed(SessionError):
    """The pairing handshake ended without success."""

    def __init__(self, reason: str, *, expired: bool = False, detail: Optional[str] = None):
        self.reason = reason
        self.expired = expired
        self.detail = detail
        message = f"pairing failed: {reason}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class RequestFailed(TransportError):
    """A send or revoke was refused or lost after the connection was up."""
    pass
