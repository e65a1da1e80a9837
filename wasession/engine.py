from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from wasession.core.EventTypes import InboundEvent
from wasession.shared.utils import ParticipantAddress
from wasession.state import DeviceIdentity

EventCallback = Callable[[InboundEvent], Awaitable[None]]


class ProtocolEngine(ABC):
    """
    The protocol/encryption engine that actually talks to the messaging
    service. The session layer only drives it through these calls and the
    single event callback.

    connect() contract:
    - paired identity accepted: returns normally
    - paired identity rejected: raises SessionExpired
    - identity None: starts pairing with fresh session material and returns;
      pairing progress arrives through the event callback
    - anything else: raises TransportError
    """

    @abstractmethod
    def set_event_handler(self, handler: EventCallback) -> None:
        """Register the one callback that receives every inbound event in order."""

    @abstractmethod
    async def connect(self, identity: Optional[DeviceIdentity]) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Release network resources. Must be safe to call repeatedly."""

    @abstractmethod
    async def send_text(self, address: ParticipantAddress, body: str) -> str:
        """Send a text message and return the id the remote side assigned."""

    @abstractmethod
    async def revoke(self) -> None:
        """Ask the remote side to unlink this device. Raises TransportError on refusal."""
