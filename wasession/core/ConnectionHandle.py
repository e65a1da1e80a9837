from __future__ import annotations

import asyncio
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from wasession.core.EventDispatcher import EventDispatcher
from wasession.core.EventTypes import (
    Connected,
    Disconnected,
    EventKind,
    LoggedOut,
    PairingEvent,
    PairingSuccess,
    ConnectionEvent,
)
from wasession.errors import SessionExpired, TransportError
from wasession.shared.log import get_logger
from wasession.state import DeviceIdentity, OutboundMessage

if TYPE_CHECKING:
    from wasession.engine import ProtocolEngine

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED_UNAUTHENTICATED = "connected-unauthenticated"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class PairingSession:
    """
    Ordered stream of pairing events for one login attempt, with a deadline.

    next_event() returns None once the stream is closed and raises
    asyncio.TimeoutError once the deadline has elapsed.
    """

    def __init__(self, timeout: float, on_close: Optional[Callable[["PairingSession"], None]] = None) -> None:
        self.deadline = asyncio.get_running_loop().time() + timeout
        self.closed = False
        self._events: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close

    def push(self, event: PairingEvent) -> None:
        if self.closed:
            logger.debug(f"Pairing session closed; dropping {type(event).__name__}")
            return
        self._events.put_nowait(event)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._events.put_nowait(None)
        if self._on_close is not None:
            self._on_close(self)

    async def next_event(self) -> Optional[PairingEvent]:
        remaining = self.deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise asyncio.TimeoutError()
        return await asyncio.wait_for(self._events.get(), timeout=remaining)


class ConnectionHandle:
    """
    The single live (or connecting) gateway session for one device identity.

    Use as ``async with ConnectionHandle(...) as handle:`` so disconnect()
    runs on every exit path.
    """

    def __init__(self, engine: "ProtocolEngine", identity: Optional[DeviceIdentity] = None,
                 dispatcher: Optional[EventDispatcher] = None) -> None:
        self.engine = engine
        self.identity = identity
        self.dispatcher = dispatcher or EventDispatcher()
        self.dispatcher.on(EventKind.PAIRING, self._on_pairing_event)
        self.dispatcher.on(EventKind.CONNECTION, self._on_connection_event)
        self.engine.set_event_handler(self.dispatcher.dispatch)
        self._state = ConnectionState.DISCONNECTED
        self._pairing: Optional[PairingSession] = None
        self._engine_open = False

    async def __aenter__(self) -> "ConnectionHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def jid(self) -> Optional[str]:
        return self.identity.jid if self.identity is not None else None

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state is ConnectionState.AUTHENTICATED and not (self.identity and self.identity.is_paired):
            raise RuntimeError("cannot authenticate a connection without a paired identity")
        if new_state is not self._state:
            logger.debug(f"Connection {self._state.value} -> {new_state.value}",
                         extra={"jid": self.jid, "state": new_state.value})
            self._state = new_state

    # ========== Lifecycle ==========

    async def connect(self) -> None:
        """
        Open the gateway session.

        Raises:
            SessionExpired: stored session material was rejected; the identity
                is dropped so the next connect() pairs
            TransportError: network or handshake failure
        """
        if self._state not in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
            raise RuntimeError(f"connect() called while {self._state.value}")

        pairing = self.identity is None or not self.identity.is_paired
        self._set_state(ConnectionState.CONNECTING)
        self._engine_open = True
        try:
            await self.engine.connect(self.identity if not pairing else None)
        except SessionExpired:
            self._set_state(ConnectionState.FAILED)
            logger.warning("Stored session was rejected", extra={"jid": self.jid})
            self.identity = None
            raise
        except TransportError:
            self._set_state(ConnectionState.FAILED)
            raise
        except (OSError, asyncio.TimeoutError) as e:
            self._set_state(ConnectionState.FAILED)
            raise TransportError(f"connect failed: {e}") from e

        if not pairing:
            self._set_state(ConnectionState.AUTHENTICATED)
            logger.info("Connected", extra={"jid": self.jid})
        else:
            logger.info("Connected without identity; pairing only")

    async def disconnect(self) -> None:
        """Idempotent; always ends in DISCONNECTED."""
        if self._pairing is not None:
            self._pairing.close()
        if self._engine_open:
            self._engine_open = False
            try:
                await self.engine.disconnect()
            except Exception as e:
                logger.error(f"Error while disconnecting: {e}")
        self._set_state(ConnectionState.DISCONNECTED)

    # ========== Pairing ==========

    def open_pairing_session(self, timeout: float) -> PairingSession:
        if self._pairing is not None:
            raise RuntimeError("a pairing session is already active on this connection")
        if self.identity is not None and self.identity.is_paired:
            raise RuntimeError("identity is already paired")
        self._pairing = PairingSession(timeout, on_close=self._pairing_closed)
        return self._pairing

    def _pairing_closed(self, session: PairingSession) -> None:
        if self._pairing is session:
            self._pairing = None

    async def _on_pairing_event(self, event: PairingEvent) -> None:
        if isinstance(event, PairingSuccess):
            self.identity = event.identity
            if self._state is ConnectionState.CONNECTING:
                self._set_state(ConnectionState.CONNECTED_UNAUTHENTICATED)
        if self._pairing is None:
            logger.warning(f"{type(event).__name__} arrived with no pairing session active")
            return
        self._pairing.push(event)

    async def _on_connection_event(self, event: ConnectionEvent) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            return
        if isinstance(event, Connected):
            if self.identity is not None and self.identity.is_paired:
                self._set_state(ConnectionState.AUTHENTICATED)
                logger.info("Successfully authenticated", extra={"jid": self.jid})
            return
        if isinstance(event, LoggedOut):
            logger.warning(f"Remote side logged this device out: {event.reason}", extra={"jid": self.jid})
            self.identity = None
        elif isinstance(event, Disconnected):
            logger.warning(f"Connection dropped: {event.reason}", extra={"jid": self.jid})
        if self._pairing is not None:
            self._pairing.close()
        self._set_state(ConnectionState.FAILED)

    # ========== Requests ==========

    def _require_authenticated(self) -> None:
        if self._state is not ConnectionState.AUTHENTICATED:
            raise TransportError(f"connection is {self._state.value}, not authenticated")

    async def send_text(self, message: OutboundMessage) -> str:
        self._require_authenticated()
        return await self.engine.send_text(message.recipient, message.body)

    async def revoke(self) -> None:
        self._require_authenticated()
        await self.engine.revoke()
        self.identity = None
        self._set_state(ConnectionState.CONNECTED_UNAUTHENTICATED)
