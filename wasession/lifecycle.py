from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Optional, TextIO

from wasession.core.ConnectionHandle import ConnectionHandle
from wasession.core.EventDispatcher import EventDispatcher, EventHandler
from wasession.core.PairingCoordinator import PairingCoordinator, PairingOutcome, Sleep
from wasession.engine import ProtocolEngine
from wasession.errors import InvalidRecipient, NotPaired, RequestFailed, SessionExpired, TransportError
from wasession.render import CodeRenderer
from wasession.shared.log import get_logger
from wasession.shared.utils import AddressParseError, parse_address
from wasession.state import DeviceIdentity, OutboundMessage
from wasession.storage import CredentialStore

logger = get_logger(__name__)

EngineFactory = Callable[[], ProtocolEngine]


class LoginOutcome(str, Enum):
    ALREADY_AUTHENTICATED = "already-authenticated"
    PAIRED = "paired"


class SessionLifecycleManager:
    """
    The three user-facing operations: login, send_message and logout.

    Each call performs at most one connect/work/disconnect cycle on a single
    ConnectionHandle, and the handle is disconnected before the call returns
    or raises. Nothing is retried.
    """

    def __init__(
        self,
        store: CredentialStore,
        engine_factory: EngineFactory,
        renderer: CodeRenderer,
        *,
        grace_period: float = 30.0,
        pairing_timeout: float = 160.0,
        sleep: Sleep = asyncio.sleep,
        message_handler: Optional[EventHandler] = None,
        destination: Optional[TextIO] = None,
    ) -> None:
        self.store = store
        self.engine_factory = engine_factory
        self.renderer = renderer
        self.grace_period = grace_period
        self.pairing_timeout = pairing_timeout
        self.message_handler = message_handler
        self.destination = destination
        self._sleep = sleep
        self.last_pairing: Optional[PairingOutcome] = None

    def _load_identity(self) -> Optional[DeviceIdentity]:
        self.store.open()
        return self.store.load()

    def _new_handle(self, identity: Optional[DeviceIdentity]) -> ConnectionHandle:
        return ConnectionHandle(self.engine_factory(), identity, EventDispatcher(self.message_handler))

    async def login(self) -> LoginOutcome:
        """
        Pair this device unless its stored identity is still accepted.

        Raises:
            PairingFailed: the pairing handshake failed or timed out
            ConnectError: no connection could be established
        """
        identity = self._load_identity()
        async with self._new_handle(identity) as handle:
            if identity is not None:
                try:
                    await handle.connect()
                except SessionExpired:
                    logger.warning("Session expired, need to login again", extra={"jid": identity.jid})
                    await handle.disconnect()
                else:
                    logger.info("Already logged in", extra={"jid": identity.jid})
                    return LoginOutcome.ALREADY_AUTHENTICATED

            coordinator = PairingCoordinator(
                self.renderer,
                grace_period=self.grace_period,
                pairing_timeout=self.pairing_timeout,
                sleep=self._sleep,
                destination=self.destination,
            )
            self.last_pairing = await coordinator.run(handle)
            return LoginOutcome.PAIRED

    async def send_message(self, recipient: str, body: str) -> str:
        """
        Send one text message and return the id the remote side gave it.

        Raises:
            NotPaired: no stored identity; no connection is attempted
            InvalidRecipient: recipient is not a participant address; no
                connection is attempted
            RequestFailed: the send was refused or lost
            ConnectError: connecting failed
        """
        identity = self._load_identity()
        if identity is None:
            raise NotPaired("not logged in")
        try:
            address = parse_address(recipient)
        except AddressParseError as e:
            raise InvalidRecipient(str(e)) from e

        message = OutboundMessage(recipient=address, body=body)
        async with self._new_handle(identity) as handle:
            await handle.connect()
            try:
                message_id = await handle.send_text(message)
            except TransportError as e:
                logger.error(f"Error sending message: {e}", extra={"jid": identity.jid})
                raise RequestFailed(str(e)) from e
            logger.info(f"Message sent to {address} (id {message_id})", extra={"jid": identity.jid})
            return message_id

    async def logout(self) -> None:
        """
        Revoke this device on the remote side.

        On success the engine clears the stored identity. If the revoke
        fails the stored identity is left in place but must be treated as
        invalid; run login again.

        Raises:
            NotPaired: no stored identity
            RequestFailed: the revoke was refused or lost
            ConnectError: connecting failed
        """
        identity = self._load_identity()
        if identity is None:
            raise NotPaired("not logged in")
        async with self._new_handle(identity) as handle:
            await handle.connect()
            try:
                await handle.revoke()
            except TransportError as e:
                logger.error(f"Error logging out: {e}", extra={"jid": identity.jid})
                raise RequestFailed(str(e)) from e
            logger.info("Logged out", extra={"jid": identity.jid})
