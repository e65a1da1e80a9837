from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, TextIO

from wasession.core.EventTypes import PAIR_TIMEOUT, PairingCode, PairingFailure, PairingSuccess
from wasession.errors import ConnectError, PairingFailed
from wasession.shared.log import get_logger

if TYPE_CHECKING:
    from wasession.core.ConnectionHandle import ConnectionHandle
    from wasession.render import CodeRenderer

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class PairingState(str, Enum):
    IDLE = "idle"
    ISSUING_CODE = "issuing_code"
    AWAITING_SCAN = "awaiting_scan"
    SUCCESS = "success"
    EXPIRED = "expired"
    ERROR = "error"


@dataclass(frozen=True)
class PairingOutcome:
    jid: str
    codes_shown: int


class PairingCoordinator:
    """
    Drives the out-of-band pairing handshake on a connection with no identity.

    idle -> issuing_code -> awaiting_scan -> (success | expired | error)

    Every code is rendered as it arrives and replaces the previous one; only
    the latest is kept. After success the coordinator waits ``grace_period``
    seconds before returning, since the remote side sends no signal when it
    has finished provisioning the new device. A fixed wait may be too short
    on a slow remote and is always the full length on a fast one.

    Failures are never retried here; the caller decides whether to log in
    again.
    """

    def __init__(
        self,
        renderer: "CodeRenderer",
        *,
        grace_period: float = 30.0,
        pairing_timeout: float = 160.0,
        sleep: Sleep = asyncio.sleep,
        destination: Optional[TextIO] = None,
    ) -> None:
        self.renderer = renderer
        self.grace_period = grace_period
        self.pairing_timeout = pairing_timeout
        self.destination = destination
        self._sleep = sleep
        self.state = PairingState.IDLE
        self.current_code: Optional[str] = None
        self.codes_shown = 0

    def _set_state(self, new_state: PairingState) -> None:
        if new_state is not self.state:
            logger.debug(f"Pairing {self.state.value} -> {new_state.value}", extra={"state": new_state.value})
            self.state = new_state

    async def run(self, handle: "ConnectionHandle") -> PairingOutcome:
        """
        Connect ``handle`` for pairing and consume its pairing stream until a
        terminal event.

        Raises:
            PairingFailed: remote failure, stream closed or deadline elapsed
            ConnectError: the connection for pairing could not be opened
        """
        if self.state is not PairingState.IDLE:
            raise RuntimeError("a PairingCoordinator runs once; create a new one to retry")

        # Subscribe before connecting so the first code cannot be missed
        session = handle.open_pairing_session(self.pairing_timeout)
        success: Optional[PairingSuccess] = None
        try:
            self._set_state(PairingState.ISSUING_CODE)
            try:
                await handle.connect()
            except ConnectError:
                self._set_state(PairingState.ERROR)
                raise

            while success is None:
                try:
                    event = await session.next_event()
                except asyncio.TimeoutError:
                    self._set_state(PairingState.EXPIRED)
                    raise PairingFailed(PAIR_TIMEOUT, expired=True, detail="no scan before the deadline")

                if event is None:
                    self._set_state(PairingState.ERROR)
                    raise PairingFailed("stream closed")
                if isinstance(event, PairingCode):
                    self.current_code = event.code
                    self.codes_shown += 1
                    self._set_state(PairingState.AWAITING_SCAN)
                    logger.debug(f"Rendering pairing code #{self.codes_shown}")
                    self.renderer.render(event.code, self.destination)
                elif isinstance(event, PairingSuccess):
                    success = event
                elif isinstance(event, PairingFailure):
                    self._set_state(PairingState.EXPIRED if event.expired else PairingState.ERROR)
                    logger.warning(f"Login event: {event.reason}")
                    raise PairingFailed(event.reason, expired=event.expired, detail=event.detail)
        finally:
            session.close()
            self.current_code = None

        logger.info(f"Login successful; waiting {self.grace_period:g}s for the remote side to finish provisioning",
                    extra={"jid": success.jid})
        await self._sleep(self.grace_period)
        self._set_state(PairingState.SUCCESS)
        return PairingOutcome(jid=success.jid or "", codes_shown=self.codes_shown)
