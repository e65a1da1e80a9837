from __future__ import annotations
import asyncio
from contextlib import suppress
from typing import Any, Dict, Optional

import websockets

from wasession.core.EventTypes import (
    PAIR_ERROR,
    PAIR_FAILURE_EVENTS,
    Connected,
    Disconnected,
    FrameType,
    IncomingMessage,
    InboundEvent,
    LoggedOut,
    PairingCode,
    PairingFailure,
    PairingSuccess,
)
from wasession.engine import EventCallback, ProtocolEngine
from wasession.errors import SessionExpired, StorageUnavailable, TransportError
from wasession.shared.envelope import Envelope, create_envelope
from wasession.shared.log import get_logger, log_frame
from wasession.shared.utils import ParticipantAddress, now_ms
from wasession.state import DeviceIdentity
from wasession.storage import CredentialStore

logger = get_logger(__name__)

CLIENT_NAME = "wasession-cli"


class WebSocketEngine(ProtocolEngine):
    """
    Protocol engine speaking JSON envelopes to a messaging gateway over a
    WebSocket.

    A background receive loop turns gateway frames into inbound events and
    resolves pending requests. Pairing results and revocations are written
    to the credential store here, as a side effect of the frames that carry
    them.
    """

    def __init__(self, store: CredentialStore, gateway_url: str, *,
                 connect_timeout: float = 20.0, request_timeout: float = 30.0) -> None:
        self.store = store
        self.gateway_url = gateway_url
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self.websocket: Optional[websockets.ClientConnection] = None
        self._identity: Optional[DeviceIdentity] = None
        self._handler: Optional[EventCallback] = None
        self._recv_task: Optional[asyncio.Task] = None
        self._handshake: Optional[asyncio.Future] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._closing = False

    def set_event_handler(self, handler: EventCallback) -> None:
        self._handler = handler

    async def _emit(self, event: InboundEvent) -> None:
        if self._handler is None:
            logger.debug(f"No event handler; dropping {type(event).__name__}")
            return
        await self._handler(event)

    # ========== Connection ==========

    async def connect(self, identity: Optional[DeviceIdentity]) -> None:
        if self.websocket is not None:
            raise TransportError("engine is already connected")
        paired = identity is not None and identity.is_paired
        self._identity = identity if paired else DeviceIdentity.new_unpaired()
        self._closing = False

        try:
            self.websocket = await websockets.connect(
                self.gateway_url,
                ping_interval=15,
                ping_timeout=45,
                open_timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"timed out connecting to {self.gateway_url}") from e
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise TransportError(f"cannot reach gateway {self.gateway_url}: {e}") from e

        loop = asyncio.get_running_loop()
        self._handshake = loop.create_future() if paired else None
        self._recv_task = asyncio.create_task(self._recv_loop())

        await self._send(create_envelope(FrameType.HELLO.value, {
            "client": CLIENT_NAME,
            "jid": self._identity.jid,
            "registration_id": self._identity.registration_id,
            "noise_pub": self._identity.noise_key.public_b64url(),
            "identity_pub": self._identity.identity_key.public_b64url(),
        }))
        if self._handshake is None:
            logger.info("Requested pairing from gateway")
            return

        try:
            await asyncio.wait_for(self._handshake, timeout=self.connect_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError("gateway did not answer HELLO") from e

    async def disconnect(self) -> None:
        self._closing = True
        if self._recv_task is not None:
            self._recv_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._recv_task
            self._recv_task = None
        if self.websocket is not None:
            try:
                await self.websocket.close(code=1000)
            except Exception as e:
                logger.error(f"Error closing connection: {e}")
            finally:
                self.websocket = None
        if self._handshake is not None and not self._handshake.done():
            self._handshake.cancel()
        self._handshake = None
        self._fail_pending(TransportError("disconnected"))

    # ========== Requests ==========

    async def _send(self, envelope: Envelope) -> None:
        if self.websocket is None:
            raise TransportError("not connected")
        try:
            await self.websocket.send(envelope.to_json())
        except websockets.exceptions.ConnectionClosed as e:
            raise TransportError(f"connection closed while sending {envelope.type}") from e
        log_frame(logger, "debug", "Sent frame", frame=envelope.to_dict(), conn="gateway")

    async def _request(self, frame_type: FrameType, payload: Dict[str, Any]) -> Dict[str, Any]:
        envelope = create_envelope(frame_type.value, payload)
        future = asyncio.get_running_loop().create_future()
        self._pending[envelope.id] = future
        try:
            await self._send(envelope)
            return await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"{frame_type.value} got no answer within {self.request_timeout:g}s") from e
        finally:
            self._pending.pop(envelope.id, None)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    def _require_paired(self) -> DeviceIdentity:
        if self._identity is None or not self._identity.is_paired:
            raise TransportError("no paired identity on this connection")
        return self._identity

    async def send_text(self, address: ParticipantAddress, body: str) -> str:
        self._require_paired()
        result = await self._request(FrameType.SEND_TEXT, {"to": str(address), "body": body})
        return str(result.get("message_id") or "")

    async def revoke(self) -> None:
        identity = self._require_paired()
        await self._request(FrameType.LOGOUT, {"jid": identity.jid})
        self.store.clear()
        self._identity = None

    # ========== Inbound ==========

    async def _recv_loop(self) -> None:
        assert self.websocket is not None
        reason = "stream closed"
        try:
            async for raw in self.websocket:
                try:
                    envelope = Envelope.from_json(raw)
                    log_frame(logger, "debug", "Received frame", frame=envelope.to_dict(), conn="gateway")
                    await self._process(envelope)
                except Exception as e:
                    logger.error("Failed to parse/process inbound frame: %s", e)
        except websockets.exceptions.ConnectionClosed as e:
            reason = f"connection closed: {e}"
        self._fail_pending(TransportError(reason))
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(TransportError(reason))
        if not self._closing:
            await self._emit(Disconnected(reason))

    async def _process(self, envelope: Envelope) -> None:
        if not FrameType.is_valid(envelope.type):
            logger.warning(f"Ignoring unknown frame type {envelope.type}")
            return
        frame_type = FrameType.from_string(envelope.type)
        payload = envelope.payload

        if frame_type is FrameType.AUTH_OK:
            await self._on_auth_ok(payload)
        elif frame_type is FrameType.AUTH_REJECTED:
            reason = str(payload.get("reason") or "session rejected")
            if self._handshake is not None and not self._handshake.done():
                self._handshake.set_exception(SessionExpired(reason))
            else:
                await self._on_logged_out(reason)
        elif frame_type is FrameType.PAIR_CODE:
            ref = payload.get("ref")
            if not isinstance(ref, str) or not ref or self._identity is None:
                logger.warning("PAIR_CODE without a usable ref")
                return
            await self._emit(PairingCode(code=self._identity.pairing_code(ref)))
        elif frame_type is FrameType.PAIR_SUCCESS:
            await self._on_pair_success(payload)
        elif frame_type is FrameType.PAIR_ERROR:
            await self._on_pair_error(payload)
        elif frame_type is FrameType.MESSAGE:
            await self._emit(IncomingMessage(
                message_id=str(payload.get("id") or envelope.id),
                sender=str(payload.get("from") or ""),
                chat=str(payload.get("chat") or payload.get("from") or ""),
                text=str(payload.get("text") or ""),
                ts=int(payload.get("ts") or now_ms()),
            ))
        elif frame_type is FrameType.RESULT:
            self._on_result(payload)
        elif frame_type is FrameType.LOGGED_OUT:
            await self._on_logged_out(str(payload.get("reason") or "logged out"))
        elif frame_type is FrameType.ERROR:
            detail = f"{payload.get('code')}: {payload.get('detail')}"
            logger.error(f"Gateway error {detail}")
            if self._handshake is not None:
                if not self._handshake.done():
                    self._handshake.set_exception(TransportError(detail))
            elif self._identity is not None and not self._identity.is_paired:
                await self._emit(PairingFailure(reason=PAIR_ERROR, detail=detail))
        else:
            logger.warning(f"Unexpected client-side frame {frame_type.value} from gateway")

    async def _on_auth_ok(self, payload: Dict[str, Any]) -> None:
        if self._identity is None or not self._identity.is_paired:
            logger.warning("AUTH_OK before pairing completed; ignoring")
            return
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(None)
        await self._emit(Connected(jid=str(payload.get("jid") or self._identity.jid)))

    async def _on_pair_error(self, payload: Dict[str, Any]) -> None:
        event = str(payload.get("event") or PAIR_ERROR)
        detail = payload.get("detail")
        if event not in PAIR_FAILURE_EVENTS:
            detail = f"{event}: {detail}" if detail else event
            event = PAIR_ERROR
        await self._emit(PairingFailure(reason=event, detail=detail))

    async def _on_pair_success(self, payload: Dict[str, Any]) -> None:
        jid = payload.get("jid")
        if self._identity is None or not isinstance(jid, str) or not jid:
            await self._emit(PairingFailure(reason=PAIR_ERROR, detail="PAIR_SUCCESS without jid"))
            return
        self._identity.jid = jid
        self._identity.platform = payload.get("platform")
        self._identity.business_name = payload.get("business_name")
        try:
            self.store.save(self._identity)
        except StorageUnavailable as e:
            self._identity.jid = None
            await self._emit(PairingFailure(reason=PAIR_ERROR, detail=str(e)))
            return
        await self._emit(PairingSuccess(identity=self._identity))

    async def _on_logged_out(self, reason: str) -> None:
        try:
            self.store.clear()
        except StorageUnavailable as e:
            logger.error(f"Could not clear revoked identity: {e}")
        self._identity = None
        await self._emit(LoggedOut(reason=reason))

    def _on_result(self, payload: Dict[str, Any]) -> None:
        ref = payload.get("ref")
        future = self._pending.get(ref) if isinstance(ref, str) else None
        if future is None or future.done():
            logger.debug(f"RESULT for unknown request {ref}")
            return
        if payload.get("ok"):
            future.set_result(payload)
        else:
            future.set_exception(TransportError(str(payload.get("error") or "request failed")))
