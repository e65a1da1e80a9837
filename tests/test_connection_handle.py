import asyncio

import pytest

from conftest import PAIRED_JID, FakeEngine
from wasession.core.ConnectionHandle import ConnectionHandle, ConnectionState
from wasession.core.EventTypes import Connected, Disconnected, PairingCode
from wasession.errors import SessionExpired, TransportError
from wasession.shared.utils import parse_address
from wasession.state import OutboundMessage


@pytest.mark.asyncio
async def test_accepted_identity_authenticates(paired_identity):
    engine = FakeEngine()
    handle = ConnectionHandle(engine, paired_identity)

    await handle.connect()

    assert handle.state is ConnectionState.AUTHENTICATED
    assert handle.jid == PAIRED_JID
    assert engine.connect_calls == [paired_identity]


@pytest.mark.asyncio
async def test_rejected_identity_fails_and_is_forgotten(paired_identity):
    handle = ConnectionHandle(FakeEngine(reject=True), paired_identity)

    with pytest.raises(SessionExpired):
        await handle.connect()

    assert handle.state is ConnectionState.FAILED
    assert handle.identity is None


@pytest.mark.asyncio
async def test_no_identity_connects_for_pairing_only():
    engine = FakeEngine()
    handle = ConnectionHandle(engine, None)

    await handle.connect()

    assert handle.state is ConnectionState.CONNECTING
    assert engine.connect_calls == [None]
    with pytest.raises(TransportError):
        await handle.send_text(OutboundMessage(parse_address("628123456789"), "hi"))
    assert engine.sent == []


@pytest.mark.asyncio
async def test_network_failure_is_transport_error(paired_identity):
    handle = ConnectionHandle(FakeEngine(connect_error=OSError("connection refused")), paired_identity)

    with pytest.raises(TransportError):
        await handle.connect()
    assert handle.state is ConnectionState.FAILED


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(paired_identity):
    engine = FakeEngine()
    handle = ConnectionHandle(engine, paired_identity)

    await handle.disconnect()
    assert engine.disconnect_calls == 0

    await handle.connect()
    await handle.disconnect()
    await handle.disconnect()

    assert handle.state is ConnectionState.DISCONNECTED
    assert engine.disconnect_calls == 1
    assert not engine.is_open


@pytest.mark.asyncio
async def test_context_manager_disconnects_on_error(paired_identity):
    engine = FakeEngine()

    with pytest.raises(RuntimeError):
        async with ConnectionHandle(engine, paired_identity) as handle:
            await handle.connect()
            raise RuntimeError("command crashed")

    assert engine.disconnect_calls == 1
    assert handle.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_connect_twice_is_refused(paired_identity):
    handle = ConnectionHandle(FakeEngine(), paired_identity)
    await handle.connect()
    with pytest.raises(RuntimeError):
        await handle.connect()


@pytest.mark.asyncio
async def test_only_one_pairing_session_at_a_time():
    handle = ConnectionHandle(FakeEngine(), None)
    session = handle.open_pairing_session(5.0)

    with pytest.raises(RuntimeError):
        handle.open_pairing_session(5.0)

    session.close()
    handle.open_pairing_session(5.0).close()


@pytest.mark.asyncio
async def test_pairing_session_on_paired_identity_is_refused(paired_identity):
    with pytest.raises(RuntimeError):
        ConnectionHandle(FakeEngine(), paired_identity).open_pairing_session(5.0)


@pytest.mark.asyncio
async def test_pairing_events_reach_session_in_order():
    handle = ConnectionHandle(FakeEngine(), None)
    session = handle.open_pairing_session(5.0)

    await handle.dispatcher.dispatch(PairingCode(code="ref1"))
    await handle.dispatcher.dispatch(PairingCode(code="ref2"))

    assert (await session.next_event()).code == "ref1"
    assert (await session.next_event()).code == "ref2"


@pytest.mark.asyncio
async def test_pairing_session_deadline():
    handle = ConnectionHandle(FakeEngine(), None)
    session = handle.open_pairing_session(0.05)

    with pytest.raises(asyncio.TimeoutError):
        await session.next_event()


@pytest.mark.asyncio
async def test_connected_event_never_authenticates_without_identity():
    handle = ConnectionHandle(FakeEngine(), None)
    await handle.connect()

    await handle.dispatcher.dispatch(Connected(jid=PAIRED_JID))

    assert handle.state is ConnectionState.CONNECTING


@pytest.mark.asyncio
async def test_dropped_stream_closes_pairing_session():
    handle = ConnectionHandle(FakeEngine(), None)
    session = handle.open_pairing_session(5.0)
    await handle.connect()

    await handle.dispatcher.dispatch(Disconnected("gateway went away"))

    assert await session.next_event() is None
    assert handle.state is ConnectionState.FAILED


@pytest.mark.asyncio
async def test_revoke_drops_identity(paired_identity):
    engine = FakeEngine()
    handle = ConnectionHandle(engine, paired_identity)
    await handle.connect()

    await handle.revoke()

    assert engine.revoke_calls == 1
    assert handle.identity is None
    assert handle.state is ConnectionState.CONNECTED_UNAUTHENTICATED
