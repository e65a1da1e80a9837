import pytest

from conftest import FakeEngine, FakeSleep
from wasession.core.ConnectionHandle import ConnectionHandle, ConnectionState
from wasession.core.PairingCoordinator import PairingCoordinator, PairingState
from wasession.errors import PairingFailed, TransportError

NEW_JID = "628555666777@s.whatsapp.net"


@pytest.mark.asyncio
async def test_each_code_rendered_then_grace_period(store, renderer):
    engine = FakeEngine(store=store, script=[("code", "ref1"), ("code", "ref2"), ("success", NEW_JID)])
    handle = ConnectionHandle(engine, None)
    states_during_grace = []
    sleep = FakeSleep(hook=lambda: states_during_grace.append(coordinator.state))
    coordinator = PairingCoordinator(renderer, grace_period=30.0, sleep=sleep)

    outcome = await coordinator.run(handle)

    assert renderer.codes == ["ref1,noise,identity,adv", "ref2,noise,identity,adv"]
    assert sleep.calls == [30.0]
    assert states_during_grace and states_during_grace[0] is not PairingState.SUCCESS
    assert coordinator.state is PairingState.SUCCESS
    assert outcome.jid == NEW_JID
    assert outcome.codes_shown == 2
    assert store.load().jid == NEW_JID
    assert handle.state is ConnectionState.CONNECTED_UNAUTHENTICATED


@pytest.mark.asyncio
async def test_grace_period_is_configurable(renderer):
    sleep = FakeSleep()
    engine = FakeEngine(script=[("code", "ref1"), ("success", NEW_JID)])
    coordinator = PairingCoordinator(renderer, grace_period=2.5, sleep=sleep)

    await coordinator.run(ConnectionHandle(engine, None))

    assert sleep.calls == [2.5]


@pytest.mark.asyncio
async def test_latest_code_supersedes_previous():
    seen_current = []

    class Watching:
        def render(self, code, destination=None):
            seen_current.append(coordinator.current_code)

    engine = FakeEngine(script=[("code", "ref1"), ("code", "ref2"), ("success", NEW_JID)])
    coordinator = PairingCoordinator(Watching(), sleep=FakeSleep())

    await coordinator.run(ConnectionHandle(engine, None))

    assert seen_current == ["ref1,noise,identity,adv", "ref2,noise,identity,adv"]
    assert coordinator.current_code is None


@pytest.mark.asyncio
async def test_remote_failure_ends_without_grace(renderer, fake_sleep):
    engine = FakeEngine(script=[("code", "ref1"), ("failure", "err-client-outdated")])
    coordinator = PairingCoordinator(renderer, sleep=fake_sleep)

    with pytest.raises(PairingFailed) as excinfo:
        await coordinator.run(ConnectionHandle(engine, None))

    assert excinfo.value.reason == "err-client-outdated"
    assert not excinfo.value.expired
    assert coordinator.state is PairingState.ERROR
    assert fake_sleep.calls == []
    assert len(engine.connect_calls) == 1


@pytest.mark.asyncio
async def test_remote_timeout_is_expired(renderer, fake_sleep):
    engine = FakeEngine(script=[("code", "ref1"), ("failure", "timeout")])
    coordinator = PairingCoordinator(renderer, sleep=fake_sleep)

    with pytest.raises(PairingFailed) as excinfo:
        await coordinator.run(ConnectionHandle(engine, None))

    assert excinfo.value.expired
    assert coordinator.state is PairingState.EXPIRED


@pytest.mark.asyncio
async def test_deadline_elapses_without_scan(renderer, fake_sleep):
    engine = FakeEngine(script=[("code", "ref1")])
    coordinator = PairingCoordinator(renderer, pairing_timeout=0.05, sleep=fake_sleep)

    with pytest.raises(PairingFailed) as excinfo:
        await coordinator.run(ConnectionHandle(engine, None))

    assert excinfo.value.expired
    assert coordinator.state is PairingState.EXPIRED
    assert renderer.codes == ["ref1,noise,identity,adv"]


@pytest.mark.asyncio
async def test_connect_failure_is_not_retried(renderer, fake_sleep):
    engine = FakeEngine(connect_error=TransportError("gateway unreachable"))
    coordinator = PairingCoordinator(renderer, sleep=fake_sleep)

    with pytest.raises(TransportError):
        await coordinator.run(ConnectionHandle(engine, None))

    assert coordinator.state is PairingState.ERROR
    assert len(engine.connect_calls) == 1


@pytest.mark.asyncio
async def test_coordinator_runs_once(renderer, fake_sleep):
    engine = FakeEngine(script=[("success", NEW_JID)])
    coordinator = PairingCoordinator(renderer, sleep=fake_sleep)
    handle = ConnectionHandle(engine, None)
    await coordinator.run(handle)
    await handle.disconnect()

    with pytest.raises(RuntimeError):
        await coordinator.run(ConnectionHandle(FakeEngine(), None))
