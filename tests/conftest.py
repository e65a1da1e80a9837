import sys
from pathlib import Path
from typing import List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from wasession.core.EventTypes import IncomingMessage, PairingCode, PairingFailure, PairingSuccess
from wasession.engine import ProtocolEngine
from wasession.errors import SessionExpired, TransportError
from wasession.state import DeviceIdentity
from wasession.storage import CredentialStore

PAIRED_JID = "628111222333@s.whatsapp.net"


class FakeEngine(ProtocolEngine):
    """
    Scriptable engine counting every call the session layer makes.

    ``script`` is replayed on a pairing connect: ("code", ref),
    ("success", jid), ("failure", reason) or ("message", text).
    """

    def __init__(self, *, store: Optional[CredentialStore] = None, reject: bool = False,
                 connect_error: Optional[Exception] = None, script=(), send_error: bool = False,
                 revoke_error: bool = False) -> None:
        self.store = store
        self.reject = reject
        self.connect_error = connect_error
        self.script = list(script)
        self.send_error = send_error
        self.revoke_error = revoke_error
        self.connect_calls: List[Optional[DeviceIdentity]] = []
        self.disconnect_calls = 0
        self.sent = []
        self.revoke_calls = 0
        self.is_open = False
        self._identity: Optional[DeviceIdentity] = None
        self._handler = None

    def set_event_handler(self, handler) -> None:
        self._handler = handler

    async def connect(self, identity):
        self.connect_calls.append(identity)
        self.is_open = True
        if self.connect_error is not None:
            raise self.connect_error
        if identity is not None:
            if self.reject:
                raise SessionExpired("session revoked remotely")
            self._identity = identity
            return
        for kind, value in self.script:
            await self._handler(self._event(kind, value))

    def _event(self, kind, value):
        if kind == "code":
            return PairingCode(code=f"{value},noise,identity,adv")
        if kind == "message":
            return IncomingMessage(message_id="3EB0INBOUND", sender="628999000111@s.whatsapp.net",
                                   chat="628999000111@s.whatsapp.net", text=value, ts=1700000000000)
        if kind == "success":
            identity = DeviceIdentity.new_unpaired()
            identity.jid = value
            if self.store is not None:
                self.store.save(identity)
            self._identity = identity
            return PairingSuccess(identity=identity)
        return PairingFailure(reason=value)

    async def disconnect(self):
        self.disconnect_calls += 1
        self.is_open = False

    async def send_text(self, address, body):
        self.sent.append((str(address), body))
        if self.send_error:
            raise TransportError("server returned error 479")
        return "3EB0C0FFEE"

    async def revoke(self):
        self.revoke_calls += 1
        if self.revoke_error:
            raise TransportError("logout request timed out")
        if self.store is not None:
            self.store.clear()
        self._identity = None


class RecordingRenderer:
    def __init__(self) -> None:
        self.codes: List[str] = []

    def render(self, code, destination=None) -> None:
        self.codes.append(code)


class FakeSleep:
    """Records requested sleeps instead of waiting; ``hook`` runs during the sleep."""

    def __init__(self, hook=None) -> None:
        self.calls: List[float] = []
        self.hook = hook

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.hook is not None:
            self.hook()


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Keep log files and ./wasession.yaml lookups inside the test's tmp dir."""
    monkeypatch.chdir(tmp_path)
    for name in ("SESSION_DIR", "GATEWAY_URL", "GRACE_PERIOD", "LOG_LEVEL", "PAIRING_TIMEOUT"):
        monkeypatch.delenv(f"WASESSION_{name}", raising=False)


@pytest.fixture
def store(tmp_path):
    credential_store = CredentialStore(tmp_path / "wa_session")
    credential_store.open()
    yield credential_store
    credential_store.close()


@pytest.fixture
def paired_identity(store):
    identity = DeviceIdentity.new_unpaired()
    identity.jid = PAIRED_JID
    store.save(identity)
    return identity


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
def fake_sleep():
    return FakeSleep()
