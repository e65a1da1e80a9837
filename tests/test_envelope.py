import json

import pytest

from wasession.shared.envelope import Envelope, MalformedFrameError, create_envelope


def test_envelope_serializes_compact_and_sorted():
    env = create_envelope("SEND_TEXT", {"to": "628123456789@s.whatsapp.net", "body": "hi"}, ts=1700000000000)
    raw = env.to_json()

    assert ", " not in raw and ": " not in raw
    data = json.loads(raw)
    assert list(data.keys()) == sorted(data.keys())
    assert data["type"] == "SEND_TEXT"
    assert data["ts"] == 1700000000000
    assert data["id"] == env.id


def test_missing_id_and_ts_are_filled_in():
    env = Envelope.from_json('{"type":"PAIR_CODE","payload":{"ref":"2@abc"}}')
    assert env.id
    assert isinstance(env.ts, int)
    assert env.payload["ref"] == "2@abc"


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2]",
    '{"payload": {}}',
    '{"type": "", "payload": {}}',
    '{"type": "RESULT", "payload": []}',
    '{"type": "RESULT", "payload": {}, "id": 7}',
    '{"type": "RESULT", "payload": {}, "ts": "yesterday"}',
])
def test_malformed_frames_are_rejected(raw):
    with pytest.raises(MalformedFrameError):
        Envelope.from_json(raw)
