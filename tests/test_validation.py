import json

import pytest

from stream.errors import MalformedInput, OwnershipMismatch
from stream.validation_pipeline import validate_message


def _message(**overrides):
    message = {
        "subjectId": 7,
        "channel": "AF7",
        "samples": [0.1, 0.2, 0.3],
        "sampleRate": 256,
        "clientTimestamp": 1_700_000_000_000,
    }
    message.update(overrides)
    return message


class TestValidateMessage:

    def test_accepts_valid_json(self):
        message = validate_message(json.dumps(_message()), 7, ("AF7", "AF8"))
        assert message.subject_id == 7
        assert message.channel == "AF7"
        assert message.samples == [0.1, 0.2, 0.3]
        assert message.sample_rate == 256

    def test_accepts_legacy_field_names(self):
        raw = _message()
        raw["lifeId"] = raw.pop("subjectId")
        raw["channelIdentifier"] = raw.pop("channel")
        assert validate_message(raw, 7).subject_id == 7

    @pytest.mark.parametrize("raw", [
        "not json",
        json.dumps([1, 2]),
        json.dumps(_message(samples=[])),
        json.dumps(_message(channel="")),
        json.dumps(_message(sampleRate=0)),
        json.dumps(_message(samples=["a", "b"])),
        json.dumps({k: v for k, v in _message().items() if k != "clientTimestamp"}),
    ])
    def test_malformed(self, raw):
        with pytest.raises(MalformedInput):
            validate_message(raw, 7)

    def test_channel_outside_allowed_set(self):
        with pytest.raises(MalformedInput):
            validate_message(_message(channel="Cz"), 7, ("AF7", "AF8"))

    def test_empty_allowed_set_accepts_any_channel(self):
        assert validate_message(_message(channel="Cz"), 7, ()).channel == "Cz"

    def test_ownership_mismatch(self):
        with pytest.raises(OwnershipMismatch):
            validate_message(_message(subjectId=8), 7)

    def test_unauthenticated_session(self):
        with pytest.raises(OwnershipMismatch):
            validate_message(_message(), None)

    def test_malformed_messages_are_quarantined(self, tmp_path):
        quarantine = tmp_path / "quarantine.jsonl"
        with pytest.raises(MalformedInput):
            validate_message(_message(samples=[]), 7, quarantine_file=str(quarantine))
        lines = quarantine.read_text().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["samples"] == []
