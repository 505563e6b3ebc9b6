from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from microdose_tracker.models import STRENGTH_FULL, STRENGTH_LOWER
from microdose_tracker.strength import load_strength_signal, parse_session_type


def test_missing_signal_file_is_none(tmp_path):
    assert load_strength_signal(tmp_path / "strength" / "signal.json") is None


def test_valid_signal_is_parsed(tmp_path):
    path = tmp_path / "signal.json"
    path.write_text(
        json.dumps({"last_session_at": "2024-05-01T06:30:00Z", "session_type": "Lower"}),
        encoding="utf-8",
    )

    signal = load_strength_signal(path)

    assert signal is not None
    assert signal.last_session_at == datetime(2024, 5, 1, 6, 30, tzinfo=timezone.utc)
    assert signal.session_type == STRENGTH_LOWER
    assert signal.is_lower_body


@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        json.dumps(["lower"]),
        json.dumps({"session_type": "lower"}),
        json.dumps({"last_session_at": "last tuesday", "session_type": "lower"}),
    ],
)
def test_malformed_signal_is_ignored_with_warning(tmp_path, caplog, payload):
    path = tmp_path / "signal.json"
    path.write_text(payload, encoding="utf-8")

    with caplog.at_level("WARNING"):
        assert load_strength_signal(path) is None
    assert "Ignoring signal" in caplog.text


def test_parse_session_type_aliases():
    assert parse_session_type(" full_body ") == STRENGTH_FULL
    assert parse_session_type("FullBody") == STRENGTH_FULL
    assert parse_session_type("Legs") == "legs"
