from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from microdose_tracker.models import (
    BURPEE_SIX_COUNT,
    MovementStyle,
    ProgressionState,
    SessionRecord,
    UserMicrodoseState,
    ValidationError,
    coerce_optional_int,
    parse_timestamp,
)


def test_parse_timestamp_accepts_z_suffix_and_naive_values():
    assert parse_timestamp("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01T10:00:00") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        parse_timestamp("yesterday")


def test_coerce_optional_int_handles_blank_and_nan():
    assert coerce_optional_int("") is None
    assert coerce_optional_int(float("nan")) is None
    assert coerce_optional_int("300") == 300
    with pytest.raises(ValidationError):
        coerce_optional_int("2.5", field="reps")
    with pytest.raises(ValidationError):
        coerce_optional_int(11, field="perceived_effort", maximum=10)


def test_session_record_create_assigns_unique_ids():
    first = SessionRecord.create("emom_kb_swing_5m")
    second = SessionRecord.create("emom_kb_swing_5m")

    assert first.id != second.id
    assert uuid.UUID(first.id)
    assert first.performed_at.tzinfo is not None


def test_session_record_rejects_bad_payloads():
    base = {
        "id": str(uuid.uuid4()),
        "definition_id": "gtg_pullup_band",
        "performed_at": "2024-05-01T10:00:00+00:00",
    }
    assert SessionRecord.from_dict(base).definition_id == "gtg_pullup_band"

    with pytest.raises(ValidationError):
        SessionRecord.from_dict({**base, "id": "not-a-uuid"})
    with pytest.raises(ValidationError):
        SessionRecord.from_dict({**base, "perceived_effort": 11})
    with pytest.raises(ValidationError):
        SessionRecord.from_dict({**base, "max_heart_rate": 300})
    with pytest.raises(ValidationError):
        SessionRecord.from_dict({key: value for key, value in base.items() if key != "definition_id"})


def test_state_snapshot_shape():
    state = UserMicrodoseState(
        progressions={
            "emom_burpee_5m": ProgressionState(
                reps=6,
                style=MovementStyle.burpee(BURPEE_SIX_COUNT),
                level=8,
                last_upgraded_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
            )
        },
        last_mobility_definition_id="mobility_hip_cars",
    )

    payload = state.to_dict()

    assert payload["last_mobility_definition_id"] == "mobility_hip_cars"
    assert payload["progressions"]["emom_burpee_5m"]["reps"] == 6
    assert UserMicrodoseState.from_dict(payload) == state


def test_movement_style_labels():
    assert MovementStyle.none().label == "Default"
    assert MovementStyle.burpee(BURPEE_SIX_COUNT).label == "Burpee: six count"
    assert MovementStyle.band("red").label == "Band: red"
    with pytest.raises(ValidationError):
        MovementStyle.from_dict({"kind": "burpee", "value": "double_seal"})
