from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from microdose_tracker.catalog import Catalog, build_default_catalog
from microdose_tracker.engine import (
    NoCategoriesAvailable,
    NoCandidatesInCategory,
    compute_intensity,
    determine_category,
    prescribe_next,
    select_definition,
)
from microdose_tracker.history import with_skip
from microdose_tracker.models import (
    BURPEE_FOUR_COUNT,
    CATEGORY_GTG,
    CATEGORY_MOBILITY,
    CATEGORY_VO2,
    ExternalStrengthSignal,
    MicrodoseDefinition,
    MovementStyle,
    ProgressionState,
    RealSession,
    SessionRecord,
    UserContext,
    UserMicrodoseState,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _real(definition_id: str, hours_ago: float) -> RealSession:
    return RealSession(
        SessionRecord(
            id=str(uuid.uuid4()),
            definition_id=definition_id,
            performed_at=NOW - timedelta(hours=hours_ago),
        )
    )


def _context(history=None, signal=None, state=None) -> UserContext:
    return UserContext(
        now=NOW,
        user_state=state or UserMicrodoseState(),
        recent_history=list(history or []),
        strength_signal=signal,
    )


def _catalog_without(*categories: str) -> Catalog:
    default = build_default_catalog()
    return Catalog.from_items(
        default.movements.values(),
        [definition for definition in default.microdoses.values() if definition.category not in categories],
    )


def test_empty_history_starts_with_vo2():
    catalog = build_default_catalog()

    prescription = prescribe_next(catalog, _context())

    assert prescription.category == CATEGORY_VO2
    assert prescription.definition.id == "emom_burpee_5m"
    assert prescription.reps == 3
    assert prescription.style == MovementStyle.burpee(BURPEE_FOUR_COUNT)


def test_recent_lower_body_strength_prefers_gtg():
    catalog = build_default_catalog()
    signal = ExternalStrengthSignal(last_session_at=NOW - timedelta(hours=12), session_type="lower")
    history = [_real("emom_kb_swing_5m", 6)]

    prescription = prescribe_next(catalog, _context(history, signal))

    assert prescription.category == CATEGORY_GTG
    assert prescription.definition.id == "gtg_pullup_band"


@pytest.mark.parametrize(
    "session_type, hours_ago",
    [("upper", 12), ("full", 12), ("lower", 30)],
)
def test_strength_signal_ignored_when_not_recent_lower_body(session_type, hours_ago):
    signal = ExternalStrengthSignal(last_session_at=NOW - timedelta(hours=hours_ago), session_type=session_type)
    assert determine_category(_context(signal=signal)) == CATEGORY_VO2


def test_stale_vo2_is_prescribed_again_with_a_different_definition():
    catalog = build_default_catalog()
    history = [_real("mobility_hip_cars", 1), _real("emom_burpee_5m", 5)]

    prescription = prescribe_next(catalog, _context(history))

    assert prescription.category == CATEGORY_VO2
    assert prescription.definition.id == "emom_kb_swing_5m"


def test_recent_vo2_rotates_through_categories():
    catalog = build_default_catalog()

    assert determine_category(_context([_real("emom_kb_swing_5m", 3)]), catalog) == CATEGORY_GTG
    assert (
        determine_category(_context([_real("gtg_pullup_band", 1), _real("emom_kb_swing_5m", 3)]), catalog)
        == CATEGORY_MOBILITY
    )
    assert (
        determine_category(_context([_real("mobility_hip_cars", 1), _real("emom_kb_swing_5m", 2)]), catalog)
        == CATEGORY_VO2
    )


def test_skipped_vo2_counts_as_recent():
    catalog = build_default_catalog()
    history = with_skip([], "emom_kb_swing_5m", NOW)

    prescription = prescribe_next(catalog, _context(history))

    assert prescription.category == CATEGORY_GTG


def test_mobility_rotation_alternates_between_definitions():
    catalog = build_default_catalog()
    state = UserMicrodoseState()
    seen = []

    for _ in range(4):
        prescription = prescribe_next(catalog, _context(state=state), CATEGORY_MOBILITY)
        seen.append(prescription.definition.id)
        state.last_mobility_definition_id = prescription.definition.id

    assert seen == [
        "mobility_hip_cars",
        "mobility_shoulder_cars",
        "mobility_hip_cars",
        "mobility_shoulder_cars",
    ]


def test_unknown_last_mobility_id_starts_from_first():
    catalog = build_default_catalog()
    state = UserMicrodoseState(last_mobility_definition_id="mobility_retired")
    chosen = select_definition(catalog, _context(state=state), CATEGORY_MOBILITY)
    assert chosen.id == "mobility_hip_cars"


def test_missing_category_falls_back_in_order():
    catalog = _catalog_without(CATEGORY_GTG)

    prescription = prescribe_next(catalog, _context(), CATEGORY_GTG)
    assert prescription.category == CATEGORY_VO2

    only_mobility = _catalog_without(CATEGORY_GTG, CATEGORY_VO2)
    prescription = prescribe_next(only_mobility, _context(), CATEGORY_VO2)
    assert prescription.category == CATEGORY_MOBILITY


def test_empty_catalog_raises_no_categories():
    with pytest.raises(NoCategoriesAvailable, match="No microdoses available in catalog"):
        prescribe_next(Catalog(), _context())


def test_select_definition_raises_for_empty_category():
    with pytest.raises(NoCandidatesInCategory):
        select_definition(_catalog_without(CATEGORY_GTG), _context(), CATEGORY_GTG)


def test_compute_intensity_prefers_progression_state():
    catalog = build_default_catalog()
    definition = catalog.get_definition("gtg_pullup_band")

    assert compute_intensity(definition, _context()) == (3, MovementStyle.band("red"))

    state = UserMicrodoseState(progressions={"gtg_pullup_band": ProgressionState(reps=6, style=MovementStyle.band("blue"))})
    assert compute_intensity(definition, _context(state=state)) == (6, MovementStyle.band("blue"))


def test_compute_intensity_without_blocks_uses_fallback():
    bare = MicrodoseDefinition(
        id="vo2_bare",
        name="Bare",
        category=CATEGORY_VO2,
        suggested_duration_seconds=60,
        gtg_friendly=False,
    )
    assert compute_intensity(bare, _context()) == (3, MovementStyle.none())


def test_prescription_does_not_touch_state():
    catalog = build_default_catalog()
    state = UserMicrodoseState()

    prescribe_next(catalog, _context(state=state))

    assert state.progressions == {}
    assert state.last_mobility_definition_id is None
