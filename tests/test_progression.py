from __future__ import annotations

from datetime import datetime, timezone

import pytest

from microdose_tracker.catalog import build_default_catalog
from microdose_tracker.config import ProgressionConfig
from microdose_tracker.models import (
    BURPEE_FOUR_COUNT,
    BURPEE_SEAL,
    BURPEE_SIX_COUNT,
    BURPEE_SIX_COUNT_TWO_PUMP,
    MovementStyle,
    ProgressionState,
)
from microdose_tracker.progression import increase_intensity, upgrade_staged

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
CONFIG = ProgressionConfig()


def test_linear_progression_stops_at_configured_max():
    progressions: dict[str, ProgressionState] = {}

    for _ in range(10):
        increase_intensity("emom_kb_swing_5m", progressions, CONFIG, now=NOW)

    state = progressions["emom_kb_swing_5m"]
    assert state.reps == 15
    assert state.level == 10
    assert state.last_upgraded_at == NOW

    later = datetime(2024, 5, 2, tzinfo=timezone.utc)
    increase_intensity("emom_kb_swing_5m", progressions, CONFIG, now=later)
    assert state.reps == 15
    assert state.level == 10
    assert state.last_upgraded_at == NOW


def test_linear_progression_respects_custom_max():
    progressions: dict[str, ProgressionState] = {}
    for _ in range(6):
        increase_intensity("emom_kb_swing_5m", progressions, ProgressionConfig(linear_max=8), now=NOW)

    assert progressions["emom_kb_swing_5m"].reps == 8
    assert progressions["emom_kb_swing_5m"].level == 3


def test_staged_progression_walks_the_burpee_ladder():
    progressions: dict[str, ProgressionState] = {}

    def upgrade(times: int) -> ProgressionState:
        for _ in range(times):
            increase_intensity("emom_burpee_5m", progressions, CONFIG, now=NOW)
        return progressions["emom_burpee_5m"]

    state = upgrade(7)
    assert (state.reps, state.style) == (10, MovementStyle.burpee(BURPEE_FOUR_COUNT))

    state = upgrade(1)
    assert (state.reps, state.style) == (6, MovementStyle.burpee(BURPEE_SIX_COUNT))

    state = upgrade(5)
    assert (state.reps, state.style) == (5, MovementStyle.burpee(BURPEE_SIX_COUNT_TWO_PUMP))

    state = upgrade(6)
    assert (state.reps, state.style) == (4, MovementStyle.burpee(BURPEE_SEAL))

    state = upgrade(6)
    assert (state.reps, state.style) == (10, MovementStyle.burpee(BURPEE_SEAL))
    level_at_top = state.level

    state = upgrade(1)
    assert (state.reps, state.style) == (10, MovementStyle.burpee(BURPEE_SEAL))
    assert state.level == level_at_top + 1


def test_staged_progression_restarts_ladder_for_foreign_style():
    state = ProgressionState(reps=10, style=MovementStyle.band("red"))

    upgrade_staged(state, 10, now=NOW)

    assert state.style == MovementStyle.burpee(BURPEE_FOUR_COUNT)
    assert state.reps == 3
    assert state.level == 1


def test_capped_progression_uses_catalog_seed_and_stops_at_eight():
    catalog = build_default_catalog()
    progressions: dict[str, ProgressionState] = {}

    for _ in range(5):
        increase_intensity("gtg_pullup_band", progressions, CONFIG, catalog=catalog, now=NOW)

    state = progressions["gtg_pullup_band"]
    assert state.reps == 8
    assert state.level == 5
    assert state.style == MovementStyle.band("red")

    increase_intensity("gtg_pullup_band", progressions, CONFIG, catalog=catalog, now=NOW)
    assert state.reps == 8
    assert state.level == 5


def test_unknown_definition_is_seeded_and_left_alone(caplog):
    progressions: dict[str, ProgressionState] = {}

    with caplog.at_level("WARNING"):
        state = increase_intensity("mystery_drill", progressions, CONFIG, now=NOW)

    assert "Unknown definition ID for progression: mystery_drill" in caplog.text
    assert progressions["mystery_drill"] is state
    assert state.reps == 3
    assert state.style == MovementStyle.none()
    assert state.level == 0
    assert state.last_upgraded_at is None


def test_existing_state_is_upgraded_in_place():
    existing = ProgressionState(reps=7, level=2)
    progressions = {"emom_kb_swing_5m": existing}

    increase_intensity("emom_kb_swing_5m", progressions, CONFIG, now=NOW)

    assert progressions["emom_kb_swing_5m"] is existing
    assert existing.reps == 8
    assert existing.level == 3


@pytest.mark.parametrize("definition_id", ["emom_kb_swing_5m", "emom_burpee_5m", "gtg_pullup_band"])
def test_upgrades_never_lower_reps_below_seed(definition_id):
    progressions: dict[str, ProgressionState] = {}
    catalog = build_default_catalog()
    increase_intensity(definition_id, progressions, CONFIG, catalog=catalog, now=NOW)
    assert progressions[definition_id].reps > catalog.get_definition(definition_id).blocks[0].default_reps
