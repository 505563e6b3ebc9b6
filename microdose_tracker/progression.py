"""
Intensity progression rules.

Each definition id maps to one rule family:

* staged  - reps climb to a ceiling, then the burpee variant changes and reps
            reset to the new stage's base value;
* linear  - reps follow ``base + level + 1`` up to a configured maximum;
* capped  - reps climb by one up to a fixed maximum (band choice stays manual).

Policy at the top of each family: linear and capped calls become full no-ops
once reps reach the maximum (``level`` stops too), while the staged family
keeps advancing ``level`` at its terminal stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import MutableMapping, Optional

from .catalog import Catalog
from .config import ProgressionConfig
from .models import (
    BURPEE_FOUR_COUNT,
    BURPEE_SEAL,
    BURPEE_SIX_COUNT,
    BURPEE_SIX_COUNT_TWO_PUMP,
    STYLE_BURPEE,
    MovementStyle,
    ProgressionState,
    RepsMetric,
    utc_now,
)

LOGGER = logging.getLogger(__name__)

FAMILY_STAGED = "staged"
FAMILY_LINEAR = "linear"
FAMILY_CAPPED = "capped"
FAMILY_NONE = "none"

# stage -> (next stage, reps to restart at)
STAGE_TRANSITIONS: dict[str, tuple[str, int]] = {
    BURPEE_FOUR_COUNT: (BURPEE_SIX_COUNT, 6),
    BURPEE_SIX_COUNT: (BURPEE_SIX_COUNT_TWO_PUMP, 5),
    BURPEE_SIX_COUNT_TWO_PUMP: (BURPEE_SEAL, 4),
}
TERMINAL_STAGE = BURPEE_SEAL
LADDER_RESTART: tuple[str, int] = (BURPEE_FOUR_COUNT, 3)

LINEAR_BASE_REPS = 5
CAPPED_MAX_REPS = 8
GENERIC_SEED_REPS = 3


@dataclass(frozen=True)
class RuleSpec:
    family: str
    seed_reps: int
    seed_style: MovementStyle = MovementStyle()


PROGRESSION_RULES: dict[str, RuleSpec] = {
    "emom_burpee_5m": RuleSpec(FAMILY_STAGED, 3, MovementStyle.burpee(BURPEE_FOUR_COUNT)),
    "emom_kb_swing_5m": RuleSpec(FAMILY_LINEAR, LINEAR_BASE_REPS),
    "gtg_pullup_band": RuleSpec(FAMILY_CAPPED, 3),
}
GENERIC_RULE = RuleSpec(FAMILY_NONE, GENERIC_SEED_REPS)


def _touch(state: ProgressionState, now: Optional[datetime]) -> None:
    state.level += 1
    state.last_upgraded_at = now or utc_now()


def upgrade_staged(state: ProgressionState, ceiling: int, *, now: Optional[datetime] = None) -> None:
    """Climb reps to ``ceiling``, then move one rung up the burpee ladder."""
    if state.reps < ceiling:
        state.reps += 1
        _touch(state, now)
        LOGGER.debug("Staged progression: reps -> %s", state.reps)
        return

    stage = state.style.value if state.style.kind == STYLE_BURPEE else None
    if stage == TERMINAL_STAGE:
        state.reps = ceiling
        _touch(state, now)
        LOGGER.debug("Staged progression: at terminal stage %s @ %s", TERMINAL_STAGE, ceiling)
        return

    next_stage, reset_reps = STAGE_TRANSITIONS.get(stage or "", LADDER_RESTART)
    state.style = MovementStyle.burpee(next_stage)
    state.reps = reset_reps
    _touch(state, now)
    LOGGER.debug("Staged progression: stage -> %s, reps reset to %s", next_stage, reset_reps)


def upgrade_linear(
    state: ProgressionState,
    base_reps: int,
    max_reps: int,
    *,
    now: Optional[datetime] = None,
) -> None:
    """``reps = min(base + level + 1, max)``; nothing changes once at ``max``."""
    if state.reps >= max_reps:
        LOGGER.debug("Linear progression: already at max (%s reps)", max_reps)
        return
    state.reps = min(base_reps + state.level + 1, max_reps)
    _touch(state, now)
    LOGGER.debug("Linear progression: reps -> %s", state.reps)


def upgrade_capped(state: ProgressionState, max_reps: int, *, now: Optional[datetime] = None) -> None:
    if state.reps >= max_reps:
        LOGGER.debug("Capped progression: already at max (%s reps)", max_reps)
        return
    state.reps += 1
    _touch(state, now)
    LOGGER.debug("Capped progression: reps -> %s", state.reps)


def rule_for(definition_id: str) -> RuleSpec:
    return PROGRESSION_RULES.get(definition_id, GENERIC_RULE)


def _seed_state(definition_id: str, rule: RuleSpec, catalog: Optional[Catalog]) -> ProgressionState:
    reps, style = rule.seed_reps, rule.seed_style
    definition = catalog.get_definition(definition_id) if catalog is not None else None
    if definition is not None and definition.blocks:
        block = definition.blocks[0]
        if block.default_reps is not None:
            reps = block.default_reps
        style = block.style
    return ProgressionState(reps=reps, style=style)


def _capped_max(definition_id: str, catalog: Optional[Catalog]) -> int:
    definition = catalog.get_definition(definition_id) if catalog is not None else None
    if definition is not None and definition.blocks:
        for metric in definition.blocks[0].metrics:
            if isinstance(metric, RepsMetric):
                return metric.max
    return CAPPED_MAX_REPS


def increase_intensity(
    definition_id: str,
    progressions: MutableMapping[str, ProgressionState],
    config: ProgressionConfig,
    *,
    catalog: Optional[Catalog] = None,
    now: Optional[datetime] = None,
) -> ProgressionState:
    """
    Escalate the stored intensity for ``definition_id``.

    Seeds an entry on first use, so ``progressions`` always holds one for the
    id afterwards. Unknown ids get a generic seed and are otherwise left alone.
    Mutates only the caller's mapping and performs no I/O.
    """
    rule = rule_for(definition_id)
    if rule.family == FAMILY_NONE:
        LOGGER.warning("Unknown definition ID for progression: %s", definition_id)

    state = progressions.get(definition_id)
    if state is None:
        state = _seed_state(definition_id, rule, catalog)
        progressions[definition_id] = state

    if rule.family == FAMILY_STAGED:
        upgrade_staged(state, config.staged_ceiling, now=now)
    elif rule.family == FAMILY_LINEAR:
        upgrade_linear(state, LINEAR_BASE_REPS, config.linear_max, now=now)
    elif rule.family == FAMILY_CAPPED:
        upgrade_capped(state, _capped_max(definition_id, catalog), now=now)

    LOGGER.info(
        "Increased intensity for %s: level %s, %s reps", definition_id, state.level, state.reps
    )
    return state
