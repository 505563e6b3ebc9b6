"""
Prescription engine.

Category rules, in order of precedence:

1. a lower-body strength session less than 24h ago -> GTG;
2. the last VO2 entry is more than 4h old -> VO2;
3. otherwise rotate VO2 -> GTG -> Mobility after the newest history entry.

The engine only reads progression state; escalation goes through
``progression.increase_intensity``.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from .catalog import Catalog
from .history import find_last_by_category, infer_category
from .models import (
    CATEGORIES,
    CATEGORY_GTG,
    CATEGORY_MOBILITY,
    CATEGORY_VO2,
    MicrodoseDefinition,
    MovementStyle,
    PrescribedMicrodose,
    UserContext,
)

LOGGER = logging.getLogger(__name__)

STRENGTH_OVERRIDE_WINDOW = timedelta(hours=24)
VO2_STALE_AFTER = timedelta(hours=4)
FALLBACK_REPS = 3

_NEXT_CATEGORY = {
    CATEGORY_VO2: CATEGORY_GTG,
    CATEGORY_GTG: CATEGORY_MOBILITY,
    CATEGORY_MOBILITY: CATEGORY_VO2,
}


class PrescriptionError(Exception):
    """The engine could not produce a prescription."""


class NoCategoriesAvailable(PrescriptionError):
    def __init__(self) -> None:
        super().__init__("No microdoses available in catalog")


class NoCandidatesInCategory(PrescriptionError):
    def __init__(self, category: str) -> None:
        super().__init__(f"No microdoses found in category {category}")
        self.category = category


def determine_category(context: UserContext, catalog: Optional[Catalog] = None) -> str:
    signal = context.strength_signal
    if signal is not None:
        since_strength = context.now - signal.last_session_at
        if since_strength < STRENGTH_OVERRIDE_WINDOW and signal.is_lower_body:
            LOGGER.info(
                "Recent lower-body strength detected (%.0f hours ago), preferring GTG",
                since_strength.total_seconds() / 3600,
            )
            return CATEGORY_GTG

    last_vo2 = find_last_by_category(context.recent_history, CATEGORY_VO2, catalog)
    if last_vo2 is not None:
        since_vo2 = context.now - last_vo2.timestamp
        if since_vo2 > VO2_STALE_AFTER:
            LOGGER.info(
                "Last VO2 session was %.0f hours ago (> 4h), prescribing VO2",
                since_vo2.total_seconds() / 3600,
            )
            return CATEGORY_VO2

    last_category = None
    if context.recent_history:
        last_category = infer_category(context.recent_history[0].definition_id, catalog)
    next_category = _NEXT_CATEGORY.get(last_category or "", CATEGORY_VO2)
    LOGGER.info("Round-robin selection: %s", next_category)
    return next_category


def resolve_category(catalog: Catalog, category: str) -> str:
    """Fall back through VO2, GTG, Mobility when ``category`` has no definitions."""
    if catalog.has_category(category):
        return category
    LOGGER.warning("Category %s not found in catalog, trying fallbacks", category)
    for fallback in CATEGORIES:
        if catalog.has_category(fallback):
            LOGGER.info("Using fallback category: %s", fallback)
            return fallback
    raise NoCategoriesAvailable()


def select_definition(catalog: Catalog, context: UserContext, category: str) -> MicrodoseDefinition:
    candidates = catalog.definitions_in(category)
    if not candidates:
        raise NoCandidatesInCategory(category)

    if category == CATEGORY_VO2:
        last_vo2 = find_last_by_category(context.recent_history, CATEGORY_VO2, catalog)
        if last_vo2 is not None:
            for candidate in candidates:
                if candidate.id != last_vo2.definition_id:
                    return candidate
        return candidates[0]

    if category == CATEGORY_MOBILITY:
        last_id = context.user_state.last_mobility_definition_id
        ids = [candidate.id for candidate in candidates]
        if last_id in ids:
            return candidates[(ids.index(last_id) + 1) % len(candidates)]
        return candidates[0]

    return candidates[0]


def compute_intensity(definition: MicrodoseDefinition, context: UserContext) -> tuple[int, MovementStyle]:
    state = context.user_state.progressions.get(definition.id)
    if state is not None:
        return state.reps, state.style

    if not definition.blocks:
        return FALLBACK_REPS, MovementStyle.none()
    block = definition.blocks[0]
    reps = block.default_reps
    return (reps if reps is not None else FALLBACK_REPS), block.style


def prescribe_next(
    catalog: Catalog,
    context: UserContext,
    category: Optional[str] = None,
) -> PrescribedMicrodose:
    """
    Pick the next microdose and its intensity.

    Raises ``PrescriptionError`` when the catalog cannot satisfy the request.
    """
    chosen = category or determine_category(context, catalog)
    chosen = resolve_category(catalog, chosen)
    LOGGER.info("Prescribing microdose from category: %s", chosen)

    definition = select_definition(catalog, context, chosen)
    reps, style = compute_intensity(definition, context)
    return PrescribedMicrodose(definition=definition, reps=reps, style=style)
