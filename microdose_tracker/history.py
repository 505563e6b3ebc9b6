from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .catalog import Catalog
from .models import (
    CATEGORY_GTG,
    CATEGORY_MOBILITY,
    CATEGORY_VO2,
    HistoryEntry,
    RealSession,
    SessionRecord,
    ShownButSkipped,
    utc_now,
)
from .storage import read_rollup, read_sessions

LOGGER = logging.getLogger(__name__)


def load_recent_sessions(
    log_path: Path,
    csv_path: Path,
    days: int = 7,
    *,
    now: Optional[datetime] = None,
) -> List[SessionRecord]:
    """
    Load sessions from the last ``days`` days out of the log and the rollup.

    The log is read first, so a record present in both is taken from the log.
    The result is deduplicated by id and sorted newest first.
    """
    cutoff = (now or utc_now()) - timedelta(days=days)
    sessions: List[SessionRecord] = []
    seen: set[str] = set()

    for source in (read_sessions(log_path), read_rollup(csv_path)):
        for session in source:
            if session.performed_at < cutoff or session.id in seen:
                continue
            seen.add(session.id)
            sessions.append(session)

    sessions.sort(key=lambda session: session.performed_at, reverse=True)
    LOGGER.info("Loaded %s sessions from the last %s days", len(sessions), days)
    return sessions


def to_history(sessions: Iterable[SessionRecord]) -> List[HistoryEntry]:
    return [RealSession(session) for session in sessions]


def with_skip(history: Sequence[HistoryEntry], definition_id: str, shown_at: datetime) -> List[HistoryEntry]:
    """Return a new history with a skipped prescription at the front."""
    return [ShownButSkipped(definition_id=definition_id, shown_at=shown_at), *history]


def real_sessions(history: Iterable[HistoryEntry]) -> List[SessionRecord]:
    return [entry.session for entry in history if isinstance(entry, RealSession)]


def infer_category(definition_id: str, catalog: Optional[Catalog] = None) -> Optional[str]:
    """Category of a definition id: catalog first, then the id's naming pattern."""
    if catalog is not None:
        definition = catalog.get_definition(definition_id)
        if definition is not None:
            return definition.category
    if CATEGORY_VO2 in definition_id or "emom" in definition_id:
        return CATEGORY_VO2
    if CATEGORY_GTG in definition_id:
        return CATEGORY_GTG
    if CATEGORY_MOBILITY in definition_id:
        return CATEGORY_MOBILITY
    return None


def find_last_by_category(
    history: Sequence[HistoryEntry],
    category: str,
    catalog: Optional[Catalog] = None,
) -> Optional[HistoryEntry]:
    """Newest entry in ``category``; ``history`` is expected newest first."""
    for entry in history:
        if infer_category(entry.definition_id, catalog) == category:
            return entry
    return None
