from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .catalog import Catalog, category_label
from .config import AppConfig
from .engine import prescribe_next
from .history import load_recent_sessions, to_history, with_skip
from .models import (
    CATEGORIES,
    CATEGORY_MOBILITY,
    HistoryEntry,
    PrescribedMicrodose,
    ProgressionState,
    SessionRecord,
    UserContext,
    UserMicrodoseState,
    ValidationError,
    utc_now,
)
from .progression import increase_intensity
from .storage import append_session, load_state, save_state
from .strength import load_strength_signal

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataPaths:
    data_dir: Path
    log_path: Path
    state_path: Path
    csv_path: Path
    strength_path: Path

    @classmethod
    def from_dir(cls, data_dir: Path) -> "DataPaths":
        wal_dir = data_dir / "wal"
        return cls(
            data_dir=data_dir,
            log_path=wal_dir / "microdose_sessions.wal",
            state_path=wal_dir / "state.json",
            csv_path=data_dir / "sessions.csv",
            strength_path=data_dir / "strength" / "signal.json",
        )

    @property
    def wal_dir(self) -> Path:
        return self.log_path.parent


def parse_category(value: Optional[str]) -> Optional[str]:
    """Normalise a user-supplied category name; ``None``/empty means "let the engine decide"."""
    text = (value or "").strip().lower()
    if not text:
        return None
    if text not in CATEGORIES:
        raise ValidationError(f"category must be one of {', '.join(CATEGORIES)}; received {value!r}.")
    return text


@dataclass(frozen=True)
class CompletionResult:
    """Outcome of marking a prescription as done."""

    session: SessionRecord
    prescription: PrescribedMicrodose

    @property
    def confirmation(self) -> str:
        return f"Logged {self.prescription.definition.name} ({self.prescription.reps} reps)."


@dataclass
class MicrodoseSession:
    """
    One show -> done / skip / harder cycle.

    Holds the loaded state and recent history in memory. Skips only touch the
    in-memory history; completions and upgrades are written through storage.
    """

    paths: DataPaths
    config: AppConfig
    catalog: Catalog
    now: datetime
    user_state: UserMicrodoseState = field(default_factory=UserMicrodoseState)
    history: List[HistoryEntry] = field(default_factory=list)
    context: Optional[UserContext] = None
    prescription: Optional[PrescribedMicrodose] = None
    category: Optional[str] = None

    @classmethod
    def load(
        cls,
        paths: DataPaths,
        config: AppConfig,
        catalog: Catalog,
        *,
        now: Optional[datetime] = None,
    ) -> "MicrodoseSession":
        moment = now or utc_now()
        user_state = load_state(paths.state_path)
        sessions = load_recent_sessions(paths.log_path, paths.csv_path, config.history_days, now=moment)
        session = cls(
            paths=paths,
            config=config,
            catalog=catalog,
            now=moment,
            user_state=user_state,
            history=to_history(sessions),
        )
        session.context = UserContext(
            now=moment,
            user_state=user_state,
            recent_history=session.history,
            strength_signal=load_strength_signal(paths.strength_path),
            equipment=config.equipment,
        )
        return session

    def _require_context(self) -> UserContext:
        if self.context is None:
            raise RuntimeError("MicrodoseSession.load() must be called first.")
        return self.context

    def _require_prescription(self) -> PrescribedMicrodose:
        if self.prescription is None:
            raise RuntimeError("No prescription to act on; call prescribe() first.")
        return self.prescription

    def prescribe(self, category: Optional[str] = None) -> PrescribedMicrodose:
        """Compute the next prescription; raises ``PrescriptionError`` if none is possible."""
        self.category = category
        self.prescription = prescribe_next(self.catalog, self._require_context(), category)
        return self.prescription

    def complete(self, *, perceived_effort: Optional[int] = None) -> CompletionResult:
        prescription = self._require_prescription()
        definition = prescription.definition
        record = SessionRecord.create(
            definition.id,
            performed_at=self.now,
            started_at=self.now,
            completed_at=self.now,
            actual_duration_seconds=definition.suggested_duration_seconds,
            perceived_effort=perceived_effort,
        )
        append_session(self.paths.log_path, record)

        if (
            definition.category == CATEGORY_MOBILITY
            and self.user_state.last_mobility_definition_id != definition.id
        ):
            self.user_state.last_mobility_definition_id = definition.id
            save_state(self.paths.state_path, self.user_state)
        LOGGER.info("Completed %s (session %s)", definition.id, record.id)
        return CompletionResult(session=record, prescription=prescription)

    def skip(self) -> PrescribedMicrodose:
        """Record the current prescription as skipped (in memory) and pick another."""
        prescription = self._require_prescription()
        context = self._require_context()
        self.history = with_skip(self.history, prescription.definition.id, self.now)
        context.recent_history = self.history
        LOGGER.info("Skipped %s", prescription.definition.id)
        return self.prescribe(self.category)

    def mark_harder(self) -> ProgressionState:
        prescription = self._require_prescription()
        state = increase_intensity(
            prescription.definition.id,
            self.user_state.progressions,
            self.config.progression,
            catalog=self.catalog,
            now=self.now,
        )
        save_state(self.paths.state_path, self.user_state)
        return state


def render_prescription(prescription: PrescribedMicrodose, catalog: Catalog) -> str:
    definition = prescription.definition
    lines = [
        f"{category_label(definition.category).upper()} MICRODOSE",
        "",
        f"  {definition.name}",
        f"  Duration: ~{definition.suggested_duration_seconds} seconds "
        f"({definition.suggested_duration_seconds / 60:.1f} min)",
        "",
    ]
    for block in definition.blocks:
        movement = catalog.movements.get(block.movement_id)
        label = movement.name if movement else block.movement_id
        lines.append(f"  -> {label}: {prescription.reps} reps")
        break
    if prescription.style.label != "Default":
        lines.append(f"  -> {prescription.style.label}")

    reference = definition.reference_url
    if reference is None and definition.blocks:
        movement = catalog.movements.get(definition.blocks[0].movement_id)
        reference = movement.reference_url if movement else None
    if reference:
        lines.extend(["", f"  Reference: {reference}"])
    return "\n".join(lines)
