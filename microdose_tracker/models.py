from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

CATEGORY_VO2 = "vo2"
CATEGORY_GTG = "gtg"
CATEGORY_MOBILITY = "mobility"
CATEGORIES: tuple[str, ...] = (CATEGORY_VO2, CATEGORY_GTG, CATEGORY_MOBILITY)

MOVEMENT_KINDS: tuple[str, ...] = ("kettlebell_swing", "burpee", "pullup", "mobility_drill")

STYLE_NONE = "none"
STYLE_BURPEE = "burpee"
STYLE_BAND = "band"
STYLE_KINDS: tuple[str, ...] = (STYLE_NONE, STYLE_BURPEE, STYLE_BAND)

BURPEE_FOUR_COUNT = "four_count"
BURPEE_SIX_COUNT = "six_count"
BURPEE_SIX_COUNT_TWO_PUMP = "six_count_two_pump"
BURPEE_SEAL = "seal"
BURPEE_STAGES: tuple[str, ...] = (
    BURPEE_FOUR_COUNT,
    BURPEE_SIX_COUNT,
    BURPEE_SIX_COUNT_TWO_PUMP,
    BURPEE_SEAL,
)

STRENGTH_LOWER = "lower"
STRENGTH_UPPER = "upper"
STRENGTH_FULL = "full"

__all__ = [
    "CATEGORIES",
    "ValidationError",
    "parse_timestamp",
    "format_timestamp",
    "coerce_optional_int",
    "MovementStyle",
    "Movement",
    "RepsMetric",
    "BandMetric",
    "MetricSpec",
    "metric_from_dict",
    "MicrodoseBlock",
    "MicrodoseDefinition",
    "ProgressionState",
    "SessionRecord",
    "RealSession",
    "ShownButSkipped",
    "HistoryEntry",
    "UserMicrodoseState",
    "ExternalStrengthSignal",
    "UserContext",
    "PrescribedMicrodose",
]


class ValidationError(ValueError):
    """Raised when persisted or user-supplied data cannot be normalised safely."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any, *, field: str = "timestamp") -> datetime:
    """
    Parse ISO-8601 timestamps into timezone-aware UTC datetimes.

    Naive values are assumed to be UTC. A trailing ``Z`` is accepted on every
    supported Python version.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            raise ValidationError(f"{field} cannot be empty.")
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise ValidationError(
                f"{field} must be an ISO-8601 timestamp; received {value!r}."
            ) from exc
    else:
        raise ValidationError(f"{field} must be an ISO-8601 timestamp; received {value!r}.")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_optional_timestamp(value: Any, *, field: str = "timestamp") -> Optional[datetime]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_timestamp(value, field=field)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def coerce_optional_int(
    value: Any,
    *,
    field: str = "value",
    minimum: int | None = None,
    maximum: int | None = None,
) -> Optional[int]:
    """
    Convert optional numeric input into an int with inclusive bounds.

    ``None``, empty strings and NaN (as produced by pandas for empty CSV
    cells) all map to ``None``.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a whole number; received {value!r}.")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            number = float(stripped)
        except ValueError as exc:
            raise ValidationError(f"{field} must be a whole number; received {value!r}.") from exc
    elif isinstance(value, (int, float)):
        number = float(value)
    else:
        raise ValidationError(f"{field} must be a whole number; received {value!r}.")

    if number != number:  # NaN
        return None
    if number != round(number):
        raise ValidationError(f"{field} must be a whole number; received {value!r}.")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}; received {int(number)}.")
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be <= {maximum}; received {int(number)}.")
    return int(number)


def _require_text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required.")
    return value


def _require_int(payload: Mapping[str, Any], key: str) -> int:
    value = coerce_optional_int(payload.get(key), field=key)
    if value is None:
        raise ValidationError(f"{key} is required.")
    return value


@dataclass(frozen=True)
class MovementStyle:
    """Variant of a movement: plain, a burpee stage, or a resistance band."""

    kind: str = STYLE_NONE
    value: Optional[str] = None

    @classmethod
    def none(cls) -> "MovementStyle":
        return cls(STYLE_NONE)

    @classmethod
    def burpee(cls, stage: str) -> "MovementStyle":
        return cls(STYLE_BURPEE, stage)

    @classmethod
    def band(cls, colour: Optional[str] = None) -> "MovementStyle":
        return cls(STYLE_BAND, colour)

    @property
    def label(self) -> str:
        if self.kind == STYLE_BURPEE and self.value:
            return f"Burpee: {self.value.replace('_', ' ')}"
        if self.kind == STYLE_BAND:
            return f"Band: {self.value}" if self.value else "Band: none"
        return "Default"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind}
        if self.value is not None:
            payload["value"] = self.value
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> "MovementStyle":
        if payload is None:
            return cls.none()
        if not isinstance(payload, Mapping):
            raise ValidationError(f"style must be an object; received {payload!r}.")
        kind = payload.get("kind", STYLE_NONE)
        if kind not in STYLE_KINDS:
            raise ValidationError(f"style kind must be one of {STYLE_KINDS}; received {kind!r}.")
        value = payload.get("value")
        if kind == STYLE_BURPEE and value not in BURPEE_STAGES:
            raise ValidationError(f"burpee stage must be one of {BURPEE_STAGES}; received {value!r}.")
        return cls(kind, value if value is None else str(value))


@dataclass(frozen=True)
class Movement:
    id: str
    name: str
    kind: str
    default_style: MovementStyle = MovementStyle()
    tags: tuple[str, ...] = ()
    reference_url: Optional[str] = None


@dataclass(frozen=True)
class RepsMetric:
    key: str
    default: int
    min: int
    max: int
    step: int = 1
    progressable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "reps",
            "key": self.key,
            "default": self.default,
            "min": self.min,
            "max": self.max,
            "step": self.step,
            "progressable": self.progressable,
        }


@dataclass(frozen=True)
class BandMetric:
    key: str
    default: str
    progressable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "band",
            "key": self.key,
            "default": self.default,
            "progressable": self.progressable,
        }


MetricSpec = Union[RepsMetric, BandMetric]


def metric_from_dict(payload: Any) -> MetricSpec:
    if not isinstance(payload, Mapping):
        raise ValidationError(f"metric must be an object; received {payload!r}.")
    metric_type = payload.get("type")
    if metric_type == "reps":
        return RepsMetric(
            key=_require_text(payload, "key"),
            default=_require_int(payload, "default"),
            min=_require_int(payload, "min"),
            max=_require_int(payload, "max"),
            step=coerce_optional_int(payload.get("step"), field="step") or 1,
            progressable=bool(payload.get("progressable", False)),
        )
    if metric_type == "band":
        return BandMetric(
            key=_require_text(payload, "key"),
            default=str(payload.get("default") or ""),
            progressable=bool(payload.get("progressable", False)),
        )
    raise ValidationError(f"metric type must be 'reps' or 'band'; received {metric_type!r}.")


@dataclass(frozen=True)
class MicrodoseBlock:
    movement_id: str
    style: MovementStyle
    duration_hint_seconds: int
    metrics: tuple[MetricSpec, ...] = ()

    @property
    def default_reps(self) -> Optional[int]:
        for metric in self.metrics:
            if isinstance(metric, RepsMetric):
                return metric.default
        return None


@dataclass(frozen=True)
class MicrodoseDefinition:
    id: str
    name: str
    category: str
    suggested_duration_seconds: int
    gtg_friendly: bool
    blocks: tuple[MicrodoseBlock, ...] = ()
    reference_url: Optional[str] = None


@dataclass
class ProgressionState:
    """Current intensity for one definition; mutated only by the progression rules."""

    reps: int
    style: MovementStyle = MovementStyle()
    level: int = 0
    last_upgraded_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reps": self.reps,
            "style": self.style.to_dict(),
            "level": self.level,
            "last_upgraded_at": format_timestamp(self.last_upgraded_at),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "ProgressionState":
        if not isinstance(payload, Mapping):
            raise ValidationError(f"progression entry must be an object; received {payload!r}.")
        return cls(
            reps=_require_int(payload, "reps"),
            style=MovementStyle.from_dict(payload.get("style")),
            level=coerce_optional_int(payload.get("level"), field="level", minimum=0) or 0,
            last_upgraded_at=parse_optional_timestamp(
                payload.get("last_upgraded_at"), field="last_upgraded_at"
            ),
        )


@dataclass(frozen=True)
class SessionRecord:
    """A performed microdose. Created once, appended once, never edited."""

    id: str
    definition_id: str
    performed_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    actual_duration_seconds: Optional[int] = None
    realized_metrics: tuple[MetricSpec, ...] = ()
    perceived_effort: Optional[int] = None
    avg_heart_rate: Optional[int] = None
    max_heart_rate: Optional[int] = None

    @classmethod
    def create(cls, definition_id: str, performed_at: datetime | None = None, **kwargs: Any) -> "SessionRecord":
        """Build a record with a fresh globally unique id."""
        return cls(
            id=str(uuid.uuid4()),
            definition_id=definition_id,
            performed_at=performed_at or utc_now(),
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Make the session JSON serialisable."""
        return {
            "id": self.id,
            "definition_id": self.definition_id,
            "performed_at": format_timestamp(self.performed_at),
            "started_at": format_timestamp(self.started_at),
            "completed_at": format_timestamp(self.completed_at),
            "actual_duration_seconds": self.actual_duration_seconds,
            "realized_metrics": [metric.to_dict() for metric in self.realized_metrics],
            "perceived_effort": self.perceived_effort,
            "avg_heart_rate": self.avg_heart_rate,
            "max_heart_rate": self.max_heart_rate,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "SessionRecord":
        if not isinstance(payload, Mapping):
            raise ValidationError(f"session must be an object; received {payload!r}.")
        raw_id = _require_text(payload, "id")
        try:
            session_id = str(uuid.UUID(raw_id))
        except ValueError as exc:
            raise ValidationError(f"id must be a UUID; received {raw_id!r}.") from exc
        metrics_raw = payload.get("realized_metrics") or []
        if not isinstance(metrics_raw, list):
            raise ValidationError("realized_metrics must be a list.")
        return cls(
            id=session_id,
            definition_id=_require_text(payload, "definition_id"),
            performed_at=parse_timestamp(payload.get("performed_at"), field="performed_at"),
            started_at=parse_optional_timestamp(payload.get("started_at"), field="started_at"),
            completed_at=parse_optional_timestamp(payload.get("completed_at"), field="completed_at"),
            actual_duration_seconds=coerce_optional_int(
                payload.get("actual_duration_seconds"), field="actual_duration_seconds", minimum=0
            ),
            realized_metrics=tuple(metric_from_dict(item) for item in metrics_raw),
            perceived_effort=coerce_optional_int(
                payload.get("perceived_effort"), field="perceived_effort", minimum=1, maximum=10
            ),
            avg_heart_rate=coerce_optional_int(
                payload.get("avg_heart_rate"), field="avg_heart_rate", minimum=0, maximum=255
            ),
            max_heart_rate=coerce_optional_int(
                payload.get("max_heart_rate"), field="max_heart_rate", minimum=0, maximum=255
            ),
        )


@dataclass(frozen=True)
class RealSession:
    """History entry for a performed session; the only kind that is ever persisted."""

    session: SessionRecord

    @property
    def definition_id(self) -> str:
        return self.session.definition_id

    @property
    def timestamp(self) -> datetime:
        return self.session.performed_at


@dataclass(frozen=True)
class ShownButSkipped:
    """A prescription that was displayed and declined. Lives in memory only."""

    definition_id: str
    shown_at: datetime

    @property
    def timestamp(self) -> datetime:
        return self.shown_at


HistoryEntry = Union[RealSession, ShownButSkipped]


@dataclass
class UserMicrodoseState:
    progressions: Dict[str, ProgressionState] = field(default_factory=dict)
    last_mobility_definition_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "progressions": {key: value.to_dict() for key, value in sorted(self.progressions.items())},
        }
        if self.last_mobility_definition_id is not None:
            payload["last_mobility_definition_id"] = self.last_mobility_definition_id
        return payload

    @classmethod
    def from_dict(cls, payload: Any) -> "UserMicrodoseState":
        if not isinstance(payload, Mapping):
            raise ValidationError("state snapshot must be a JSON object.")
        progressions_raw = payload.get("progressions") or {}
        if not isinstance(progressions_raw, Mapping):
            raise ValidationError("progressions must be an object keyed by definition id.")
        last_mobility = payload.get("last_mobility_definition_id")
        return cls(
            progressions={
                str(key): ProgressionState.from_dict(value) for key, value in progressions_raw.items()
            },
            last_mobility_definition_id=str(last_mobility) if last_mobility else None,
        )


@dataclass(frozen=True)
class ExternalStrengthSignal:
    """Most recent strength session reported by another system."""

    last_session_at: datetime
    session_type: str

    @property
    def is_lower_body(self) -> bool:
        return self.session_type == STRENGTH_LOWER


@dataclass
class UserContext:
    now: datetime
    user_state: UserMicrodoseState = field(default_factory=UserMicrodoseState)
    recent_history: List[HistoryEntry] = field(default_factory=list)
    strength_signal: Optional[ExternalStrengthSignal] = None
    equipment: tuple[str, ...] = ()


@dataclass(frozen=True)
class PrescribedMicrodose:
    definition: MicrodoseDefinition
    reps: int
    style: MovementStyle

    @property
    def category(self) -> str:
        return self.definition.category
