from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from .models import (
    BURPEE_FOUR_COUNT,
    CATEGORIES,
    CATEGORY_GTG,
    CATEGORY_MOBILITY,
    CATEGORY_VO2,
    MOVEMENT_KINDS,
    BandMetric,
    MicrodoseBlock,
    MicrodoseDefinition,
    Movement,
    MovementStyle,
    RepsMetric,
)

_CATEGORY_LABELS = {
    CATEGORY_VO2: "VO2",
    CATEGORY_GTG: "GTG",
    CATEGORY_MOBILITY: "Mobility",
}


@dataclass(frozen=True)
class Catalog:
    """Immutable set of movements and microdose definitions, keyed by id."""

    movements: Mapping[str, Movement] = field(default_factory=dict)
    microdoses: Mapping[str, MicrodoseDefinition] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "movements", MappingProxyType(dict(self.movements)))
        object.__setattr__(self, "microdoses", MappingProxyType(dict(self.microdoses)))

    @classmethod
    def from_items(
        cls,
        movements: Iterable[Movement],
        microdoses: Iterable[MicrodoseDefinition],
    ) -> "Catalog":
        return cls(
            movements={movement.id: movement for movement in movements},
            microdoses={definition.id: definition for definition in microdoses},
        )

    def get_definition(self, definition_id: str) -> Optional[MicrodoseDefinition]:
        return self.microdoses.get(definition_id)

    def definitions_in(self, category: str) -> list[MicrodoseDefinition]:
        """Definitions of one category, sorted by id for deterministic selection."""
        return sorted(
            (definition for definition in self.microdoses.values() if definition.category == category),
            key=lambda definition: definition.id,
        )

    def has_category(self, category: str) -> bool:
        return any(definition.category == category for definition in self.microdoses.values())

    def validate(self) -> list[str]:
        """
        Check the catalog for internal consistency.

        Returns human-readable diagnostics; an empty list means the catalog is
        usable. Never raises, so callers decide how strict to be.
        """
        errors: list[str] = []

        for key, movement in self.movements.items():
            if not key or not movement.id:
                errors.append("Movement has empty ID")
            if key != movement.id:
                errors.append(f"Movement key '{key}' doesn't match movement.id '{movement.id}'")
            if not movement.name:
                errors.append(f"Movement '{key}' has empty name")
            if movement.kind not in MOVEMENT_KINDS:
                errors.append(f"Movement '{key}' has unknown kind '{movement.kind}'")

        for key, definition in self.microdoses.items():
            if not key or not definition.id:
                errors.append("Microdose definition has empty ID")
            if key != definition.id:
                errors.append(f"Microdose key '{key}' doesn't match definition.id '{definition.id}'")
            if not definition.name:
                errors.append(f"Microdose '{key}' has empty name")
            if definition.category not in CATEGORIES:
                errors.append(f"Microdose '{key}' has unknown category '{definition.category}'")
            if not definition.blocks:
                errors.append(f"Microdose '{key}' has no blocks")

            for block in definition.blocks:
                if block.movement_id not in self.movements:
                    errors.append(
                        f"Microdose '{key}' references non-existent movement '{block.movement_id}'"
                    )
                for metric in block.metrics:
                    errors.extend(_metric_errors(key, metric))

        for category in CATEGORIES:
            if not self.has_category(category):
                errors.append(f"Catalog has no {_CATEGORY_LABELS[category]} microdoses")

        return errors


def _metric_errors(definition_id: str, metric: RepsMetric | BandMetric) -> list[str]:
    errors: list[str] = []
    if isinstance(metric, RepsMetric):
        if metric.default < metric.min:
            errors.append(
                f"Microdose '{definition_id}': default reps {metric.default} < min {metric.min}"
            )
        if metric.default > metric.max:
            errors.append(
                f"Microdose '{definition_id}': default reps {metric.default} > max {metric.max}"
            )
        if metric.min > metric.max:
            errors.append(f"Microdose '{definition_id}': min reps {metric.min} > max {metric.max}")
    elif isinstance(metric, BandMetric):
        if not metric.default:
            errors.append(f"Microdose '{definition_id}': band metric has empty default")
    return errors


def category_label(category: str) -> str:
    return _CATEGORY_LABELS.get(category, category)


def _default_movements() -> list[Movement]:
    return [
        Movement(
            id="kb_swing_2h",
            name="Kettlebell Swing (2-hand)",
            kind="kettlebell_swing",
            tags=("vo2", "hinge", "posterior_chain"),
            reference_url="https://www.youtube.com/watch?v=YSxHifyI6s8",
        ),
        Movement(
            id="burpee",
            name="Burpee",
            kind="burpee",
            default_style=MovementStyle.burpee(BURPEE_FOUR_COUNT),
            tags=("vo2", "full_body", "bodyweight"),
            reference_url="https://www.youtube.com/watch?v=TU8QYVW0gDU",
        ),
        Movement(
            id="pullup",
            name="Pull-up",
            kind="pullup",
            default_style=MovementStyle.band(),
            tags=("gtg", "gtg_ok", "upper_body", "pull"),
            reference_url="https://www.youtube.com/watch?v=eGo4IYlbE5g",
        ),
        Movement(
            id="hip_cars",
            name="Hip Controlled Articular Rotations (CARs)",
            kind="mobility_drill",
            tags=("mobility", "hip", "gtg_ok"),
            reference_url="https://www.youtube.com/watch?v=mJRXBZGRzKg",
        ),
        Movement(
            id="shoulder_cars",
            name="Shoulder Controlled Articular Rotations (CARs)",
            kind="mobility_drill",
            tags=("mobility", "shoulder", "gtg_ok"),
            reference_url="https://www.youtube.com/watch?v=f9y1lOJ0v4A",
        ),
    ]


def _mobility_definition(definition_id: str, name: str, movement_id: str) -> MicrodoseDefinition:
    return MicrodoseDefinition(
        id=definition_id,
        name=name,
        category=CATEGORY_MOBILITY,
        suggested_duration_seconds=120,
        gtg_friendly=True,
        blocks=(
            MicrodoseBlock(
                movement_id=movement_id,
                style=MovementStyle.none(),
                duration_hint_seconds=120,
                metrics=(RepsMetric(key="reps_per_side", default=3, min=2, max=5),),
            ),
        ),
    )


def _default_definitions() -> list[MicrodoseDefinition]:
    return [
        MicrodoseDefinition(
            id="emom_kb_swing_5m",
            name="5-Min EMOM: KB Swings (2-hand)",
            category=CATEGORY_VO2,
            suggested_duration_seconds=300,
            gtg_friendly=False,
            blocks=(
                MicrodoseBlock(
                    movement_id="kb_swing_2h",
                    style=MovementStyle.none(),
                    duration_hint_seconds=60,
                    metrics=(RepsMetric(key="reps", default=5, min=3, max=15, progressable=True),),
                ),
            ),
        ),
        MicrodoseDefinition(
            id="emom_burpee_5m",
            name="5-Min EMOM: Burpees",
            category=CATEGORY_VO2,
            suggested_duration_seconds=300,
            gtg_friendly=False,
            blocks=(
                MicrodoseBlock(
                    movement_id="burpee",
                    style=MovementStyle.burpee(BURPEE_FOUR_COUNT),
                    duration_hint_seconds=60,
                    metrics=(RepsMetric(key="reps", default=3, min=2, max=10, progressable=True),),
                ),
            ),
        ),
        MicrodoseDefinition(
            id="gtg_pullup_band",
            name="GTG: Banded Pull-ups",
            category=CATEGORY_GTG,
            suggested_duration_seconds=30,
            gtg_friendly=True,
            blocks=(
                MicrodoseBlock(
                    movement_id="pullup",
                    style=MovementStyle.band("red"),
                    duration_hint_seconds=30,
                    metrics=(
                        RepsMetric(key="reps", default=3, min=1, max=8, progressable=True),
                        BandMetric(key="band", default="red"),
                    ),
                ),
            ),
        ),
        _mobility_definition("mobility_hip_cars", "Hip CARs (3 reps each side)", "hip_cars"),
        _mobility_definition("mobility_shoulder_cars", "Shoulder CARs (3 reps each side)", "shoulder_cars"),
    ]


def build_default_catalog() -> Catalog:
    """Build the built-in catalog. Each call returns a fresh, independent value."""
    return Catalog.from_items(_default_movements(), _default_definitions())
