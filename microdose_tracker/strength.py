from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from .models import (
    STRENGTH_FULL,
    STRENGTH_LOWER,
    STRENGTH_UPPER,
    ExternalStrengthSignal,
    ValidationError,
    parse_timestamp,
)

LOGGER = logging.getLogger(__name__)

_SESSION_TYPE_ALIASES = {
    "lower": STRENGTH_LOWER,
    "upper": STRENGTH_UPPER,
    "full": STRENGTH_FULL,
    "full_body": STRENGTH_FULL,
    "fullbody": STRENGTH_FULL,
}


def parse_session_type(value: str) -> str:
    """Normalise a strength session label; unknown labels are kept as-is (lower-cased)."""
    label = (value or "").strip().lower()
    return _SESSION_TYPE_ALIASES.get(label, label)


def load_strength_signal(path: Path) -> Optional[ExternalStrengthSignal]:
    """
    Read the strength signal written by an external training log.

    Returns ``None`` when the file is absent, unreadable or malformed; a bad
    signal file never blocks a prescription.
    """
    if not path.exists():
        LOGGER.debug("No strength signal file found at %s", path)
        return None

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Failed to read strength signal at %s: %s. Ignoring signal.", path, exc)
        return None

    try:
        if not isinstance(payload, dict):
            raise ValidationError("strength signal must be a JSON object.")
        signal = ExternalStrengthSignal(
            last_session_at=parse_timestamp(payload.get("last_session_at"), field="last_session_at"),
            session_type=parse_session_type(str(payload.get("session_type") or "")),
        )
    except ValidationError as exc:
        LOGGER.warning("Failed to parse strength signal at %s: %s. Ignoring signal.", path, exc)
        return None

    LOGGER.info("Loaded strength signal: %s at %s", signal.session_type, signal.last_session_at)
    return signal
