from __future__ import annotations

import fcntl
import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Callable, IO, Iterator, List

import pandas as pd

from .models import SessionRecord, UserMicrodoseState, ValidationError

LOGGER = logging.getLogger(__name__)

PROCESSED_SUFFIX = ".processed"
CSV_COLUMNS: tuple[str, ...] = (
    "id",
    "definition_id",
    "performed_at",
    "started_at",
    "completed_at",
    "actual_duration_seconds",
    "perceived_effort",
    "avg_heart_rate",
    "max_heart_rate",
)


@contextmanager
def _locked(handle: IO[Any], mode: int) -> Iterator[IO[Any]]:
    fcntl.flock(handle.fileno(), mode)
    try:
        yield handle
    finally:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


@contextmanager
def _lock_file(target: Path) -> Iterator[None]:
    """Exclusive lock on ``<target>.lock``, which outlives atomic replaces of ``target``."""
    lock_path = target.with_name(target.name + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a", encoding="utf-8") as handle, _locked(handle, fcntl.LOCK_EX):
        yield


def _write_atomic(target: Path, payload: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with NamedTemporaryFile("w", dir=target.parent, delete=False, encoding="utf-8") as tmp:
        tmp.write(payload)
        tmp.flush()
        os.fsync(tmp.fileno())
        temp_path = Path(tmp.name)
    try:
        temp_path.replace(target)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


def _is_same_file(handle: IO[Any], path: Path) -> bool:
    try:
        current = path.stat()
    except FileNotFoundError:
        return False
    opened = os.fstat(handle.fileno())
    return (opened.st_dev, opened.st_ino) == (current.st_dev, current.st_ino)


# ---------------------------------------------------------------------------
# Append-only session log
# ---------------------------------------------------------------------------


def append_session(log_path: Path, session: SessionRecord) -> None:
    """
    Append one session to the JSONL log under an exclusive lock.

    Only ``SessionRecord`` values have a serialised form; skipped
    prescriptions cannot reach this function.
    """
    if not isinstance(session, SessionRecord):
        raise TypeError(f"Only SessionRecord values can be persisted; received {type(session).__name__}.")

    log_path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(session.to_dict(), sort_keys=True) + "\n"
    while True:
        with log_path.open("a", encoding="utf-8") as handle, _locked(handle, fcntl.LOCK_EX):
            # A rollup may have renamed the log while we waited for the lock.
            if not _is_same_file(handle, log_path):
                continue
            handle.write(line)
            handle.flush()
            os.fsync(handle.fileno())
            break
    LOGGER.debug("Appended session %s to %s", session.id, log_path)


def _parse_log_lines(lines: List[str], source: Path) -> List[SessionRecord]:
    sessions: List[SessionRecord] = []
    for line_number, raw in enumerate(lines, start=1):
        text = raw.strip()
        if not text:
            continue
        try:
            sessions.append(SessionRecord.from_dict(json.loads(text)))
        except (json.JSONDecodeError, ValidationError) as exc:
            LOGGER.warning("Skipping unreadable session at %s line %s: %s", source, line_number, exc)
    return sessions


def read_sessions(log_path: Path) -> List[SessionRecord]:
    """Read every well-formed session from the log, skipping corrupt lines."""
    if not log_path.exists():
        return []
    with log_path.open("r", encoding="utf-8", errors="replace") as handle, _locked(handle, fcntl.LOCK_SH):
        lines = handle.readlines()
    sessions = _parse_log_lines(lines, log_path)
    LOGGER.debug("Read %s sessions from %s", len(sessions), log_path)
    return sessions


# ---------------------------------------------------------------------------
# State snapshot
# ---------------------------------------------------------------------------


def load_state(state_path: Path) -> UserMicrodoseState:
    """
    Load the progression snapshot.

    A missing file yields the default state. An unreadable or corrupt file is
    reported and also yields the default state, so a prescription can always
    be attempted.
    """
    if not state_path.exists():
        LOGGER.info("No state file found at %s, using default state", state_path)
        return UserMicrodoseState()

    try:
        with _lock_file(state_path):
            raw = state_path.read_text(encoding="utf-8")
    except OSError as exc:
        LOGGER.warning("Unable to read state file %s: %s. Using defaults.", state_path, exc)
        return UserMicrodoseState()

    try:
        state = UserMicrodoseState.from_dict(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        LOGGER.warning("Failed to parse state file %s: %s. Using defaults.", state_path, exc)
        return UserMicrodoseState()

    LOGGER.debug("Loaded user state from %s", state_path)
    return state


def save_state(state_path: Path, state: UserMicrodoseState) -> None:
    """Write the snapshot to a temporary file and atomically replace the old one."""
    payload = json.dumps(state.to_dict(), sort_keys=True) + "\n"
    with _lock_file(state_path):
        _write_atomic(state_path, payload)
    LOGGER.debug("Saved user state to %s", state_path)


def update_state(
    state_path: Path,
    mutate: Callable[[UserMicrodoseState], None],
) -> UserMicrodoseState:
    """Load, apply ``mutate`` and save the snapshot in one step."""
    state = load_state(state_path)
    mutate(state)
    save_state(state_path, state)
    return state


# ---------------------------------------------------------------------------
# Rollup into the long-lived CSV store
# ---------------------------------------------------------------------------


def _session_to_row(session: SessionRecord) -> dict[str, Any]:
    payload = session.to_dict()
    row: dict[str, Any] = {}
    for column in CSV_COLUMNS:
        value = payload.get(column)
        row[column] = "" if value is None else str(value)
    return row


def _read_rollup_frame(csv_path: Path) -> pd.DataFrame:
    if not csv_path.exists() or csv_path.stat().st_size == 0:
        return pd.DataFrame(columns=list(CSV_COLUMNS))
    try:
        frame = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise ValueError(f"Could not parse {csv_path}: {exc}") from exc
    for column in CSV_COLUMNS:
        if column not in frame.columns:
            frame[column] = ""
    return frame


def read_rollup(csv_path: Path) -> List[SessionRecord]:
    """Read archived sessions; rows that fail to parse are skipped."""
    try:
        frame = _read_rollup_frame(csv_path)
    except ValueError as exc:
        LOGGER.warning("Ignoring unreadable rollup: %s", exc)
        return []

    sessions: List[SessionRecord] = []
    for index, row in enumerate(frame.to_dict(orient="records"), start=2):
        try:
            sessions.append(SessionRecord.from_dict(row))
        except ValidationError as exc:
            LOGGER.warning("Skipping unreadable row %s in %s: %s", index, csv_path, exc)
    return sessions


def _processed_path(log_path: Path) -> Path:
    candidate = log_path.with_name(log_path.name + PROCESSED_SUFFIX)
    counter = 1
    while candidate.exists():
        candidate = log_path.with_name(f"{log_path.name}.{counter}{PROCESSED_SUFFIX}")
        counter += 1
    return candidate


def rollup_sessions(log_path: Path, csv_path: Path) -> int:
    """
    Merge the session log into the CSV store and archive the log.

    Records are deduplicated by id, so re-running over already merged records
    adds nothing. The log is renamed to ``*.processed`` rather than deleted.
    Returns the number of records newly added to the CSV.
    """
    while True:
        try:
            handle = log_path.open("r", encoding="utf-8", errors="replace")
        except FileNotFoundError:
            LOGGER.info("No session log at %s to roll up", log_path)
            return 0

        with handle, _locked(handle, fcntl.LOCK_EX):
            # Another rollup may have archived this file while we waited for the lock.
            if not _is_same_file(handle, log_path):
                continue
            return _merge_locked_log(handle, log_path, csv_path)


def _merge_locked_log(handle: IO[Any], log_path: Path, csv_path: Path) -> int:
    sessions = _parse_log_lines(handle.readlines(), log_path)
    if not sessions:
        LOGGER.info("No sessions in %s to roll up", log_path)
        return 0

    existing = _read_rollup_frame(csv_path)
    incoming = pd.DataFrame([_session_to_row(session) for session in sessions], columns=list(CSV_COLUMNS))
    added = len(set(incoming["id"]) - set(existing["id"]))
    merged = incoming if existing.empty else pd.concat([existing, incoming], ignore_index=True)
    merged = merged.drop_duplicates(subset="id", keep="first")

    _write_atomic(csv_path, merged.to_csv(index=False))
    LOGGER.info("Wrote %s new sessions to %s", added, csv_path)

    processed = _processed_path(log_path)
    log_path.rename(processed)
    LOGGER.info("Archived session log to %s", processed)
    return added


def cleanup_processed_logs(directory: Path) -> int:
    """Delete archived ``*.processed`` logs in ``directory``."""
    if not directory.exists():
        return 0
    count = 0
    for path in sorted(directory.glob(f"*{PROCESSED_SUFFIX}")):
        path.unlink()
        LOGGER.debug("Removed processed log %s", path)
        count += 1
    if count:
        LOGGER.info("Cleaned up %s processed session logs", count)
    return count
