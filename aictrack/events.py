"""Tracking events and checkpoint records read from the append-only event log.

The event log is written by the hook collaborator as JSON Lines (one event
per line).  Checkpoints live in two JSONL files: the pending file the hook
appends to between commits, and the branch log that ``aictrack commit``
moves them into.  This module only decodes, validates, appends and clears;
every aggregation lives in :mod:`aictrack.stats` and :mod:`aictrack.branch`.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from .authorship import (
    AUTHOR_AI,
    AUTHOR_HUMAN,
    AUTHOR_KINDS,
    Checkpoint,
    format_timestamp,
    parse_timestamp,
)
from .classifier import AuthorClassifier
from .errors import EventInvalid

logger = logging.getLogger(__name__)

EVENT_AI = "ai"
EVENT_HUMAN = "human"
EVENT_COMMIT = "commit"
EVENT_UNKNOWN = "unknown"
EVENT_TYPES = (EVENT_AI, EVENT_HUMAN, EVENT_COMMIT, EVENT_UNKNOWN)

DEFAULT_BRANCH = "main"
DEFAULT_EVENTS_PATH = ".git/ai-tracker/events.jsonl"
DEFAULT_CHECKPOINTS_PATH = ".git/ai-tracker/checkpoints.jsonl"
DEFAULT_PENDING_PATH = ".git/ai-tracker/pending.jsonl"


@dataclass
class FileChange:
    """Line deltas for one file within one event."""

    path: str
    lines_added: int = 0
    lines_modified: int = 0
    lines_deleted: int = 0

    @property
    def total_changes(self) -> int:
        return self.lines_added + self.lines_modified + self.lines_deleted

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "lines_added": self.lines_added,
            "lines_modified": self.lines_modified,
            "lines_deleted": self.lines_deleted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileChange":
        return cls(
            path=str(data.get("path", "")),
            lines_added=int(data.get("lines_added", 0) or 0),
            lines_modified=int(data.get("lines_modified", 0) or 0),
            lines_deleted=int(data.get("lines_deleted", 0) or 0),
        )


@dataclass
class TrackEvent:
    """One tracked edit (AI, human) or commit."""

    timestamp: datetime
    event_type: str  # ai | human | commit | unknown
    author: str
    files: list[FileChange] = field(default_factory=list)
    model: str = ""
    commit_hash: str = ""
    message: str = ""
    session_id: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_ai(self) -> bool:
        return self.event_type == EVENT_AI

    @property
    def lines_added(self) -> int:
        return sum(f.lines_added for f in self.files)

    @property
    def lines_modified(self) -> int:
        return sum(f.lines_modified for f in self.files)

    @property
    def lines_deleted(self) -> int:
        return sum(f.lines_deleted for f in self.files)

    @property
    def total_changes(self) -> int:
        return sum(f.total_changes for f in self.files)

    def validate(self) -> None:
        """Raise ``EventInvalid`` if required fields are missing."""
        if not self.id:
            raise EventInvalid("event id must not be empty")
        if self.event_type not in EVENT_TYPES:
            raise EventInvalid(f"invalid event type: {self.event_type}")
        if not self.author:
            raise EventInvalid("author must not be empty")
        if self.event_type == EVENT_AI and not self.model:
            raise EventInvalid("AI events require a model")
        if self.event_type == EVENT_COMMIT and not self.commit_hash:
            raise EventInvalid("commit events require a commit hash")
        for i, f in enumerate(self.files):
            if not f.path:
                raise EventInvalid(f"file {i}: path must not be empty")
            if min(f.lines_added, f.lines_modified, f.lines_deleted) < 0:
                raise EventInvalid(f"file {i}: line counts must not be negative")

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "timestamp": format_timestamp(self.timestamp),
            "event_type": self.event_type,
            "author": self.author,
            "files": [f.to_dict() for f in self.files],
        }
        for key in ("model", "commit_hash", "message", "session_id"):
            value = getattr(self, key)
            if value:
                d[key] = value
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackEvent":
        try:
            timestamp = parse_timestamp(str(data["timestamp"]))
        except (KeyError, ValueError) as exc:
            raise EventInvalid(f"bad or missing timestamp: {exc}") from exc
        return cls(
            id=str(data.get("id", "")),
            timestamp=timestamp,
            event_type=str(data.get("event_type", EVENT_UNKNOWN)),
            author=str(data.get("author", "")),
            model=str(data.get("model", "") or ""),
            commit_hash=str(data.get("commit_hash", "") or ""),
            files=[FileChange.from_dict(f) for f in data.get("files") or []],
            message=str(data.get("message", "") or ""),
            session_id=str(data.get("session_id", "") or ""),
        )


@dataclass
class PathChange:
    """Lines one checkpoint touched in one file."""

    added: int = 0
    deleted: int = 0
    lines: list[list[int]] = field(default_factory=list)  # [[start, end], [line], ...]

    def to_dict(self) -> dict[str, Any]:
        return {"added": self.added, "deleted": self.deleted, "lines": [list(r) for r in self.lines]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PathChange":
        return cls(
            added=int(data.get("added", 0) or 0),
            deleted=int(data.get("deleted", 0) or 0),
            lines=[[int(n) for n in r] for r in data.get("lines") or []],
        )


@dataclass
class CheckpointRecord:
    """One author's edits between two commits, tagged with a branch.

    Pending checkpoints (written by the editor hook, consumed by
    ``aictrack commit``) carry per-file line ranges in ``changes``.  The
    branch log keeps the same records after the commit fills in ``commit``
    and ``branch``; older writers stored only the ``added``/``deleted``
    totals.
    """

    timestamp: datetime
    author: str
    added: int = 0
    deleted: int = 0
    branch: str = ""
    commit: str = ""
    author_type: str = ""  # human | ai | "" when the writer predates the field
    changes: dict[str, PathChange] = field(default_factory=dict)
    metadata: dict[str, str] = field(default_factory=dict)

    def get_branch(self, default: str = DEFAULT_BRANCH) -> str:
        """Branch name, falling back to *default* for records without one."""
        return self.branch or default

    @property
    def has_branch_info(self) -> bool:
        return bool(self.branch)

    def display_branch(self, default: str = DEFAULT_BRANCH) -> str:
        if not self.has_branch_info:
            return f"{default} (inferred)"
        return self.branch

    def validate(self) -> None:
        """Raise ``EventInvalid`` if the record cannot become an authorship entry."""
        if not self.author:
            raise EventInvalid("checkpoint author must not be empty")
        if self.author_type and self.author_type not in AUTHOR_KINDS:
            raise EventInvalid(f"invalid author type: {self.author_type}")
        for path, change in self.changes.items():
            if not path:
                raise EventInvalid("checkpoint change has an empty path")
            for r in change.lines:
                if len(r) not in (1, 2) or min(r) < 1 or r[0] > r[-1]:
                    raise EventInvalid(f"{path}: bad line range {r}")

    def to_checkpoint(self, classifier: Optional[AuthorClassifier] = None) -> Checkpoint:
        """The builder's view of this record.

        A record without a declared author type is classified by name.
        """
        kind = self.author_type
        if not kind:
            is_ai = (classifier or AuthorClassifier()).is_ai_author(self.author)
            kind = AUTHOR_AI if is_ai else AUTHOR_HUMAN
        return Checkpoint(
            author=self.author,
            kind=kind,
            changes={p: [list(r) for r in c.lines] for p, c in self.changes.items()},
            metadata=dict(self.metadata),
            timestamp=self.timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "timestamp": format_timestamp(self.timestamp),
            "author": self.author,
            "added": self.added,
            "deleted": self.deleted,
        }
        for key in ("branch", "commit", "author_type", "metadata"):
            value = getattr(self, key)
            if value:
                d[key] = value
        if self.changes:
            d["changes"] = {p: c.to_dict() for p, c in self.changes.items()}
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckpointRecord":
        """Decode a record; ``type`` is accepted for ``author_type``.

        Totals missing from the record are summed from ``changes``.
        """
        try:
            timestamp = parse_timestamp(str(data["timestamp"]))
        except (KeyError, ValueError) as exc:
            raise EventInvalid(f"bad or missing timestamp: {exc}") from exc
        raw_changes = data.get("changes") or {}
        if not isinstance(raw_changes, dict):
            raise EventInvalid("changes must be an object")
        if not all(isinstance(c, dict) for c in raw_changes.values()):
            raise EventInvalid("each change must be an object")
        changes = {str(p): PathChange.from_dict(c) for p, c in raw_changes.items()}
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise EventInvalid("metadata must be an object")
        added = data.get("added")
        deleted = data.get("deleted")
        return cls(
            timestamp=timestamp,
            author=str(data.get("author", "")),
            added=int(added) if added is not None else sum(c.added for c in changes.values()),
            deleted=int(deleted) if deleted is not None else sum(c.deleted for c in changes.values()),
            branch=str(data.get("branch", "") or ""),
            commit=str(data.get("commit", "") or ""),
            author_type=str(data.get("author_type") or data.get("type") or ""),
            changes=changes,
            metadata={str(k): str(v) for k, v in metadata.items()},
        )


# ---------------------------------------------------------------------------
# JSONL persistence
# ---------------------------------------------------------------------------


def _read_jsonl(path: Path) -> Iterable[tuple[int, dict[str, Any]]]:
    with path.open(encoding="utf-8") as fh:
        for lineno, raw in enumerate(fh, start=1):
            raw = raw.strip()
            if not raw:
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as exc:
                logger.warning("%s:%d: skipping malformed line: %s", path, lineno, exc)
                continue
            if not isinstance(data, dict):
                logger.warning("%s:%d: skipping non-object line", path, lineno)
                continue
            yield lineno, data


def load_events(path: Path) -> list[TrackEvent]:
    """Read every valid event from a JSONL log; a missing file yields []."""
    path = Path(path)
    if not path.exists():
        return []
    events: list[TrackEvent] = []
    for lineno, data in _read_jsonl(path):
        try:
            events.append(TrackEvent.from_dict(data))
        except (EventInvalid, TypeError, ValueError) as exc:
            logger.warning("%s:%d: skipping invalid event: %s", path, lineno, exc)
    return events


def append_event(path: Path, event: TrackEvent) -> None:
    """Validate *event* and append it to the JSONL log."""
    event.validate()
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(event.to_dict(), ensure_ascii=False) + "\n")


def _read_json_array(path: Path) -> Iterable[tuple[int, dict[str, Any]]]:
    try:
        rows = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.warning("%s: skipping malformed checkpoint array: %s", path, exc)
        return
    for index, data in enumerate(rows, start=1):
        if not isinstance(data, dict):
            logger.warning("%s: item %d: skipping non-object item", path, index)
            continue
        yield index, data


def load_checkpoints(path: Path) -> list[CheckpointRecord]:
    """Read checkpoint records; a missing file yields [].

    The file is JSON Lines.  A file holding a single JSON array, as early
    hook versions wrote, is read as well.
    """
    path = Path(path)
    if not path.exists():
        return []
    with path.open(encoding="utf-8") as fh:
        is_array = fh.read(64).lstrip().startswith("[")
    rows = _read_json_array(path) if is_array else _read_jsonl(path)
    records: list[CheckpointRecord] = []
    for lineno, data in rows:
        try:
            records.append(CheckpointRecord.from_dict(data))
        except (EventInvalid, TypeError, ValueError) as exc:
            logger.warning("%s:%d: skipping invalid checkpoint: %s", path, lineno, exc)
    return records


def append_checkpoints(path: Path, records: Iterable[CheckpointRecord]) -> None:
    """Validate every record, then append them all to the JSONL file."""
    records = list(records)
    for rec in records:
        rec.validate()
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        for rec in records:
            fh.write(json.dumps(rec.to_dict(), ensure_ascii=False) + "\n")


def clear_checkpoints(path: Path) -> None:
    """Remove the pending checkpoint file; a missing file is fine."""
    Path(path).unlink(missing_ok=True)


def filter_by_author(events: Iterable[TrackEvent], author: str) -> list[TrackEvent]:
    """Events whose author contains *author*, ignoring case."""
    needle = author.lower()
    return [e for e in events if needle in e.author.lower()]


def events_in_range(
    events: Iterable[TrackEvent],
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> list[TrackEvent]:
    """Events with ``since <= timestamp <= until`` (open ends allowed)."""
    out = []
    for e in events:
        ts = e.timestamp
        if since is not None and ts < _aware(since):
            continue
        if until is not None and ts > _aware(until):
            continue
        out.append(e)
    return out


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)
