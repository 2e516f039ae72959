"""Authorship records: the per-commit provenance schema.

An ``AuthorshipRecord`` says which authors (human or AI) touched which files
in one commit.  It is serialised to a canonical JSON document and stored as
a git note on the commit (see :mod:`aictrack.notes`).

Wire format::

    {
      "version": "1.0",
      "commit": "<sha>",
      "timestamp": "<RFC3339>",
      "files": {
        "<path>": {"authors": [{"name": "...", "type": "human" | "ai",
                                "lines": [[start, end], [line]],
                                "metadata": {"model": "..."}}]}
      }
    }

``lines`` and ``metadata`` are optional and omitted when empty.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from .errors import RecordInvalid

RECORD_VERSION = "1.0"

AUTHOR_HUMAN = "human"
AUTHOR_AI = "ai"
AUTHOR_KINDS = (AUTHOR_HUMAN, AUTHOR_AI)

# RFC3339 fractional seconds longer than microseconds (Go emits nanoseconds).
_LONG_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def format_timestamp(ts: datetime) -> str:
    """Render *ts* as RFC3339, using ``Z`` for UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    text = ts.isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def parse_timestamp(raw: str) -> datetime:
    """Parse an RFC3339 timestamp; naive results are taken as UTC."""
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _LONG_FRACTION_RE.sub(r"\1", text)
    ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class AuthorInfo:
    """One author's contribution to one file in one commit."""

    name: str
    kind: str  # human | ai
    lines: list[list[int]] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_ai(self) -> bool:
        return self.kind == AUTHOR_AI

    @property
    def model(self) -> str:
        """AI model recorded for this author, or an empty string."""
        return self.metadata.get("model", "")

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "type": self.kind}
        if self.lines:
            d["lines"] = [list(r) for r in self.lines]
        if self.metadata:
            d["metadata"] = dict(self.metadata)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthorInfo":
        if not isinstance(data, dict):
            raise RecordInvalid(f"author entry must be an object, got {type(data).__name__}")
        lines = data.get("lines") or []
        metadata = data.get("metadata") or {}
        if not isinstance(lines, list) or not all(isinstance(r, list) for r in lines):
            raise RecordInvalid("author lines must be a list of ranges")
        if not isinstance(metadata, dict):
            raise RecordInvalid("author metadata must be an object")
        return cls(
            name=str(data.get("name", "")),
            kind=str(data.get("type", "")),
            lines=[[int(n) for n in r] for r in lines],
            metadata={str(k): str(v) for k, v in metadata.items()},
        )


@dataclass
class FileAuthorship:
    """Ordered authors of one file within one commit."""

    authors: list[AuthorInfo] = field(default_factory=list)

    @property
    def has_ai(self) -> bool:
        return any(a.is_ai for a in self.authors)

    def first_ai(self) -> Optional[AuthorInfo]:
        return next((a for a in self.authors if a.is_ai), None)

    def first_human(self) -> Optional[AuthorInfo]:
        return next((a for a in self.authors if not a.is_ai), None)

    def to_dict(self) -> dict[str, Any]:
        return {"authors": [a.to_dict() for a in self.authors]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileAuthorship":
        if not isinstance(data, dict):
            raise RecordInvalid("file entry must be an object")
        authors = data.get("authors") or []
        if not isinstance(authors, list):
            raise RecordInvalid("authors must be a list")
        return cls(authors=[AuthorInfo.from_dict(a) for a in authors])


@dataclass
class AuthorshipRecord:
    """Per-commit provenance record."""

    commit: str
    files: dict[str, FileAuthorship] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = RECORD_VERSION

    def file(self, path: str) -> Optional[FileAuthorship]:
        """Authorship entry for *path* (normalised), or ``None``."""
        return self.files.get(path) or self.files.get(normalize_path(path))

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "commit": self.commit,
            "timestamp": format_timestamp(self.timestamp),
            "files": {p: self.files[p].to_dict() for p in sorted(self.files)},
        }

    def to_json(self) -> str:
        """Canonical JSON form written to the notes store."""
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> "AuthorshipRecord":
        """Decode and validate a record.

        Raises:
            RecordInvalid: on any shape or schema violation, including an
                unknown or missing ``version``.
        """
        if not isinstance(data, dict):
            raise RecordInvalid("record must be a JSON object")
        files = data.get("files") or {}
        if not isinstance(files, dict):
            raise RecordInvalid("files must be an object")
        raw_ts = data.get("timestamp")
        try:
            timestamp = parse_timestamp(raw_ts) if raw_ts else datetime.fromtimestamp(0, timezone.utc)
        except (TypeError, ValueError) as exc:
            raise RecordInvalid(f"bad timestamp {raw_ts!r}") from exc
        record = cls(
            version=str(data.get("version", "") or ""),
            commit=str(data.get("commit", "") or ""),
            timestamp=timestamp,
            files={str(p): FileAuthorship.from_dict(fa) for p, fa in files.items()},
        )
        validate_record(record)
        return record

    @classmethod
    def from_json(cls, text: str) -> "AuthorshipRecord":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RecordInvalid(f"not valid JSON: {exc}") from exc
        return cls.from_dict(data)


# ---------------------------------------------------------------------------
# Validation and helpers
# ---------------------------------------------------------------------------


def validate_record(record: AuthorshipRecord) -> None:
    """Raise ``RecordInvalid`` if *record* breaks the schema."""
    if not record.version:
        raise RecordInvalid("version is required")
    if not record.commit:
        raise RecordInvalid("commit hash is required")
    if record.version != RECORD_VERSION:
        raise RecordInvalid(
            f"unsupported version: {record.version} (expected: {RECORD_VERSION})"
        )
    for path, fa in record.files.items():
        if not fa.authors:
            raise RecordInvalid(f"file {path} has no authors")
        for author in fa.authors:
            if not author.name:
                raise RecordInvalid(f"file {path} has author with empty name")
            if author.kind not in AUTHOR_KINDS:
                raise RecordInvalid(f"file {path} has invalid author type: {author.kind}")


def normalize_path(path: str) -> str:
    """Repository-relative POSIX form used as the ``files`` key."""
    p = path.replace("\\", "/")
    while p.startswith("./"):
        p = p[2:]
    return p


def count_lines(ranges: Iterable[list[int]]) -> int:
    """Total lines covered by ``[start, end]`` / ``[line]`` ranges (inclusive)."""
    total = 0
    for r in ranges:
        if len(r) == 1:
            total += 1
        elif len(r) == 2:
            total += r[1] - r[0] + 1
    return total


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


@dataclass
class Checkpoint:
    """Snapshot of one author's edits, captured by the hook trigger."""

    author: str
    kind: str  # human | ai
    changes: dict[str, list[list[int]]] = field(default_factory=dict)  # path -> ranges
    metadata: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def build_record(
    checkpoints: Iterable[Checkpoint],
    commit: str,
    timestamp: Optional[datetime] = None,
) -> AuthorshipRecord:
    """Fold checkpoints into one record for *commit*.

    Authors with the same name and kind are merged per file (their line
    ranges concatenated); author order follows first appearance.
    """
    record = AuthorshipRecord(
        commit=commit,
        timestamp=timestamp or datetime.now(timezone.utc),
    )
    for cp in checkpoints:
        for raw_path, ranges in cp.changes.items():
            path = normalize_path(raw_path)
            fa = record.files.setdefault(path, FileAuthorship())
            existing = next(
                (a for a in fa.authors if a.name == cp.author and a.kind == cp.kind),
                None,
            )
            if existing is not None:
                existing.lines.extend([list(r) for r in ranges])
                for key, val in cp.metadata.items():
                    existing.metadata.setdefault(key, val)
            else:
                fa.authors.append(
                    AuthorInfo(
                        name=cp.author,
                        kind=cp.kind,
                        lines=[list(r) for r in ranges],
                        metadata=dict(cp.metadata),
                    )
                )
    return record
