"""Blame parser: ``git blame --porcelain`` output to structured lines.

Public API
----------
- ``BlameLine`` -- one blamed line (line number, commit, author, time, content)
- ``parse_porcelain(raw)`` -> ``list[BlameLine]``
- ``run_blame(path, runner, revision=None)`` -> ``list[BlameLine]``

The parser is a pure transformation of subprocess output; nothing here is
persisted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .errors import BlameUnavailable, GitCommandError
from .gitexec import GitRunner

# Header line of a porcelain block: <sha> <orig_line> <final_line> [<group_size>]
_HEADER_RE = re.compile(r"^([0-9a-f]{40}) (\d+) (\d+)(?: (\d+))?$")


@dataclass(frozen=True)
class BlameLine:
    """A single line of a blamed file."""

    line_number: int
    commit: str
    author: str
    author_time: Optional[datetime]
    content: str
    author_mail: str = ""


def _parse_author_time(raw: str) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def parse_porcelain(raw: str) -> list[BlameLine]:
    """Parse ``git blame --porcelain`` output.

    Porcelain output only prints ``author``/``author-time`` the first time a
    commit appears, so metadata is remembered per commit and reused for the
    later blocks of the same commit.  Empty input yields an empty list.
    """
    if not raw.strip():
        return []

    lines = raw.split("\n")
    result: list[BlameLine] = []
    meta_by_commit: dict[str, dict[str, str]] = {}

    i = 0
    while i < len(lines):
        m = _HEADER_RE.match(lines[i])
        if not m:
            i += 1
            continue

        commit = m.group(1)
        final_line = int(m.group(3))
        meta = meta_by_commit.setdefault(commit, {})
        i += 1

        content: Optional[str] = None
        while i < len(lines):
            meta_line = lines[i]
            i += 1
            if meta_line.startswith("\t"):
                content = meta_line[1:]
                break
            key, _, value = meta_line.partition(" ")
            if key in ("author", "author-mail", "author-time"):
                meta[key] = value

        if content is None:
            # Truncated block: header with no content line.
            break

        result.append(
            BlameLine(
                line_number=final_line,
                commit=commit,
                author=meta.get("author", ""),
                author_time=_parse_author_time(meta.get("author-time", "")),
                content=content,
                author_mail=meta.get("author-mail", "").strip("<>"),
            )
        )

    return result


def run_blame(
    path: str,
    runner: Optional[GitRunner] = None,
    revision: Optional[str] = None,
) -> list[BlameLine]:
    """Blame *path* and return its lines in file order.

    Args:
        path: File path relative to the repository root.
        runner: Git runner bound to the repository (defaults to CWD).
        revision: Optional revision or range restricting the blame.

    Raises:
        BlameUnavailable: when git refuses to blame the file.
    """
    runner = runner or GitRunner()
    args = ["blame", "--porcelain"]
    if revision:
        args += [revision, "--", path]
    else:
        args.append(path)
    try:
        raw = runner.run(*args)
    except GitCommandError as exc:
        raise BlameUnavailable(path, exc.stderr.strip()) from exc
    return parse_porcelain(raw)
