"""Exception taxonomy for aictrack.

Single-item operations (one commit, one file) raise these; batch operations
catch them per item, log, and move on.
"""

from __future__ import annotations

from typing import Optional, Sequence


class AictrackError(Exception):
    """Root of every error raised by the attribution engine."""


class GitCommandError(AictrackError):
    """A ``git`` invocation exited non-zero or could not be started."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"git {' '.join(self.args_list)} failed with exit code {returncode}: "
            f"{stderr.strip()}"
        )


class BlameUnavailable(AictrackError):
    """The file cannot be blamed (binary, untracked, or absent from history)."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        self.reason = reason
        msg = f"blame unavailable for {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class StoreError(AictrackError):
    """Base class for provenance store failures."""


class StoreReadFailed(StoreError):
    """Reading a note failed for a reason other than "no note exists"."""


class StoreWriteFailed(StoreError):
    """Writing or removing a note failed."""


class StoreCorrupt(StoreError):
    """A note exists for the commit but does not decode to a valid record."""

    def __init__(self, commit: str, reason: str = "") -> None:
        self.commit = commit
        self.reason = reason
        super().__init__(f"corrupt authorship record for {commit}: {reason}")


class RecordInvalid(AictrackError):
    """An AuthorshipRecord violates the schema (version, commit, authors)."""


class InvalidFilterPattern(AictrackError):
    """A branch filter pattern (regex or glob) cannot be compiled."""

    def __init__(self, pattern: str, reason: Optional[str] = None) -> None:
        self.pattern = pattern
        self.reason = reason
        msg = f"invalid filter pattern '{pattern}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class InvalidTimeRange(AictrackError):
    """A period expression could not be parsed into a time range."""


class EventInvalid(AictrackError):
    """A tracking event or checkpoint record is missing required fields."""
