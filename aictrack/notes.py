"""Provenance store backed by git notes.

Each commit's ``AuthorshipRecord`` is kept as a note under a reserved notes
ref, so it travels with the commit object instead of living in a side file
keyed by path or sequence number.

Public API
----------
- ``ProvenanceStore.put(record)``
- ``ProvenanceStore.get(commit)`` -> ``AuthorshipRecord | None``
- ``ProvenanceStore.list()`` -> ``dict[commit, AuthorshipRecord]``
- ``ProvenanceStore.get_range(revision_range)`` -> ``dict[commit, AuthorshipRecord]``
- ``ProvenanceStore.remove(commit)``
- ``ProvenanceStore.push(remote)`` / ``ProvenanceStore.fetch(remote)``

Every command that takes a commit id or a remote name passes ``--`` right
before it so a crafted value can never be read as an option.
"""

from __future__ import annotations

import logging
from typing import Optional

from .authorship import AuthorshipRecord, validate_record
from .errors import (
    GitCommandError,
    RecordInvalid,
    StoreCorrupt,
    StoreReadFailed,
    StoreWriteFailed,
)
from .gitexec import GitRunner

logger = logging.getLogger(__name__)

NOTES_REF = "refs/aict/authorship"

# Delimits per-commit segments in the batched ``git log`` output.
SENTINEL = "__AICT_HASH__"


def is_note_not_found(message: str) -> bool:
    """True if a git error message means "this object has no note"."""
    msg = message.lower()
    return "no note found" in msg or "has no note" in msg


def notes_ref_name(ref: str) -> str:
    """The full ref git keeps notes under when given ``--ref=<ref>``.

    git puts anything outside ``refs/notes/`` beneath it, so the default
    ``refs/aict/authorship`` is stored at ``refs/notes/refs/aict/authorship``.
    """
    if ref.startswith("refs/notes/"):
        return ref
    if ref.startswith("notes/"):
        return "refs/" + ref
    return "refs/notes/" + ref


def parse_range_output(output: str) -> dict[str, AuthorshipRecord]:
    """Split sentinel-delimited ``git log`` output into records.

    Commits with an empty notes body are omitted.  Bodies that fail to
    decode are logged and skipped.
    """
    records: dict[str, AuthorshipRecord] = {}
    for segment in output.split(SENTINEL):
        if not segment.strip():
            continue
        commit, _, body = segment.partition("\n")
        commit = commit.strip()
        body = body.strip()
        if not commit or not body:
            continue
        try:
            records[commit] = AuthorshipRecord.from_json(body)
        except RecordInvalid as exc:
            logger.warning("skipping corrupt authorship record for %s: %s", commit, exc)
    return records


class ProvenanceStore:
    """Read and write authorship records as git notes."""

    def __init__(self, runner: Optional[GitRunner] = None, ref: str = NOTES_REF) -> None:
        self.runner = runner or GitRunner()
        self.ref = ref

    def _notes(self, *args: str) -> str:
        return self.runner.run("notes", f"--ref={self.ref}", *args)

    def put(self, record: AuthorshipRecord) -> None:
        """Write (or overwrite) the note for ``record.commit``.

        Raises:
            RecordInvalid: if the record breaks the schema; nothing is written.
            StoreWriteFailed: if git rejects the write.
        """
        validate_record(record)
        try:
            self._notes("add", "-f", "-m", record.to_json(), "--", record.commit)
        except GitCommandError as exc:
            raise StoreWriteFailed(
                f"failed to add authorship record for {record.commit}: {exc}"
            ) from exc
        logger.debug("wrote authorship record for %s", record.commit)

    def get(self, commit: str) -> Optional[AuthorshipRecord]:
        """Return the record attached to *commit*, or ``None`` if there is none.

        Raises:
            StoreReadFailed: git failed for a reason other than "no note".
            StoreCorrupt: the note exists but is not a valid record.
        """
        try:
            body = self._notes("show", "--", commit)
        except GitCommandError as exc:
            if is_note_not_found(exc.stderr):
                return None
            raise StoreReadFailed(
                f"failed to get authorship record for {commit}: {exc}"
            ) from exc
        try:
            return AuthorshipRecord.from_json(body)
        except RecordInvalid as exc:
            raise StoreCorrupt(commit, str(exc)) from exc

    def list(self) -> dict[str, AuthorshipRecord]:
        """Every record in the namespace, keyed by commit id.

        An absent namespace yields an empty mapping.  Entries that cannot be
        read or decoded are logged and left out.
        """
        try:
            output = self._notes("list")
        except GitCommandError as exc:
            logger.debug("notes namespace %s unavailable: %s", self.ref, exc)
            return {}

        records: dict[str, AuthorshipRecord] = {}
        for line in output.splitlines():
            parts = line.split()
            if len(parts) != 2:
                continue
            commit = parts[1]
            try:
                record = self.get(commit)
            except (StoreCorrupt, StoreReadFailed) as exc:
                logger.warning("skipping authorship record for %s: %s", commit, exc)
                continue
            if record is not None:
                records[commit] = record
        return records

    def get_range(self, revision_range: str) -> dict[str, AuthorshipRecord]:
        """Records for every annotated commit in *revision_range*.

        Issues a single ``git log`` rather than one ``notes show`` per commit.
        An unusable range (bad syntax, unknown revision) yields an empty
        mapping, the same as a range with no annotated commits.
        """
        try:
            output = self.runner.run(
                "log",
                revision_range,
                f"--notes={self.ref}",
                f"--format={SENTINEL}%H%n%N",
            )
        except GitCommandError as exc:
            logger.debug("range %r unusable, reporting no records: %s", revision_range, exc)
            return {}
        return parse_range_output(output)

    def remove(self, commit: str) -> None:
        """Delete the note for *commit*; a missing note is not an error."""
        try:
            self._notes("remove", "--", commit)
        except GitCommandError as exc:
            if is_note_not_found(exc.stderr):
                return
            raise StoreWriteFailed(
                f"failed to remove authorship record for {commit}: {exc}"
            ) from exc

    def push(self, remote: str = "origin") -> None:
        """Publish the notes ref to *remote*.

        Raises:
            StoreWriteFailed: git refused the push (no local notes yet, a
                non-fast-forward, an unknown remote).
        """
        ref = notes_ref_name(self.ref)
        try:
            self.runner.run("push", "--", remote, f"{ref}:{ref}")
        except GitCommandError as exc:
            raise StoreWriteFailed(f"failed to push {ref} to {remote}: {exc}") from exc
        logger.debug("pushed %s to %s", ref, remote)

    def fetch(self, remote: str = "origin") -> None:
        """Bring *remote*'s notes ref into this clone.

        Raises:
            StoreReadFailed: git refused the fetch (the remote has no notes,
                or local notes diverged from it).
        """
        ref = notes_ref_name(self.ref)
        try:
            self.runner.run("fetch", "--", remote, f"{ref}:{ref}")
        except GitCommandError as exc:
            raise StoreReadFailed(f"failed to fetch {ref} from {remote}: {exc}") from exc
        logger.debug("fetched %s from %s", ref, remote)
