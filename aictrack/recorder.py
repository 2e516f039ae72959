"""Turn pending checkpoints into the provenance record for HEAD.

Run right after ``git commit`` (the post-commit hook calls
``aictrack commit``).  The editor hook has been appending one checkpoint per
author edit to the pending file; this folds them into a single
``AuthorshipRecord``, stores it as the commit's note, then moves the
checkpoints into the branch log with the commit and branch filled in.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Optional

from .authorship import AuthorshipRecord, build_record
from .classifier import AuthorClassifier
from .errors import EventInvalid
from .events import CheckpointRecord, append_checkpoints, clear_checkpoints, load_checkpoints
from .gitexec import GitRunner
from .notes import ProvenanceStore

logger = logging.getLogger(__name__)


def _valid(records: list[CheckpointRecord], source: Path) -> list[CheckpointRecord]:
    valid = []
    for rec in records:
        try:
            rec.validate()
        except EventInvalid as exc:
            logger.warning("%s: skipping checkpoint by %r: %s", source, rec.author, exc)
            continue
        valid.append(rec)
    return valid


def commit_pending(
    runner: GitRunner,
    store: ProvenanceStore,
    pending_path: Path,
    log_path: Path,
    classifier: Optional[AuthorClassifier] = None,
) -> Optional[AuthorshipRecord]:
    """Record the pending checkpoints against HEAD.

    Returns the stored record, or ``None`` when nothing was pending.  The
    pending file is only cleared once the note is written, so a failed
    write can be retried.

    Raises:
        GitCommandError: HEAD cannot be resolved.
        RecordInvalid / StoreWriteFailed: the note could not be written.
    """
    pending = _valid(load_checkpoints(pending_path), pending_path)
    if not pending:
        logger.debug("no pending checkpoints in %s", pending_path)
        return None

    commit = runner.head()
    branch = runner.current_branch()
    if branch == "HEAD":
        branch = ""  # detached; the branch log falls back to the default

    record = build_record([rec.to_checkpoint(classifier) for rec in pending], commit)
    store.put(record)

    archived = [
        dataclasses.replace(rec, commit=commit, branch=rec.branch or branch)
        for rec in pending
    ]
    try:
        append_checkpoints(log_path, archived)
        clear_checkpoints(pending_path)
    except OSError as exc:
        logger.warning("record for %s written, but %s was not archived: %s", commit, pending_path, exc)
    return record
