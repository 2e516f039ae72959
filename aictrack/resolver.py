"""Attribution resolver: blame lines + provenance records -> per-line verdicts.

For each blamed line the resolver asks, in order:

1. Does the line's commit carry an authorship record listing this file?
   Then the first AI author wins if any is listed, else the first human.
2. Does the blame author look like an AI tool?  Then the line is AI and the
   model is guessed from the commit date.
3. Otherwise the line is human, credited to the blame author.

Records are memoised per commit for the lifetime of the resolver, behind a
lock, so files resolved in parallel share lookups safely.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Iterable, Optional

from .authorship import AuthorshipRecord, normalize_path
from .blame import BlameLine, run_blame
from .classifier import AuthorClassifier
from .errors import AictrackError
from .gitexec import GitRunner
from .notes import ProvenanceStore

logger = logging.getLogger(__name__)

# Blame reports uncommitted working-tree lines under the all-zero id.
UNCOMMITTED = "0" * 40

SOURCE_RECORD = "record"
SOURCE_HEURISTIC = "heuristic"
SOURCE_BLAME = "blame"


@dataclass(frozen=True)
class ResolvedLine:
    """Final authorship verdict for one line."""

    line_number: int
    author: str
    timestamp: Optional[datetime]
    is_ai: bool
    model: str
    commit: str
    content: str
    source: str = SOURCE_BLAME  # record | heuristic | blame

    def to_dict(self) -> dict:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        return d


class AttributionResolver:
    """Resolve files to per-line AI/human attribution."""

    def __init__(
        self,
        store: Optional[ProvenanceStore] = None,
        runner: Optional[GitRunner] = None,
        classifier: Optional[AuthorClassifier] = None,
        revision: Optional[str] = None,
        max_workers: int = 4,
    ) -> None:
        self.runner = runner or (store.runner if store else GitRunner())
        self.store = store or ProvenanceStore(self.runner)
        self.classifier = classifier or AuthorClassifier()
        self.revision = revision
        self.max_workers = max(1, max_workers)
        self._cache: dict[str, Optional[AuthorshipRecord]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Record cache
    # ------------------------------------------------------------------

    def record_for(self, commit: str) -> Optional[AuthorshipRecord]:
        """Memoised ``store.get``; store errors propagate and are not cached."""
        if commit == UNCOMMITTED:
            return None
        with self._lock:
            if commit in self._cache:
                return self._cache[commit]
        logger.debug("record cache miss for %s", commit)
        record = self.store.get(commit)
        with self._lock:
            return self._cache.setdefault(commit, record)

    def prefetch(self, revision_range: str) -> int:
        """Warm the cache from one ``get_range`` call; returns records loaded."""
        records = self.store.get_range(revision_range)
        with self._lock:
            for commit, record in records.items():
                self._cache.setdefault(commit, record)
        return len(records)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_line(self, line: BlameLine, path: str) -> ResolvedLine:
        """Resolve a single blame line of *path*."""
        record = self.record_for(line.commit)
        fa = record.file(path) if record is not None else None
        if fa is not None and fa.authors:
            author = fa.first_ai() if fa.has_ai else fa.first_human()
            if author is not None:
                return ResolvedLine(
                    line_number=line.line_number,
                    author=author.name,
                    timestamp=line.author_time,
                    is_ai=author.is_ai,
                    model=author.model if author.is_ai else "",
                    commit=line.commit,
                    content=line.content,
                    source=SOURCE_RECORD,
                )

        model = self.classifier.classify(line.author, line.author_time, line.author_mail)
        if model is not None:
            return ResolvedLine(
                line_number=line.line_number,
                author=line.author,
                timestamp=line.author_time,
                is_ai=True,
                model=model,
                commit=line.commit,
                content=line.content,
                source=SOURCE_HEURISTIC,
            )

        return ResolvedLine(
            line_number=line.line_number,
            author=line.author,
            timestamp=line.author_time,
            is_ai=False,
            model="",
            commit=line.commit,
            content=line.content,
            source=SOURCE_BLAME,
        )

    def resolve_file(self, path: str) -> list[ResolvedLine]:
        """Resolve every line of *path* in blame order.

        Raises:
            BlameUnavailable: the file cannot be blamed.
            StoreReadFailed / StoreCorrupt: a referenced commit's record
                cannot be read.
        """
        rel = normalize_path(path)
        lines = run_blame(rel, self.runner, self.revision)
        for commit in dict.fromkeys(bl.commit for bl in lines):
            self.record_for(commit)
        return [self.resolve_line(bl, rel) for bl in lines]

    def resolve_files(self, paths: Iterable[str]) -> dict[str, list[ResolvedLine]]:
        """Resolve many files in parallel.

        A file that fails to resolve is logged and left out of the result
        instead of aborting the batch.
        """
        ordered = list(dict.fromkeys(paths))
        results: dict[str, list[ResolvedLine]] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {path: pool.submit(self.resolve_file, path) for path in ordered}
        for path in ordered:
            try:
                results[path] = futures[path].result()
            except AictrackError as exc:
                logger.warning("skipping %s: %s", path, exc)
        return results
