"""Branch-scoped reports over checkpoint records.

Every ``CheckpointRecord`` carries the branch it was captured on.  Records
written before branches were tracked have an empty branch and are reported
under the default branch (``main`` unless configured otherwise).

Branch filters come in three flavours: exact name, shell glob
(``feature/*``) and regular expression.  A filter is validated before any
record is matched, so a malformed pattern fails immediately instead of
silently matching nothing.
"""

from __future__ import annotations

import fnmatch
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from .authorship import AUTHOR_AI
from .classifier import AuthorClassifier
from .errors import InvalidFilterPattern
from .events import DEFAULT_BRANCH, CheckpointRecord

MATCH_EXACT = "exact"
MATCH_GLOB = "glob"
MATCH_REGEX = "regex"

_GLOB_CHARS = set("*?[]")


def _glob_error(pattern: str) -> Optional[str]:
    """Why *pattern* is not a usable glob, or ``None`` if it is.

    ``fnmatch`` treats a broken ``[`` class as a literal, which would make
    the filter match nothing without complaint.
    """
    i, n = 0, len(pattern)
    while i < n:
        if pattern[i] != "[":
            i += 1
            continue
        j = i + 1
        if j < n and pattern[j] == "!":
            j += 1
        if j < n and pattern[j] == "]":
            return f"empty character class at offset {i}"
        while j < n and pattern[j] != "]":
            if pattern[j] == "/":
                return f"character class at offset {i} contains '/'"
            j += 1
        if j >= n:
            return f"unclosed character class at offset {i}"
        i = j + 1
    return None


def _glob_match(name: str, pattern: str) -> bool:
    # Segment by segment, so * and ? never cross a '/'.
    names, parts = name.split("/"), pattern.split("/")
    if len(names) != len(parts):
        return False
    return all(fnmatch.fnmatchcase(n, p) for n, p in zip(names, parts))


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BranchFilter:
    """Match branch names by exact name, glob or regex.

    Globs follow git refspec rules: ``*`` and ``?`` stay within one
    ``/``-separated segment, so ``feature/*`` matches ``feature/ui`` but not
    ``feature/ui/deep``.
    """

    pattern: str = ""
    mode: str = MATCH_EXACT
    case_insensitive: bool = False

    @classmethod
    def exact(cls, name: str) -> "BranchFilter":
        return cls(name, MATCH_EXACT)

    @classmethod
    def glob(cls, pattern: str) -> "BranchFilter":
        return cls(pattern, MATCH_GLOB)

    @classmethod
    def regex(cls, pattern: str) -> "BranchFilter":
        return cls(pattern, MATCH_REGEX)

    @classmethod
    def from_pattern(cls, pattern: str, is_regex: bool = False) -> "BranchFilter":
        """Regex if asked, glob if *pattern* has ``*?[]``, exact otherwise."""
        if is_regex:
            return cls.regex(pattern)
        if _GLOB_CHARS & set(pattern):
            return cls.glob(pattern)
        return cls.exact(pattern)

    def with_case_insensitive(self) -> "BranchFilter":
        return BranchFilter(self.pattern, self.mode, True)

    def _compiled(self) -> re.Pattern:
        flags = re.IGNORECASE if self.case_insensitive else 0
        try:
            return re.compile(self.pattern, flags)
        except re.error as exc:
            raise InvalidFilterPattern(self.pattern, str(exc)) from exc

    def validate(self) -> None:
        """Raise ``InvalidFilterPattern`` if the pattern cannot be used."""
        if not self.pattern:
            return
        if self.mode not in (MATCH_EXACT, MATCH_GLOB, MATCH_REGEX):
            raise InvalidFilterPattern(self.pattern, f"unknown match mode {self.mode!r}")
        if self.mode == MATCH_REGEX:
            self._compiled()
        elif self.mode == MATCH_GLOB:
            reason = _glob_error(self.pattern)
            if reason:
                raise InvalidFilterPattern(self.pattern, reason)

    def matches(self, branch: str) -> bool:
        if not self.pattern:
            return True
        if self.mode == MATCH_REGEX:
            return self._compiled().search(branch) is not None
        pattern, name = self.pattern, branch
        if self.case_insensitive:
            pattern, name = pattern.lower(), name.lower()
        if self.mode == MATCH_GLOB:
            return _glob_match(name, pattern)
        return name == pattern

    def __str__(self) -> str:
        if not self.pattern:
            return "all branches"
        suffix = " (case-insensitive)" if self.case_insensitive else ""
        return f"{self.mode} match: '{self.pattern}'{suffix}"


@dataclass
class MultiFilter:
    """Any-of combination of branch filters; no filters matches everything."""

    filters: list[BranchFilter] = field(default_factory=list)

    def add(self, flt: BranchFilter) -> None:
        self.filters.append(flt)

    def validate(self) -> None:
        for i, flt in enumerate(self.filters):
            try:
                flt.validate()
            except InvalidFilterPattern as exc:
                raise InvalidFilterPattern(flt.pattern, f"filter {i}: {exc.reason}") from exc

    def matches(self, branch: str) -> bool:
        if not self.filters:
            return True
        return any(f.matches(branch) for f in self.filters)

    def __str__(self) -> str:
        if not self.filters:
            return "all branches"
        return " OR ".join(str(f) for f in self.filters)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@dataclass
class BranchReport:
    """Totals for the records of one branch."""

    branch: str
    record_count: int = 0
    total_added: int = 0
    total_deleted: int = 0
    ai_added: int = 0
    first_record: Optional[datetime] = None
    last_record: Optional[datetime] = None
    authors: list[str] = field(default_factory=list)

    @property
    def ai_ratio(self) -> float:
        """Percentage of added lines written by AI authors."""
        if self.total_added == 0:
            return 0.0
        return round(self.ai_added / self.total_added * 100, 1)

    def to_dict(self) -> dict:
        return {
            "branch": self.branch,
            "record_count": self.record_count,
            "total_added": self.total_added,
            "total_deleted": self.total_deleted,
            "ai_added": self.ai_added,
            "ai_ratio": self.ai_ratio,
            "first_record": self.first_record.isoformat() if self.first_record else None,
            "last_record": self.last_record.isoformat() if self.last_record else None,
            "authors": self.authors,
        }


@dataclass
class GroupReport:
    """Totals for every branch matched by one filter."""

    description: str
    branches: dict[str, BranchReport] = field(default_factory=dict)

    @property
    def matching_branches(self) -> list[str]:
        return sorted(self.branches)

    @property
    def total_records(self) -> int:
        return sum(r.record_count for r in self.branches.values())

    @property
    def total_added(self) -> int:
        return sum(r.total_added for r in self.branches.values())

    @property
    def total_deleted(self) -> int:
        return sum(r.total_deleted for r in self.branches.values())

    @property
    def ai_ratio(self) -> float:
        total = self.total_added
        if total == 0:
            return 0.0
        return round(sum(r.ai_added for r in self.branches.values()) / total * 100, 1)

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "matching_branches": self.matching_branches,
            "total_records": self.total_records,
            "total_added": self.total_added,
            "total_deleted": self.total_deleted,
            "ai_ratio": self.ai_ratio,
            "branches": {name: self.branches[name].to_dict() for name in self.matching_branches},
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)


@dataclass
class RecordStats:
    """Overview of the loaded records, branch-tagged or not."""

    total_records: int = 0
    unique_branches: int = 0
    total_added: int = 0
    total_deleted: int = 0
    records_with_branch: int = 0
    records_without_branch: int = 0
    first_record: Optional[datetime] = None
    last_record: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "total_records": self.total_records,
            "unique_branches": self.unique_branches,
            "total_added": self.total_added,
            "total_deleted": self.total_deleted,
            "records_with_branch": self.records_with_branch,
            "records_without_branch": self.records_without_branch,
            "first_record": self.first_record.isoformat() if self.first_record else None,
            "last_record": self.last_record.isoformat() if self.last_record else None,
        }


class BranchAnalyzer:
    """Group checkpoint records by branch and summarise them."""

    def __init__(
        self,
        records: Iterable[CheckpointRecord],
        default_branch: str = DEFAULT_BRANCH,
        classifier: Optional[AuthorClassifier] = None,
    ) -> None:
        self.records = list(records)
        self.default_branch = default_branch
        self.classifier = classifier or AuthorClassifier()

    def _branch(self, record: CheckpointRecord) -> str:
        return record.get_branch(self.default_branch)

    def _is_ai(self, record: CheckpointRecord) -> bool:
        if record.author_type:
            return record.author_type == AUTHOR_AI
        return self.classifier.is_ai_author(record.author)

    def _summarise(self, branch: str, records: list[CheckpointRecord]) -> BranchReport:
        report = BranchReport(branch=branch, record_count=len(records))
        authors: set[str] = set()
        for rec in records:
            report.total_added += rec.added
            report.total_deleted += rec.deleted
            if self._is_ai(rec):
                report.ai_added += rec.added
            if report.first_record is None or rec.timestamp < report.first_record:
                report.first_record = rec.timestamp
            if report.last_record is None or rec.timestamp > report.last_record:
                report.last_record = rec.timestamp
            if rec.author:
                authors.add(rec.author)
        report.authors = sorted(authors)
        return report

    def analyze_branch(self, name: str) -> BranchReport:
        """Report for exactly one branch (empty report if it has no records)."""
        flt = BranchFilter.exact(name)
        return self._summarise(name, [r for r in self.records if flt.matches(self._branch(r))])

    def analyze_pattern(self, pattern: str, is_regex: bool = False) -> GroupReport:
        """Report for every branch matching *pattern*.

        Raises:
            InvalidFilterPattern: *pattern* does not compile.
        """
        return self.analyze_filter(BranchFilter.from_pattern(pattern, is_regex))

    def analyze_filter(self, flt: BranchFilter | MultiFilter) -> GroupReport:
        flt.validate()
        groups: dict[str, list[CheckpointRecord]] = {}
        for rec in self.records:
            name = self._branch(rec)
            if flt.matches(name):
                groups.setdefault(name, []).append(rec)
        return GroupReport(
            description=str(flt),
            branches={name: self._summarise(name, recs) for name, recs in groups.items()},
        )

    def analyze_all(self) -> GroupReport:
        return self.analyze_pattern("")

    def unique_branches(self) -> list[str]:
        return sorted({self._branch(r) for r in self.records})

    def display_branches(self) -> list[str]:
        """Branch names as shown to users, marking inferred defaults."""
        names = {r.display_branch(self.default_branch) for r in self.records}
        return sorted(names)

    def record_stats(self) -> RecordStats:
        stats = RecordStats(total_records=len(self.records))
        for rec in self.records:
            stats.total_added += rec.added
            stats.total_deleted += rec.deleted
            if stats.first_record is None or rec.timestamp < stats.first_record:
                stats.first_record = rec.timestamp
            if stats.last_record is None or rec.timestamp > stats.last_record:
                stats.last_record = rec.timestamp
            if rec.has_branch_info:
                stats.records_with_branch += 1
            else:
                stats.records_without_branch += 1
        stats.unique_branches = len(self.unique_branches())
        return stats
