"""Statistics aggregation over resolved lines, tracking events and records.

Three inputs, three families of summaries:

- Resolved lines of one file (``aictrack.resolver``) -> ``FileStatistics`` /
  ``FileAttribution`` / ``RepoAttribution`` / ``top_contributors``.
- Tracking events (``aictrack.events``) -> contributor, file, daily and
  period statistics plus ``analyze_trends``.
- Provenance records over a revision range -> ``RangeReport``.

Public API
----------
- ``file_statistics(path, lines)`` -> ``FileStatistics``
- ``top_contributors(lines, limit)`` -> ``list[ContributorShare]``
- ``contributor_stats(events)`` / ``file_event_stats(events)``
- ``daily_stats(events)`` / ``period_stats(events, start, end)``
- ``analyze_trends(daily)`` -> ``TrendAnalysis``
- ``build_range_report(records, commits, label)`` -> ``RangeReport``
- ``since_to_range(since, runner)`` / ``commits_in_range(range, runner)``

Everything here works on data already in memory; only the two range helpers
call git.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional, Sequence

from .authorship import AUTHOR_AI, AuthorshipRecord, count_lines
from .errors import GitCommandError, InvalidTimeRange
from .events import EVENT_AI, EVENT_COMMIT, EVENT_HUMAN, TrackEvent
from .gitexec import GitRunner
from .period import expand_since
from .resolver import ResolvedLine

logger = logging.getLogger(__name__)

TOP_N = 10


def _pct(part: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(part / total * 100, 1)


def _most_common(names: Iterable[str]) -> str:
    """Most frequent non-empty name; ties go to the first one seen."""
    counts: dict[str, int] = {}
    for name in names:
        if name:
            counts[name] = counts.get(name, 0) + 1
    best, best_count = "", 0
    for name, count in counts.items():
        if count > best_count:
            best, best_count = name, count
    return best


def _bar(pct: float, width: int = 20) -> str:
    filled = round(pct / 100 * width)
    return "█" * filled + "░" * (width - filled)


# ---------------------------------------------------------------------------
# Resolved-line statistics
# ---------------------------------------------------------------------------


@dataclass
class FileStatistics:
    """AI vs human line counts for one file."""

    path: str
    total_lines: int = 0
    ai_lines: int = 0
    human_lines: int = 0
    top_ai_model: str = ""
    top_human_author: str = ""

    @property
    def ai_pct(self) -> float:
        return _pct(self.ai_lines, self.total_lines)

    @property
    def human_pct(self) -> float:
        return _pct(self.human_lines, self.total_lines)

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "total_lines": self.total_lines,
            "ai_lines": self.ai_lines,
            "human_lines": self.human_lines,
            "ai_pct": self.ai_pct,
            "human_pct": self.human_pct,
            "top_ai_model": self.top_ai_model,
            "top_human_author": self.top_human_author,
        }


def file_statistics(path: str, lines: Sequence[ResolvedLine]) -> FileStatistics:
    """Summarise a file's resolved lines in a single pass."""
    ai = [ln for ln in lines if ln.is_ai]
    human = [ln for ln in lines if not ln.is_ai]
    return FileStatistics(
        path=path,
        total_lines=len(lines),
        ai_lines=len(ai),
        human_lines=len(human),
        top_ai_model=_most_common(ln.model for ln in ai),
        top_human_author=_most_common(ln.author for ln in human),
    )


@dataclass
class ContributorShare:
    """One contributor's share of a file's lines."""

    name: str
    lines: int
    pct: float
    is_ai: bool

    def to_dict(self) -> dict:
        return {"name": self.name, "lines": self.lines, "pct": self.pct, "is_ai": self.is_ai}


def contributor_label(line: ResolvedLine) -> str:
    """``AI (<model>)`` for AI lines, the author name for human lines."""
    if line.is_ai:
        return f"AI ({line.model})" if line.model else "AI"
    return line.author


def top_contributors(lines: Sequence[ResolvedLine], limit: int = 5) -> list[ContributorShare]:
    """Rank contributors of a file by line count (stable on ties)."""
    counts: dict[str, int] = {}
    kinds: dict[str, bool] = {}
    for ln in lines:
        label = contributor_label(ln)
        counts[label] = counts.get(label, 0) + 1
        kinds.setdefault(label, ln.is_ai)
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    total = len(lines)
    return [
        ContributorShare(name=name, lines=n, pct=_pct(n, total), is_ai=kinds[name])
        for name, n in ranked[: max(0, limit)]
    ]


@dataclass
class FileAttribution:
    """Per-line attribution of one file plus its summary."""

    path: str
    lines: list[ResolvedLine] = field(default_factory=list)

    @property
    def stats(self) -> FileStatistics:
        return file_statistics(self.path, self.lines)

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "summary": self.stats.to_dict(),
            "contributors": [c.to_dict() for c in top_contributors(self.lines)],
            "lines": [ln.to_dict() for ln in self.lines],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def to_markdown(self) -> str:
        """Render per-line attribution as Markdown."""
        st = self.stats
        out: list[str] = [f"# Attribution: `{self.path}`\n"]
        out.append(
            f"**{st.total_lines}** lines, AI {st.ai_lines} ({st.ai_pct}%), "
            f"human {st.human_lines} ({st.human_pct}%)\n"
        )
        if not self.lines:
            out.append("_No lines._\n")
            return "\n".join(out)
        out.append("| Line | Author | AI | Model | Commit | Content |")
        out.append("|------|--------|----|-------|--------|---------|")
        for ln in self.lines:
            content = ln.content.replace("|", "\\|")
            out.append(
                f"| {ln.line_number} | {ln.author} | {'yes' if ln.is_ai else 'no'} "
                f"| {ln.model or '—'} | `{ln.commit[:8]}` | `{content}` |"
            )
        out.append("")
        return "\n".join(out)


@dataclass
class RepoAttribution:
    """Attribution summary across many files."""

    files: list[FileStatistics] = field(default_factory=list)

    @property
    def total_lines(self) -> int:
        return sum(f.total_lines for f in self.files)

    @property
    def ai_lines(self) -> int:
        return sum(f.ai_lines for f in self.files)

    @property
    def human_lines(self) -> int:
        return sum(f.human_lines for f in self.files)

    @property
    def ai_pct(self) -> float:
        return _pct(self.ai_lines, self.total_lines)

    @property
    def human_pct(self) -> float:
        return _pct(self.human_lines, self.total_lines)

    @classmethod
    def from_resolved(cls, resolved: dict[str, list[ResolvedLine]]) -> "RepoAttribution":
        return cls(files=[file_statistics(p, lines) for p, lines in resolved.items()])

    def to_dict(self) -> dict:
        return {
            "total_lines": self.total_lines,
            "ai_lines": self.ai_lines,
            "human_lines": self.human_lines,
            "ai_pct": self.ai_pct,
            "human_pct": self.human_pct,
            "files": [f.to_dict() for f in self.files],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def to_markdown(self) -> str:
        out: list[str] = ["# AI Attribution Report\n", "## Summary\n"]
        out.append("| Metric | Value |")
        out.append("|--------|-------|")
        out.append(f"| Total lines | {self.total_lines:,} |")
        out.append(f"| AI lines | {self.ai_lines:,} ({self.ai_pct}%) |")
        out.append(f"| Human lines | {self.human_lines:,} ({self.human_pct}%) |")
        out.append("")
        out.append("```")
        out.append(f"AI    [{_bar(self.ai_pct)}] {self.ai_pct:5.1f}%")
        out.append(f"Human [{_bar(self.human_pct)}] {self.human_pct:5.1f}%")
        out.append("```\n")
        if not self.files:
            out.append("_No files resolved._\n")
            return "\n".join(out)
        out.append("## Per-File Attribution\n")
        out.append("| File | Lines | AI% | Top model | Top human |")
        out.append("|------|-------|-----|-----------|-----------|")
        for f in sorted(self.files, key=lambda f: f.ai_pct, reverse=True):
            out.append(
                f"| `{f.path}` | {f.total_lines} | {f.ai_pct}% "
                f"| {f.top_ai_model or '—'} | {f.top_human_author or '—'} |"
            )
        out.append("")
        return "\n".join(out)


# ---------------------------------------------------------------------------
# Event-stream statistics
# ---------------------------------------------------------------------------


@dataclass
class ContributorStats:
    """Activity of one author across the event stream."""

    name: str
    is_ai: bool
    first_activity: datetime
    last_activity: datetime
    model: str = ""
    events: int = 0
    lines_added: int = 0
    lines_modified: int = 0
    lines_deleted: int = 0
    files_modified: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "is_ai": self.is_ai,
            "model": self.model,
            "events": self.events,
            "lines_added": self.lines_added,
            "lines_modified": self.lines_modified,
            "lines_deleted": self.lines_deleted,
            "files_modified": self.files_modified,
            "first_activity": self.first_activity.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }


def contributor_stats(events: Iterable[TrackEvent]) -> list[ContributorStats]:
    """Group events by author, most active first.

    ``is_ai`` and ``model`` come from the author's first event; they are
    never re-derived from the name.
    """
    by_author: dict[str, ContributorStats] = {}
    files: dict[str, set[str]] = {}
    for ev in events:
        st = by_author.get(ev.author)
        if st is None:
            st = ContributorStats(
                name=ev.author,
                is_ai=ev.event_type == EVENT_AI,
                first_activity=ev.timestamp,
                last_activity=ev.timestamp,
                model=ev.model,
            )
            by_author[ev.author] = st
            files[ev.author] = set()
        st.events += 1
        st.first_activity = min(st.first_activity, ev.timestamp)
        st.last_activity = max(st.last_activity, ev.timestamp)
        for fc in ev.files:
            st.lines_added += fc.lines_added
            st.lines_modified += fc.lines_modified
            st.lines_deleted += fc.lines_deleted
            files[ev.author].add(fc.path)
    for name, st in by_author.items():
        st.files_modified = len(files[name])
    return sorted(by_author.values(), key=lambda s: s.events, reverse=True)


@dataclass
class FileEventStats:
    """How often one file was touched, and by whom last."""

    path: str
    last_modified: datetime
    main_contributor: str = ""
    ai_events: int = 0
    human_events: int = 0
    total_changes: int = 0

    @property
    def activity(self) -> int:
        return self.ai_events + self.human_events

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "ai_events": self.ai_events,
            "human_events": self.human_events,
            "total_changes": self.total_changes,
            "last_modified": self.last_modified.isoformat(),
            "main_contributor": self.main_contributor,
        }


def file_event_stats(events: Iterable[TrackEvent]) -> list[FileEventStats]:
    """Per-file event counts, most active first."""
    by_path: dict[str, FileEventStats] = {}
    for ev in events:
        for fc in ev.files:
            st = by_path.get(fc.path)
            if st is None:
                st = FileEventStats(
                    path=fc.path,
                    last_modified=ev.timestamp,
                    main_contributor=ev.author,
                )
                by_path[fc.path] = st
            if ev.event_type == EVENT_AI:
                st.ai_events += 1
            elif ev.event_type == EVENT_HUMAN:
                st.human_events += 1
            st.total_changes += fc.total_changes
            if ev.timestamp > st.last_modified:
                st.last_modified = ev.timestamp
                st.main_contributor = ev.author
    return sorted(by_path.values(), key=lambda s: s.activity, reverse=True)


@dataclass
class DailyStats:
    """Event counts for one calendar day."""

    day: date
    ai_events: int = 0
    human_events: int = 0
    commit_events: int = 0
    total_changes: int = 0

    @property
    def activity(self) -> int:
        return self.ai_events + self.human_events

    @property
    def ai_pct(self) -> float:
        """AI share of AI + human events; commits do not count."""
        if self.activity == 0:
            return 0.0
        return self.ai_events / self.activity * 100

    def to_dict(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "ai_events": self.ai_events,
            "human_events": self.human_events,
            "commit_events": self.commit_events,
            "total_changes": self.total_changes,
            "ai_pct": round(self.ai_pct, 1),
        }


def daily_stats(events: Iterable[TrackEvent]) -> list[DailyStats]:
    """Bucket events by calendar day (event timestamp's own date), oldest first."""
    by_day: dict[date, DailyStats] = {}
    for ev in events:
        day = ev.timestamp.date()
        st = by_day.setdefault(day, DailyStats(day=day))
        if ev.event_type == EVENT_AI:
            st.ai_events += 1
        elif ev.event_type == EVENT_HUMAN:
            st.human_events += 1
        elif ev.event_type == EVENT_COMMIT:
            st.commit_events += 1
        st.total_changes += ev.total_changes
    return [by_day[d] for d in sorted(by_day)]


@dataclass
class PeriodStats:
    """Everything known about one window of the event stream."""

    start: Optional[datetime]
    end: Optional[datetime]
    total_events: int = 0
    ai_events: int = 0
    human_events: int = 0
    daily: list[DailyStats] = field(default_factory=list)
    top_contributors: list[ContributorStats] = field(default_factory=list)
    top_files: list[FileEventStats] = field(default_factory=list)

    @property
    def ai_pct(self) -> float:
        return _pct(self.ai_events, self.ai_events + self.human_events)

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "total_events": self.total_events,
            "ai_events": self.ai_events,
            "human_events": self.human_events,
            "ai_pct": self.ai_pct,
            "daily": [d.to_dict() for d in self.daily],
            "top_contributors": [c.to_dict() for c in self.top_contributors],
            "top_files": [f.to_dict() for f in self.top_files],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def to_markdown(self) -> str:
        out = ["# Period Statistics\n"]
        window = f"{self.start:%Y-%m-%d} → {self.end:%Y-%m-%d}" if self.start and self.end else "all time"
        out.append(f"**Window:** {window}\n")
        out.append(
            f"**Events:** {self.total_events} (AI {self.ai_events}, human {self.human_events}, "
            f"AI {self.ai_pct}%)\n"
        )
        if self.top_contributors:
            out.append("## Top Contributors\n")
            out.append("| Name | Kind | Events | +Lines | ~Lines | -Lines | Files |")
            out.append("|------|------|--------|--------|--------|--------|-------|")
            for c in self.top_contributors:
                kind = "AI" if c.is_ai else "human"
                out.append(
                    f"| {c.name} | {kind} | {c.events} | {c.lines_added} "
                    f"| {c.lines_modified} | {c.lines_deleted} | {c.files_modified} |"
                )
            out.append("")
        if self.top_files:
            out.append("## Top Files\n")
            out.append("| File | AI events | Human events | Changes |")
            out.append("|------|-----------|--------------|---------|")
            for f in self.top_files:
                out.append(f"| `{f.path}` | {f.ai_events} | {f.human_events} | {f.total_changes} |")
            out.append("")
        return "\n".join(out)


def period_stats(
    events: Sequence[TrackEvent],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    top_n: int = TOP_N,
) -> PeriodStats:
    """Summarise *events* (already restricted to the window by the caller)."""
    return PeriodStats(
        start=start,
        end=end,
        total_events=len(events),
        ai_events=sum(1 for e in events if e.event_type == EVENT_AI),
        human_events=sum(1 for e in events if e.event_type == EVENT_HUMAN),
        daily=daily_stats(events),
        top_contributors=contributor_stats(events)[:top_n],
        top_files=file_event_stats(events)[:top_n],
    )


# ---------------------------------------------------------------------------
# Trend analysis
# ---------------------------------------------------------------------------


@dataclass
class TrendAnalysis:
    """Direction and stability of AI usage over a daily series."""

    first_week_avg: Optional[float] = None
    last_week_avg: Optional[float] = None
    most_active_weekday: Optional[str] = None
    most_active_activity: int = 0
    variance: Optional[float] = None

    @property
    def trend_change(self) -> Optional[float]:
        if self.first_week_avg is None or self.last_week_avg is None:
            return None
        return self.last_week_avg - self.first_week_avg

    @property
    def stability(self) -> Optional[float]:
        """``100 - variance``; goes negative for very noisy series."""
        if self.variance is None:
            return None
        return 100.0 - self.variance

    def to_dict(self) -> dict:
        d: dict = {
            "most_active_weekday": {
                "weekday": self.most_active_weekday,
                "activity": self.most_active_activity,
            }
        }
        if self.first_week_avg is not None:
            d["ai_usage_trend"] = {
                "first_week_avg": self.first_week_avg,
                "last_week_avg": self.last_week_avg,
                "trend_change": self.trend_change,
            }
        if self.variance is not None:
            d["ai_ratio_stability"] = {"variance": self.variance, "stability": self.stability}
        return d


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def population_variance(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    mean = _mean(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def analyze_trends(daily: Sequence[DailyStats]) -> TrendAnalysis:
    """First-week vs last-week AI%, busiest weekday, and daily AI% variance.

    The week comparison needs at least two days of data.  The busiest weekday
    is ``None`` when there was no AI or human activity at all.
    """
    analysis = TrendAnalysis()
    if len(daily) > 1:
        analysis.first_week_avg = _mean([d.ai_pct for d in daily[:7]])
        analysis.last_week_avg = _mean([d.ai_pct for d in daily[-7:]])

    per_weekday: dict[str, int] = {}
    for d in daily:
        name = d.day.strftime("%A")
        per_weekday[name] = per_weekday.get(name, 0) + d.activity
    for name, activity in per_weekday.items():
        if activity > analysis.most_active_activity:
            analysis.most_active_weekday = name
            analysis.most_active_activity = activity

    if daily:
        analysis.variance = population_variance([d.ai_pct for d in daily])
    return analysis


# ---------------------------------------------------------------------------
# Range report (provenance records over a revision range)
# ---------------------------------------------------------------------------


@dataclass
class AuthorTotals:
    name: str
    kind: str
    lines: int = 0
    commits: int = 0
    pct: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.kind,
            "lines": self.lines,
            "commits": self.commits,
            "pct": self.pct,
        }


@dataclass
class FileTotals:
    path: str
    total_lines: int = 0
    ai_lines: int = 0
    human_lines: int = 0

    @property
    def ai_pct(self) -> float:
        return _pct(self.ai_lines, self.total_lines)

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "total_lines": self.total_lines,
            "ai_lines": self.ai_lines,
            "human_lines": self.human_lines,
            "ai_pct": self.ai_pct,
        }


@dataclass
class RangeReport:
    """Line totals from every provenance record in a revision range."""

    label: str
    commits: int = 0
    records: int = 0
    ai_lines: int = 0
    human_lines: int = 0
    by_author: list[AuthorTotals] = field(default_factory=list)
    by_file: list[FileTotals] = field(default_factory=list)

    @property
    def total_lines(self) -> int:
        return self.ai_lines + self.human_lines

    @property
    def ai_pct(self) -> float:
        return _pct(self.ai_lines, self.total_lines)

    def to_dict(self) -> dict:
        return {
            "range": self.label,
            "commits": self.commits,
            "records": self.records,
            "summary": {
                "total_lines": self.total_lines,
                "ai_lines": self.ai_lines,
                "human_lines": self.human_lines,
                "ai_pct": self.ai_pct,
            },
            "by_author": [a.to_dict() for a in self.by_author],
            "by_file": [f.to_dict() for f in self.by_file],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def to_markdown(self) -> str:
        out = [f"# Range Report: `{self.label}`\n"]
        out.append(f"**Commits:** {self.commits} ({self.records} with provenance records)\n")
        out.append("| Metric | Value |")
        out.append("|--------|-------|")
        out.append(f"| Total lines | {self.total_lines:,} |")
        out.append(f"| AI lines | {self.ai_lines:,} ({self.ai_pct}%) |")
        out.append(f"| Human lines | {self.human_lines:,} |")
        out.append("")
        if self.by_author:
            out.append("## By Author\n")
            out.append("| Author | Type | Lines | Commits | Share |")
            out.append("|--------|------|-------|---------|-------|")
            for a in self.by_author:
                out.append(f"| {a.name} | {a.kind} | {a.lines} | {a.commits} | {a.pct}% |")
            out.append("")
        if self.by_file:
            out.append("## By File\n")
            out.append("| File | Lines | AI | Human | AI% |")
            out.append("|------|-------|----|-------|-----|")
            for f in self.by_file:
                out.append(
                    f"| `{f.path}` | {f.total_lines} | {f.ai_lines} | {f.human_lines} | {f.ai_pct}% |"
                )
            out.append("")
        return "\n".join(out)


def build_range_report(
    records: dict[str, AuthorshipRecord],
    commits: Sequence[str],
    label: str = "",
) -> RangeReport:
    """Aggregate *records* (commit -> record) for the commits of a range.

    Commits without a record contribute nothing; lines are counted from the
    authors' recorded line ranges.
    """
    report = RangeReport(label=label, commits=len(commits))
    authors: dict[str, AuthorTotals] = {}
    author_commits: dict[str, set[str]] = {}
    files: dict[str, FileTotals] = {}
    for commit in commits:
        record = records.get(commit)
        if record is None:
            continue
        report.records += 1
        for path, fa in record.files.items():
            ft = files.setdefault(path, FileTotals(path=path))
            for author in fa.authors:
                n = count_lines(author.lines)
                at = authors.setdefault(author.name, AuthorTotals(name=author.name, kind=author.kind))
                at.lines += n
                author_commits.setdefault(author.name, set()).add(commit)
                ft.total_lines += n
                if author.kind == AUTHOR_AI:
                    report.ai_lines += n
                    ft.ai_lines += n
                else:
                    report.human_lines += n
                    ft.human_lines += n
    for name, at in authors.items():
        at.commits = len(author_commits[name])
        at.pct = _pct(at.lines, report.total_lines)
    report.by_author = sorted(authors.values(), key=lambda a: a.lines, reverse=True)
    report.by_file = sorted(files.values(), key=lambda f: f.total_lines, reverse=True)
    return report


def commits_in_range(revision_range: str, runner: Optional[GitRunner] = None) -> list[str]:
    """Commit ids reachable in *revision_range*, newest first."""
    runner = runner or GitRunner()
    out = runner.run("log", "--format=%H", revision_range)
    return [ln.strip() for ln in out.splitlines() if ln.strip()]


def since_to_range(since: str, runner: Optional[GitRunner] = None) -> str:
    """Turn ``--since`` (``7d``, ``2 weeks ago``, a date) into a revision range.

    The range starts just before the oldest matching commit and ends at
    HEAD.  When that commit is the root commit the whole of HEAD is returned.

    Raises:
        InvalidTimeRange: no commits match.
    """
    runner = runner or GitRunner()
    expanded = expand_since(since)
    out = runner.run("log", f"--since={expanded}", "--format=%H", "--reverse")
    commits = [ln.strip() for ln in out.splitlines() if ln.strip()]
    if not commits:
        raise InvalidTimeRange(f"no commits found since {since}")
    first = commits[0]
    try:
        runner.run("rev-parse", "--verify", "--quiet", f"{first}^")
    except GitCommandError:
        logger.debug("%s is the root commit; using all of HEAD", first)
        return "HEAD"
    return f"{first}^..HEAD"
