"""Tests for aictrack/stats.py -- file, event, trend and range statistics."""
from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone

import pytest

from aictrack.authorship import AUTHOR_AI, AUTHOR_HUMAN, AuthorInfo, AuthorshipRecord, FileAuthorship
from aictrack.errors import GitCommandError, InvalidTimeRange
from aictrack.events import FileChange, TrackEvent
from aictrack.resolver import ResolvedLine
from aictrack.stats import (
    DailyStats,
    FileAttribution,
    RepoAttribution,
    analyze_trends,
    build_range_report,
    commits_in_range,
    contributor_stats,
    daily_stats,
    file_event_stats,
    file_statistics,
    period_stats,
    population_variance,
    since_to_range,
    top_contributors,
)
from conftest import FakeRunner

T0 = datetime(2024, 8, 5, 10, tzinfo=timezone.utc)  # a Monday


def _line(n: int, author: str, is_ai: bool, model: str = "") -> ResolvedLine:
    return ResolvedLine(
        line_number=n,
        author=author,
        timestamp=T0,
        is_ai=is_ai,
        model=model,
        commit="f" * 40,
        content=f"line {n}",
    )


FOUR = [
    _line(1, "Alice", False),
    _line(2, "Claude Code", True, "claude-sonnet-4"),
    _line(3, "Bob", False),
    _line(4, "Claude Code", True, "claude-sonnet-4"),
]


def _event(kind: str, author: str, when: datetime, files=None, model: str = "") -> TrackEvent:
    if kind == "ai" and not model:
        model = "claude-sonnet-4"
    return TrackEvent(
        timestamp=when,
        event_type=kind,
        author=author,
        model=model,
        files=files or [FileChange("a.py", lines_added=10)],
        commit_hash="c" * 40 if kind == "commit" else "",
    )


# ---------------------------------------------------------------------------
# Resolved-line statistics
# ---------------------------------------------------------------------------


class TestFileStatistics:
    def test_half_and_half(self):
        st = file_statistics("app.py", FOUR)
        assert st.total_lines == 4
        assert st.ai_pct == 50.0
        assert st.human_pct == 50.0
        assert st.top_ai_model == "claude-sonnet-4"

    def test_tie_goes_to_first_seen(self):
        st = file_statistics("app.py", FOUR)
        assert st.top_human_author == "Alice"

    def test_most_frequent_model(self):
        lines = [
            _line(1, "x", True, "m1"),
            _line(2, "x", True, "m2"),
            _line(3, "x", True, "m2"),
        ]
        assert file_statistics("a", lines).top_ai_model == "m2"

    def test_empty(self):
        st = file_statistics("empty.py", [])
        assert st.total_lines == 0
        assert st.ai_pct == 0.0
        assert st.top_ai_model == ""

    def test_to_dict(self):
        d = file_statistics("app.py", FOUR).to_dict()
        assert d["ai_lines"] == 2
        assert d["top_human_author"] == "Alice"


class TestTopContributors:
    def test_ranking(self):
        ranked = top_contributors(FOUR)
        assert ranked[0].name == "AI (claude-sonnet-4)"
        assert ranked[0].lines == 2
        assert ranked[0].pct == 50.0
        assert ranked[0].is_ai
        assert [c.name for c in ranked[1:]] == ["Alice", "Bob"]

    def test_limit(self):
        assert len(top_contributors(FOUR, limit=1)) == 1


class TestFileAttribution:
    def test_json(self):
        data = json.loads(FileAttribution("app.py", FOUR).to_json())
        assert data["summary"]["ai_pct"] == 50.0
        assert len(data["lines"]) == 4
        assert data["lines"][1]["model"] == "claude-sonnet-4"

    def test_markdown(self):
        md = FileAttribution("app.py", FOUR).to_markdown()
        assert "# Attribution: `app.py`" in md
        assert "claude-sonnet-4" in md
        assert md.count("\n| ") >= 5

    def test_markdown_empty(self):
        assert "_No lines._" in FileAttribution("x.py").to_markdown()


class TestRepoAttribution:
    def test_totals(self):
        rep = RepoAttribution.from_resolved({"a.py": FOUR, "b.py": FOUR[:1]})
        assert rep.total_lines == 5
        assert rep.ai_lines == 2
        assert rep.ai_pct == 40.0
        assert "## Per-File Attribution" in rep.to_markdown()
        assert json.loads(rep.to_json())["human_lines"] == 3


# ---------------------------------------------------------------------------
# Event statistics
# ---------------------------------------------------------------------------


class TestContributorStats:
    def test_grouping(self):
        events = [
            _event("human", "Alice", T0, [FileChange("a.py", 5, 2, 1)]),
            _event("ai", "Claude", T0 + timedelta(hours=1), [FileChange("a.py", 10), FileChange("b.py", 3)]),
            _event("human", "Alice", T0 - timedelta(days=1), [FileChange("c.py", 1)]),
            _event("ai", "Claude", T0 + timedelta(hours=2)),
            _event("ai", "Claude", T0 + timedelta(hours=3)),
        ]
        stats = contributor_stats(events)
        assert [s.name for s in stats] == ["Claude", "Alice"]
        claude, alice = stats
        assert claude.is_ai and claude.model == "claude-sonnet-4"
        assert claude.events == 3
        assert claude.files_modified == 2
        assert alice.is_ai is False
        assert alice.lines_added == 6
        assert alice.lines_modified == 2
        assert alice.lines_deleted == 1
        assert alice.first_activity == T0 - timedelta(days=1)
        assert alice.last_activity == T0

    def test_kind_comes_from_event(self):
        (st,) = contributor_stats([_event("human", "Claude Code", T0)])
        assert st.is_ai is False


class TestFileEventStats:
    def test_main_contributor_is_latest(self):
        events = [
            _event("human", "Alice", T0),
            _event("ai", "Claude", T0 + timedelta(hours=1)),
            _event("human", "Bob", T0 - timedelta(hours=1)),
        ]
        (st,) = file_event_stats(events)
        assert st.ai_events == 1
        assert st.human_events == 2
        assert st.total_changes == 30
        assert st.main_contributor == "Claude"

    def test_single_event_sets_contributor(self):
        (st,) = file_event_stats([_event("human", "Alice", T0)])
        assert st.main_contributor == "Alice"


class TestDailyStats:
    def test_buckets_sorted(self):
        events = [
            _event("ai", "Claude", T0 + timedelta(days=1)),
            _event("human", "Alice", T0),
            _event("ai", "Claude", T0),
            _event("commit", "Alice", T0),
        ]
        days = daily_stats(events)
        assert [d.day for d in days] == [date(2024, 8, 5), date(2024, 8, 6)]
        assert days[0].ai_pct == 50.0
        assert days[0].commit_events == 1
        assert days[1].ai_pct == 100.0

    def test_commit_only_day(self):
        (day,) = daily_stats([_event("commit", "Alice", T0)])
        assert day.ai_pct == 0.0


class TestPeriodStats:
    def test_top_lists_capped(self):
        events = [_event("human", f"dev{i}", T0, [FileChange(f"f{i}.py", 1)]) for i in range(15)]
        ps = period_stats(events, T0 - timedelta(days=1), T0)
        assert ps.total_events == 15
        assert len(ps.top_contributors) == 10
        assert len(ps.top_files) == 10
        assert ps.ai_pct == 0.0
        assert "## Top Contributors" in ps.to_markdown()
        assert json.loads(ps.to_json())["human_events"] == 15


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------


def _day(offset: int, ai: int, human: int) -> DailyStats:
    return DailyStats(day=date(2024, 8, 5) + timedelta(days=offset), ai_events=ai, human_events=human)


class TestAnalyzeTrends:
    def test_week_comparison(self):
        daily = [_day(i, 0, 1) for i in range(7)] + [_day(7 + i, 1, 0) for i in range(7)]
        tr = analyze_trends(daily)
        assert tr.first_week_avg == 0.0
        assert tr.last_week_avg == 100.0
        assert tr.trend_change == 100.0

    def test_single_day_has_no_week_comparison(self):
        tr = analyze_trends([_day(0, 1, 1)])
        assert tr.first_week_avg is None
        assert tr.trend_change is None
        assert tr.variance == 0.0
        assert tr.stability == 100.0

    def test_most_active_weekday(self):
        tr = analyze_trends([_day(0, 1, 0), _day(2, 3, 2), _day(9, 1, 0)])
        assert tr.most_active_weekday == "Wednesday"
        assert tr.most_active_activity == 6

    def test_stability_not_clamped(self):
        tr = analyze_trends([_day(0, 1, 0), _day(1, 0, 1)])
        assert tr.variance == 2500.0
        assert tr.stability == -2400.0

    def test_empty(self):
        tr = analyze_trends([])
        assert tr.most_active_weekday is None
        assert tr.variance is None
        assert "ai_ratio_stability" not in tr.to_dict()

    def test_population_variance(self):
        assert population_variance([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(4.0)


# ---------------------------------------------------------------------------
# Range report
# ---------------------------------------------------------------------------


class TestRangeReport:
    def test_aggregation(self):
        c1, c2, c3 = "1" * 40, "2" * 40, "3" * 40
        records = {
            c1: AuthorshipRecord(
                commit=c1,
                files={
                    "a.py": FileAuthorship(
                        [
                            AuthorInfo("Claude Code", AUTHOR_AI, lines=[[1, 6]]),
                            AuthorInfo("Alice", AUTHOR_HUMAN, lines=[[7, 8]]),
                        ]
                    )
                },
            ),
            c2: AuthorshipRecord(
                commit=c2,
                files={"b.py": FileAuthorship([AuthorInfo("Claude Code", AUTHOR_AI, lines=[[1], [3]])])},
            ),
        }
        rep = build_range_report(records, [c3, c2, c1], "main..HEAD")
        assert rep.commits == 3
        assert rep.records == 2
        assert rep.total_lines == 10
        assert rep.ai_lines == 8
        assert rep.ai_pct == 80.0
        claude = rep.by_author[0]
        assert (claude.name, claude.lines, claude.commits, claude.pct) == ("Claude Code", 8, 2, 80.0)
        assert [f.path for f in rep.by_file] == ["a.py", "b.py"]
        assert rep.by_file[0].ai_pct == 75.0
        assert "## By Author" in rep.to_markdown()
        assert json.loads(rep.to_json())["summary"]["human_lines"] == 2

    def test_no_records(self):
        rep = build_range_report({}, ["1" * 40], "x")
        assert rep.total_lines == 0
        assert rep.ai_pct == 0.0


class TestSinceToRange:
    def test_expands_shorthand(self):
        runner = FakeRunner(lambda args: "aaa\nbbb\n" if args[0] == "log" else "parent\n")
        assert since_to_range("7d", runner) == "aaa^..HEAD"
        assert runner.calls[0] == ["log", "--since=7 days ago", "--format=%H", "--reverse"]

    def test_root_commit(self):
        def handler(args):
            if args[0] == "log":
                return "root\n"
            return GitCommandError(args, 1, "")

        assert since_to_range("2024-01-01", FakeRunner(handler)) == "HEAD"

    def test_no_commits(self):
        with pytest.raises(InvalidTimeRange):
            since_to_range("1d", FakeRunner(lambda args: ""))

    def test_commits_in_range(self):
        runner = FakeRunner(lambda args: "a\nb\n\n")
        assert commits_in_range("main..HEAD", runner) == ["a", "b"]
        assert runner.calls == [["log", "--format=%H", "main..HEAD"]]
