"""Tests for aictrack/cli.py -- the typer command-line interface."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from aictrack.authorship import AUTHOR_AI, AuthorInfo, AuthorshipRecord, FileAuthorship
from aictrack.cli import app
from aictrack.errors import BlameUnavailable, GitCommandError
from aictrack.events import (
    CheckpointRecord,
    FileChange,
    PathChange,
    TrackEvent,
    append_checkpoints,
    append_event,
    load_checkpoints,
)
from aictrack.resolver import ResolvedLine
from conftest import FakeNotesGit

runner = CliRunner()

T0 = datetime(2024, 8, 5, 10, tzinfo=timezone.utc)
SHA = "a" * 40


def _lines() -> list[ResolvedLine]:
    return [
        ResolvedLine(1, "Alice", T0, False, "", SHA, "import os", "blame"),
        ResolvedLine(2, "Claude Code", T0, True, "claude-sonnet-4", SHA, "print([1])", "record"),
    ]


def _fake_resolver(lines=None, error=None) -> MagicMock:
    resolver = MagicMock()
    if error is not None:
        resolver.resolve_file.side_effect = error
    else:
        resolver.resolve_file.return_value = lines if lines is not None else _lines()
    resolver.resolve_files.return_value = {"app.py": _lines()}
    return resolver


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "aictrack" in result.stdout


class TestBlame:
    def test_table(self, tmp_path):
        with patch("aictrack.cli._resolver", return_value=_fake_resolver()):
            result = runner.invoke(app, ["blame", "app.py", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert "Claude Code" in result.stdout
        assert "AI 1/2 (50.0%)" in result.stdout

    def test_json(self, tmp_path):
        with patch("aictrack.cli._resolver", return_value=_fake_resolver()):
            result = runner.invoke(app, ["blame", "app.py", "-f", "json", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["summary"]["ai_lines"] == 1
        assert data["lines"][1]["model"] == "claude-sonnet-4"

    def test_markdown(self, tmp_path):
        with patch("aictrack.cli._resolver", return_value=_fake_resolver()):
            result = runner.invoke(app, ["blame", "app.py", "-f", "markdown", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert "# Attribution: `app.py`" in result.stdout

    def test_unavailable(self, tmp_path):
        resolver = _fake_resolver(error=BlameUnavailable("app.py", "not tracked"))
        with patch("aictrack.cli._resolver", return_value=resolver):
            result = runner.invoke(app, ["blame", "app.py", "--repo", str(tmp_path)])
        assert result.exit_code == 1
        assert "not tracked" in result.stdout

    def test_bad_format(self, tmp_path):
        result = runner.invoke(app, ["blame", "app.py", "-f", "yaml", "--repo", str(tmp_path)])
        assert result.exit_code == 1

    def test_missing_repo(self, tmp_path):
        result = runner.invoke(app, ["blame", "app.py", "--repo", str(tmp_path / "nope")])
        assert result.exit_code == 1
        assert "Path not found" in result.stdout


class TestSummary:
    def test_json(self, tmp_path):
        with patch("aictrack.cli._resolver", return_value=_fake_resolver()):
            result = runner.invoke(app, ["summary", "app.py", "-f", "json", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["ai_pct"] == 50.0


class TestReport:
    def test_requires_range_or_since(self, tmp_path):
        result = runner.invoke(app, ["report", "--repo", str(tmp_path)])
        assert result.exit_code == 1

    def test_range_json(self, tmp_path):
        fake = FakeNotesGit(history=[SHA])
        fake.notes[SHA] = AuthorshipRecord(
            commit=SHA,
            files={"app.py": FileAuthorship([AuthorInfo("Claude Code", AUTHOR_AI, lines=[[1, 4]])])},
        ).to_json()
        base = fake.handler

        def handler(args):
            if args[:2] == ["log", "--format=%H"]:
                return SHA + "\n"
            return base(args)

        fake.handler = handler
        with patch("aictrack.cli.GitRunner", return_value=fake):
            result = runner.invoke(app, ["report", "--range", "main..HEAD", "-f", "json", "--repo", str(tmp_path)])
        assert result.exit_code == 0, result.stdout
        data = json.loads(result.stdout)
        assert data["summary"]["ai_lines"] == 4
        assert data["summary"]["ai_pct"] == 100.0
        assert data["records"] == 1


class TestStats:
    def _write_events(self, root):
        path = root / ".git" / "ai-tracker" / "events.jsonl"
        append_event(path, TrackEvent(T0, "ai", "Claude", model="claude-sonnet-4", files=[FileChange("a.py", 10)]))
        append_event(path, TrackEvent(T0, "human", "Alice", files=[FileChange("a.py", 2)]))
        append_event(path, TrackEvent(T0, "human", "Bob", files=[FileChange("b.py", 1)]))

    def test_json(self, tmp_path):
        self._write_events(tmp_path)
        result = runner.invoke(app, ["stats", "-f", "json", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["total_events"] == 3
        assert data["ai_events"] == 1

    def test_author_filter(self, tmp_path):
        self._write_events(tmp_path)
        result = runner.invoke(app, ["stats", "--author", "ALI", "-f", "json", "--repo", str(tmp_path)])
        assert json.loads(result.stdout)["total_events"] == 1

    def test_window(self, tmp_path):
        self._write_events(tmp_path)
        result = runner.invoke(
            app, ["stats", "--from", "2024-08-06", "--to", "2024-08-10", "-f", "json", "--repo", str(tmp_path)]
        )
        assert json.loads(result.stdout)["total_events"] == 0

    def test_bad_since(self, tmp_path):
        result = runner.invoke(app, ["stats", "--since", "whenever", "--repo", str(tmp_path)])
        assert result.exit_code == 1

    def test_table(self, tmp_path):
        self._write_events(tmp_path)
        result = runner.invoke(app, ["stats", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert "Top contributors" in result.stdout


class TestTrends:
    def test_json(self, tmp_path):
        path = tmp_path / ".git" / "ai-tracker" / "events.jsonl"
        now = datetime.now(timezone.utc)
        append_event(path, TrackEvent(now, "ai", "Claude", model="m"))
        result = runner.invoke(app, ["trends", "--json", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["most_active_weekday"]["activity"] == 1
        assert data["ai_ratio_stability"]["stability"] == 100.0


class TestBranches:
    def _write(self, root):
        path = root / ".git" / "ai-tracker" / "checkpoints.jsonl"
        path.parent.mkdir(parents=True)
        rows = [
            CheckpointRecord(T0, "Claude Code", added=8, branch="feature/ui", author_type="ai"),
            CheckpointRecord(T0, "Alice", added=2, branch="feature/ui", author_type="human"),
            CheckpointRecord(T0, "Alice", added=5),
        ]
        path.write_text("\n".join(json.dumps(r.to_dict()) for r in rows) + "\n", encoding="utf-8")

    def test_glob_json(self, tmp_path):
        self._write(tmp_path)
        result = runner.invoke(app, ["branches", "feature/*", "--json", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["matching_branches"] == ["feature/ui"]
        assert data["ai_ratio"] == 80.0

    def test_invalid_regex(self, tmp_path):
        self._write(tmp_path)
        result = runner.invoke(app, ["branches", "(", "--regex", "--repo", str(tmp_path)])
        assert result.exit_code == 1
        assert "invalid filter pattern" in result.stdout

    def test_malformed_glob(self, tmp_path):
        self._write(tmp_path)
        result = runner.invoke(app, ["branches", "feature/[", "--repo", str(tmp_path)])
        assert result.exit_code == 1
        assert "invalid filter pattern" in result.stdout

    def test_all_table(self, tmp_path):
        self._write(tmp_path)
        result = runner.invoke(app, ["branches", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert "main" in result.stdout


class TestNotes:
    def test_list(self, tmp_path):
        fake = FakeNotesGit()
        fake.notes[SHA] = AuthorshipRecord(
            commit=SHA, files={"a.py": FileAuthorship([AuthorInfo("Claude", AUTHOR_AI)])}
        ).to_json()
        with patch("aictrack.cli.GitRunner", return_value=fake):
            result = runner.invoke(app, ["notes", "list", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert SHA[:12] in result.stdout

    def test_list_empty(self, tmp_path):
        with patch("aictrack.cli.GitRunner", return_value=FakeNotesGit()):
            result = runner.invoke(app, ["notes", "list", "--repo", str(tmp_path)])
        assert "No provenance records" in result.stdout

    def test_show_missing(self, tmp_path):
        fake = FakeNotesGit()
        base = fake.handler
        fake.handler = lambda args: SHA + "\n" if args[0] == "rev-parse" else base(args)
        with patch("aictrack.cli.GitRunner", return_value=fake):
            result = runner.invoke(app, ["notes", "show", "HEAD", "--repo", str(tmp_path)])
        assert result.exit_code == 1
        assert "No provenance record" in result.stdout


class TestConfigCommands:
    def test_init_and_show(self, tmp_path):
        result = runner.invoke(app, ["config", "init", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert (tmp_path / "aictrack.toml").exists()
        again = runner.invoke(app, ["config", "init", "--repo", str(tmp_path)])
        assert again.exit_code == 1
        shown = runner.invoke(app, ["config", "show", "--json", "--repo", str(tmp_path)])
        assert json.loads(shown.stdout)["resolver"]["max_workers"] == 4

    def test_bad_values_fall_back_to_defaults(self, tmp_path):
        (tmp_path / "aictrack.toml").write_text(
            '[resolver]\nmax_workers = "many"\n\n[classifier]\ncutover = "June"\n',
            encoding="utf-8",
        )
        result = runner.invoke(app, ["branches", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert result.exception is None


class TestCommit:
    def _pending(self, root):
        append_checkpoints(
            root / ".git" / "ai-tracker" / "pending.jsonl",
            [
                CheckpointRecord(
                    T0, "Claude Code", added=3, author_type="ai",
                    changes={"app.py": PathChange(added=3, lines=[[1, 3]])},
                    metadata={"model": "claude-sonnet-4"},
                ),
                CheckpointRecord(T0, "Alice", added=1, author_type="human", changes={"app.py": PathChange(added=1, lines=[[4]])}),
            ],
        )

    def test_records_head(self, tmp_path):
        self._pending(tmp_path)
        fake = FakeNotesGit()
        with patch("aictrack.cli.GitRunner", return_value=fake):
            result = runner.invoke(app, ["commit", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert "Recorded " + fake.head_commit[:12] in result.stdout
        stored = AuthorshipRecord.from_json(fake.notes[fake.head_commit])
        assert [a.name for a in stored.files["app.py"].authors] == ["Claude Code", "Alice"]
        assert not (tmp_path / ".git" / "ai-tracker" / "pending.jsonl").exists()
        archived = load_checkpoints(tmp_path / ".git" / "ai-tracker" / "checkpoints.jsonl")
        assert [r.branch for r in archived] == ["feature/ui", "feature/ui"]

    def test_nothing_pending(self, tmp_path):
        fake = FakeNotesGit()
        with patch("aictrack.cli.GitRunner", return_value=fake):
            result = runner.invoke(app, ["commit", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert "No pending checkpoints" in result.stdout
        assert fake.notes == {}

    def test_write_failure(self, tmp_path):
        self._pending(tmp_path)
        fake = FakeNotesGit()
        base = fake.handler
        fake.handler = lambda args: GitCommandError(args, 1, "fatal: locked") if "add" in args else base(args)
        with patch("aictrack.cli.GitRunner", return_value=fake):
            result = runner.invoke(app, ["commit", "--repo", str(tmp_path)])
        assert result.exit_code == 1
        assert "Error:" in result.stdout
        assert (tmp_path / ".git" / "ai-tracker" / "pending.jsonl").exists()


class TestSync:
    def test_push(self, tmp_path):
        fake = FakeNotesGit()
        with patch("aictrack.cli.GitRunner", return_value=fake):
            result = runner.invoke(app, ["sync", "push", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert "pushed to origin" in result.stdout
        full = "refs/notes/refs/aict/authorship"
        assert fake.remote_refs["push"] == [f"{full}:{full}"]

    def test_fetch_uses_configured_ref(self, tmp_path):
        (tmp_path / "aictrack.toml").write_text('[notes]\nref = "refs/notes/team"\n', encoding="utf-8")
        fake = FakeNotesGit()
        with patch("aictrack.cli.GitRunner", return_value=fake):
            result = runner.invoke(app, ["sync", "fetch", "--repo", str(tmp_path)])
        assert result.exit_code == 0
        assert fake.remote_refs["fetch"] == ["refs/notes/team:refs/notes/team"]

    def test_unknown_remote(self, tmp_path):
        fake = FakeNotesGit()
        with patch("aictrack.cli.GitRunner", return_value=fake):
            result = runner.invoke(app, ["sync", "fetch", "--remote", "upstream", "--repo", str(tmp_path)])
        assert result.exit_code == 1
        assert "Error:" in result.stdout
