"""Command-line interface for aictrack."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from . import __version__
from .branch import BranchAnalyzer
from .config import OUTPUT_FORMATS, AictrackConfig, load_config, save_default_config
from .errors import AictrackError
from .events import events_in_range, filter_by_author, load_checkpoints, load_events
from .gitexec import GitRunner
from .notes import ProvenanceStore
from .period import TimeRange, parse_from_to, parse_time_range
from .recorder import commit_pending
from .resolver import AttributionResolver
from .stats import (
    FileAttribution,
    RepoAttribution,
    analyze_trends,
    build_range_report,
    commits_in_range,
    period_stats,
    since_to_range,
)

app = typer.Typer(
    name="aictrack",
    help="aictrack -- AI vs human line attribution for git repositories.",
    add_completion=False,
)
notes_app = typer.Typer(help="Inspect provenance records stored as git notes.")
config_app = typer.Typer(help="Show or create aictrack.toml.")
sync_app = typer.Typer(help="Share provenance records with a remote.")
app.add_typer(notes_app, name="notes")
app.add_typer(sync_app, name="sync")
app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _repo(path: Optional[str]) -> Path:
    p = Path(path) if path else Path(".")
    if not p.exists():
        console.print(f"[red]Path not found: {p}[/red]")
        raise typer.Exit(1)
    return p


def _format(fmt: Optional[str], cfg: AictrackConfig) -> str:
    chosen = fmt or cfg.output.format
    if chosen not in OUTPUT_FORMATS:
        console.print(f"[red]Unknown format: {escape(chosen)} (choose from {', '.join(OUTPUT_FORMATS)})[/red]")
        raise typer.Exit(1)
    return chosen


def _fail(exc: AictrackError) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(str(exc))}")
    raise typer.Exit(1)


def _resolver(root: Path, cfg: AictrackConfig, revision: Optional[str] = None) -> AttributionResolver:
    runner = GitRunner(root)
    return AttributionResolver(
        store=ProvenanceStore(runner, ref=cfg.notes.ref),
        runner=runner,
        classifier=cfg.classifier.build(),
        revision=revision,
        max_workers=cfg.resolver.max_workers,
    )


def _window(since: Optional[str], from_date: Optional[str], to_date: Optional[str]) -> Optional[TimeRange]:
    if from_date or to_date:
        if not (from_date and to_date):
            console.print("[red]--from and --to must be given together[/red]")
            raise typer.Exit(1)
        return parse_from_to(from_date, to_date)
    if since:
        return parse_time_range(since)
    return None


# ---------------------------------------------------------------------------
# Global options
# ---------------------------------------------------------------------------


@app.callback()
def _main(
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Log git calls and skipped data"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )


@app.command()
def version() -> None:
    """Print the aictrack version."""
    console.print(f"aictrack {__version__}")


# ---------------------------------------------------------------------------
# Attribution
# ---------------------------------------------------------------------------


@app.command()
def blame(
    path: str = typer.Argument(..., help="File to attribute, relative to the repo root"),
    rev: Optional[str] = typer.Option(None, "--rev", help="Blame at this revision instead of the work tree"),
    fmt: Optional[str] = typer.Option(None, "--format", "-f", help="table | json | markdown"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Show per-line AI/human attribution for one file."""
    root = _repo(repo)
    cfg = load_config(root)
    fmt = _format(fmt, cfg)
    try:
        lines = _resolver(root, cfg, rev).resolve_file(path)
    except AictrackError as exc:
        _fail(exc)
    attribution = FileAttribution(path=path, lines=lines)
    if fmt == "json":
        console.print_json(attribution.to_json())
        return
    if fmt == "markdown":
        console.print(attribution.to_markdown(), markup=False)
        return

    t = Table("Line", "", "Author", "Model", "Commit", "Content", title=escape(path))
    for ln in lines:
        marker = "[magenta]AI[/magenta]" if ln.is_ai else "[green]HU[/green]"
        t.add_row(
            str(ln.line_number),
            marker,
            Text(ln.author),
            ln.model or "-",
            ln.commit[:8],
            Text(ln.content),
        )
    console.print(t)
    st = attribution.stats
    console.print(
        f"AI {st.ai_lines}/{st.total_lines} ({st.ai_pct}%)  "
        f"human {st.human_lines}/{st.total_lines} ({st.human_pct}%)"
    )


@app.command()
def summary(
    paths: Optional[list[str]] = typer.Argument(None, help="Files to include (default: all tracked files)"),
    rev: Optional[str] = typer.Option(None, "--rev"),
    fmt: Optional[str] = typer.Option(None, "--format", "-f", help="table | json | markdown"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Per-file AI/human line counts across many files."""
    root = _repo(repo)
    cfg = load_config(root)
    fmt = _format(fmt, cfg)
    resolver = _resolver(root, cfg, rev)
    try:
        targets = paths or [p for p in resolver.runner.run("ls-files").splitlines() if p]
    except AictrackError as exc:
        _fail(exc)
    report = RepoAttribution.from_resolved(resolver.resolve_files(targets))
    if fmt == "json":
        console.print_json(report.to_json())
        return
    if fmt == "markdown":
        console.print(report.to_markdown(), markup=False)
        return

    t = Table("File", "Lines", "AI%", "Top model", "Top human")
    for f in sorted(report.files, key=lambda f: f.ai_pct, reverse=True):
        t.add_row(Text(f.path), str(f.total_lines), f"{f.ai_pct}%", f.top_ai_model or "-", f.top_human_author or "-")
    console.print(t)
    console.print(f"Total: {report.total_lines} lines, AI {report.ai_pct}%, human {report.human_pct}%")


@app.command()
def report(
    revision_range: Optional[str] = typer.Option(None, "--range", help="Revision range, e.g. main..HEAD"),
    since: Optional[str] = typer.Option(None, "--since", help="7d, 2w, '3 days ago', 2024-01-01"),
    fmt: Optional[str] = typer.Option(None, "--format", "-f", help="table | json | markdown"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Aggregate provenance records over a revision range."""
    if bool(revision_range) == bool(since):
        console.print("[red]Give exactly one of --range or --since[/red]")
        raise typer.Exit(1)
    root = _repo(repo)
    cfg = load_config(root)
    fmt = _format(fmt, cfg)
    runner = GitRunner(root)
    store = ProvenanceStore(runner, ref=cfg.notes.ref)
    try:
        rng = revision_range or since_to_range(since, runner)
        commits = commits_in_range(rng, runner)
    except AictrackError as exc:
        _fail(exc)
    label = f"since {since}" if since else rng
    rep = build_range_report(store.get_range(rng), commits, label)
    if fmt == "json":
        console.print_json(rep.to_json())
        return
    if fmt == "markdown":
        console.print(rep.to_markdown(), markup=False)
        return

    console.print(f"[bold]{label}[/bold]: {rep.commits} commits, {rep.records} with records")
    console.print(f"Lines: {rep.total_lines}  AI {rep.ai_lines} ({rep.ai_pct}%)  human {rep.human_lines}")
    if rep.by_author:
        t = Table("Author", "Type", "Lines", "Commits", "Share")
        for a in rep.by_author:
            t.add_row(Text(a.name), a.kind, str(a.lines), str(a.commits), f"{a.pct}%")
        console.print(t)
    if rep.by_file:
        t = Table("File", "Lines", "AI", "Human", "AI%")
        for f in rep.by_file:
            t.add_row(Text(f.path), str(f.total_lines), str(f.ai_lines), str(f.human_lines), f"{f.ai_pct}%")
        console.print(t)


# ---------------------------------------------------------------------------
# Event statistics
# ---------------------------------------------------------------------------


@app.command()
def stats(
    since: Optional[str] = typer.Option(None, "--since", help="7d, 2w, 1m, '3 days ago', 2024-01-01"),
    from_date: Optional[str] = typer.Option(None, "--from"),
    to_date: Optional[str] = typer.Option(None, "--to"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Case-insensitive substring"),
    fmt: Optional[str] = typer.Option(None, "--format", "-f", help="table | json | markdown"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Contributor, file and daily statistics from the event log."""
    root = _repo(repo)
    cfg = load_config(root)
    fmt = _format(fmt, cfg)
    try:
        window = _window(since, from_date, to_date)
    except AictrackError as exc:
        _fail(exc)
    events = load_events(cfg.events_path(root))
    if window:
        events = events_in_range(events, window.start, window.end)
    if author:
        events = filter_by_author(events, author)
    ps = period_stats(events, window.start if window else None, window.end if window else None)
    if fmt == "json":
        console.print_json(ps.to_json())
        return
    if fmt == "markdown":
        console.print(ps.to_markdown(), markup=False)
        return

    console.print(f"Events: {ps.total_events}  AI {ps.ai_events}  human {ps.human_events}  (AI {ps.ai_pct}%)")
    if ps.top_contributors:
        t = Table("Contributor", "Kind", "Events", "+", "~", "-", "Files", title="Top contributors")
        for c in ps.top_contributors:
            t.add_row(
                Text(c.name),
                "AI" if c.is_ai else "human",
                str(c.events),
                str(c.lines_added),
                str(c.lines_modified),
                str(c.lines_deleted),
                str(c.files_modified),
            )
        console.print(t)
    if ps.daily:
        t = Table("Date", "AI", "Human", "Commits", "Changes", "AI%", title="Daily")
        for d in ps.daily:
            t.add_row(
                d.day.isoformat(),
                str(d.ai_events),
                str(d.human_events),
                str(d.commit_events),
                str(d.total_changes),
                f"{d.ai_pct:.1f}%",
            )
        console.print(t)


@app.command()
def trends(
    since: str = typer.Option("30d", "--since"),
    json_out: bool = typer.Option(False, "--json"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """First-week vs last-week AI share, busiest weekday and stability."""
    root = _repo(repo)
    cfg = load_config(root)
    try:
        window = parse_time_range(since)
    except AictrackError as exc:
        _fail(exc)
    events = events_in_range(load_events(cfg.events_path(root)), window.start, window.end)
    analysis = analyze_trends(period_stats(events, window.start, window.end).daily)
    if json_out:
        console.print_json(data=analysis.to_dict())
        return
    if analysis.first_week_avg is not None:
        console.print(
            f"AI share: first week {analysis.first_week_avg:.1f}% -> "
            f"last week {analysis.last_week_avg:.1f}% ({analysis.trend_change:+.1f})"
        )
    else:
        console.print("Not enough days for a week-over-week comparison.")
    if analysis.most_active_weekday:
        console.print(f"Busiest weekday: {analysis.most_active_weekday} ({analysis.most_active_activity} events)")
    if analysis.variance is not None:
        console.print(f"Variance {analysis.variance:.1f}, stability {analysis.stability:.1f}")


# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------


@app.command()
def branches(
    pattern: str = typer.Argument("", help="Branch name, glob (feature/*) or regex with --regex"),
    regex: bool = typer.Option(False, "--regex"),
    json_out: bool = typer.Option(False, "--json"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Line totals and AI ratio per branch."""
    root = _repo(repo)
    cfg = load_config(root)
    analyzer = BranchAnalyzer(
        load_checkpoints(cfg.checkpoints_path(root)),
        default_branch=cfg.branch.default_branch,
        classifier=cfg.classifier.build(),
    )
    try:
        group = analyzer.analyze_pattern(pattern, is_regex=regex)
    except AictrackError as exc:
        _fail(exc)
    if json_out:
        console.print_json(group.to_json())
        return
    t = Table("Branch", "Records", "Added", "Deleted", "AI%", "Authors", title=group.description)
    for name in group.matching_branches:
        r = group.branches[name]
        t.add_row(name, str(r.record_count), str(r.total_added), str(r.total_deleted), f"{r.ai_ratio}%", Text(", ".join(r.authors)))
    console.print(t)
    console.print(f"Total: {group.total_records} records, +{group.total_added} -{group.total_deleted}, AI {group.ai_ratio}%")


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


@notes_app.command("show")
def notes_show(
    commit: str = typer.Argument("HEAD"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Print the provenance record attached to COMMIT."""
    root = _repo(repo)
    cfg = load_config(root)
    runner = GitRunner(root)
    try:
        sha = runner.run("rev-parse", commit).strip()
        record = ProvenanceStore(runner, ref=cfg.notes.ref).get(sha)
    except AictrackError as exc:
        _fail(exc)
    if record is None:
        console.print(f"No provenance record for {commit}")
        raise typer.Exit(1)
    console.print_json(record.to_json())


@notes_app.command("list")
def notes_list(
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """List every commit that carries a provenance record."""
    root = _repo(repo)
    cfg = load_config(root)
    records = ProvenanceStore(GitRunner(root), ref=cfg.notes.ref).list()
    if not records:
        console.print("No provenance records.")
        return
    t = Table("Commit", "Timestamp", "Files", "AI files")
    for sha, rec in records.items():
        ai_files = sum(1 for fa in rec.files.values() if fa.has_ai)
        t.add_row(sha[:12], rec.timestamp.isoformat(), str(len(rec.files)), str(ai_files))
    console.print(t)


@notes_app.command("remove")
def notes_remove(
    commit: str = typer.Argument(...),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Delete the provenance record attached to COMMIT."""
    root = _repo(repo)
    cfg = load_config(root)
    try:
        ProvenanceStore(GitRunner(root), ref=cfg.notes.ref).remove(commit)
    except AictrackError as exc:
        _fail(exc)
    console.print(f"[green]Removed record for {commit}[/green]")


# ---------------------------------------------------------------------------
# Recording and sync
# ---------------------------------------------------------------------------


@app.command()
def commit(
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Attach pending checkpoints to HEAD as its provenance record."""
    root = _repo(repo)
    cfg = load_config(root)
    runner = GitRunner(root)
    try:
        record = commit_pending(
            runner,
            ProvenanceStore(runner, ref=cfg.notes.ref),
            cfg.pending_path(root),
            cfg.checkpoints_path(root),
            cfg.classifier.build(),
        )
    except AictrackError as exc:
        _fail(exc)
    if record is None:
        console.print("No pending checkpoints.")
        return
    ai_files = sum(1 for fa in record.files.values() if fa.has_ai)
    console.print(
        f"[green]Recorded {record.commit[:12]}[/green]: "
        f"{len(record.files)} files, {ai_files} with AI lines"
    )


@sync_app.command("push")
def sync_push(
    remote: str = typer.Option("origin", "--remote"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Push provenance records to REMOTE."""
    root = _repo(repo)
    cfg = load_config(root)
    try:
        ProvenanceStore(GitRunner(root), ref=cfg.notes.ref).push(remote)
    except AictrackError as exc:
        _fail(exc)
    console.print(f"[green]Provenance records pushed to {escape(remote)}[/green]")


@sync_app.command("fetch")
def sync_fetch(
    remote: str = typer.Option("origin", "--remote"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Fetch provenance records from REMOTE."""
    root = _repo(repo)
    cfg = load_config(root)
    try:
        ProvenanceStore(GitRunner(root), ref=cfg.notes.ref).fetch(remote)
    except AictrackError as exc:
        _fail(exc)
    console.print(f"[green]Provenance records fetched from {escape(remote)}[/green]")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(
    json_out: bool = typer.Option(False, "--json"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Print the effective configuration."""
    cfg = load_config(_repo(repo))
    if json_out:
        console.print_json(data=cfg.to_dict())
    else:
        console.print(cfg.to_markdown(), markup=False)


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force"),
    repo: Optional[str] = typer.Option(None, "--repo", "-r"),
) -> None:
    """Write aictrack.toml with default values."""
    root = _repo(repo)
    target = root / "aictrack.toml"
    if target.exists() and not force:
        console.print(f"[yellow]{target} already exists (use --force to overwrite)[/yellow]")
        raise typer.Exit(1)
    path = save_default_config(root)
    console.print(f"[green]Wrote {path}[/green]")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()


if __name__ == "__main__":
    main()
