"""aictrack configuration: ``aictrack.toml`` reader and writer.

Lets a repository override the notes ref, the fallback classifier, resolver
parallelism, the default branch, the event and checkpoint files, and the
output format.  Built-in defaults apply when the file is absent.  The loaded
config is passed explicitly to the pieces that need it; nothing reads it
behind the caller's back.

A file that cannot be read or parsed is ignored as a whole.  A file that
parses but carries a bad value (wrong type, an unparsable ``cutover``, a
section written as a plain key) keeps the default for that one setting.
Either way a warning is logged and loading never raises.

Public API
----------
load_config(repo_path) -> AictrackConfig
save_default_config(repo_path) -> Path
parse_cutover(value) -> datetime
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from .classifier import (
    DEFAULT_AI_PATTERNS,
    DEFAULT_NEWER_MODEL,
    DEFAULT_OLDER_MODEL,
    AuthorClassifier,
)
from .events import (
    DEFAULT_BRANCH,
    DEFAULT_CHECKPOINTS_PATH,
    DEFAULT_EVENTS_PATH,
    DEFAULT_PENDING_PATH,
)
from .notes import NOTES_REF

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "aictrack.toml"
OUTPUT_FORMATS = ("table", "json", "markdown")


def parse_cutover(value: str) -> datetime:
    """``YYYY-MM-DD`` or ISO datetime; naive values are taken as UTC."""
    cutover = datetime.fromisoformat(value)
    if cutover.tzinfo is None:
        cutover = cutover.replace(tzinfo=timezone.utc)
    return cutover


# ---------------------------------------------------------------------------
# Sections (their field defaults are the built-in configuration)
# ---------------------------------------------------------------------------


@dataclass
class NotesConfig:
    ref: str = NOTES_REF


@dataclass
class ClassifierConfig:
    patterns: list[str] = field(default_factory=lambda: list(DEFAULT_AI_PATTERNS))
    cutover: str = "2024-06-01"
    newer_model: str = DEFAULT_NEWER_MODEL
    older_model: str = DEFAULT_OLDER_MODEL
    enabled: bool = True

    def build(self) -> AuthorClassifier:
        """Return the heuristic classifier these settings describe."""
        return AuthorClassifier(
            patterns=list(self.patterns),
            cutover=parse_cutover(self.cutover),
            newer_model=self.newer_model,
            older_model=self.older_model,
            enabled=self.enabled,
        )


@dataclass
class ResolverConfig:
    max_workers: int = 4


@dataclass
class BranchConfig:
    default_branch: str = DEFAULT_BRANCH


@dataclass
class EventsConfig:
    path: str = DEFAULT_EVENTS_PATH
    checkpoints: str = DEFAULT_CHECKPOINTS_PATH
    pending: str = DEFAULT_PENDING_PATH


@dataclass
class OutputConfig:
    format: str = "table"
    color: bool = True


@dataclass
class AictrackConfig:
    notes: NotesConfig = field(default_factory=NotesConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    branch: BranchConfig = field(default_factory=BranchConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    _source: Optional[Path] = field(default=None, compare=False, repr=False)

    @classmethod
    def defaults(cls) -> "AictrackConfig":
        """Return a config populated entirely from built-in defaults."""
        return cls()

    @classmethod
    def section_names(cls) -> list[str]:
        return [f.name for f in fields(cls) if not f.name.startswith("_")]

    def events_path(self, repo_path: Path) -> Path:
        """Event log location, resolved against *repo_path* when relative."""
        return _resolve(repo_path, self.events.path)

    def checkpoints_path(self, repo_path: Path) -> Path:
        return _resolve(repo_path, self.events.checkpoints)

    def pending_path(self, repo_path: Path) -> Path:
        """Checkpoints waiting for the next ``aictrack commit``."""
        return _resolve(repo_path, self.events.pending)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d.pop("_source", None)
        return d

    def to_toml(self) -> str:
        """Render config as TOML that :func:`load_config` reads back unchanged."""
        out = [
            "# aictrack.toml: AI/human line attribution settings",
            "# Generated automatically. Edit to customize.",
        ]
        for section, values in self.to_dict().items():
            out.append("")
            out.append(f"[{section}]")
            out.extend(f"{key} = {_toml_value(val)}" for key, val in values.items())
        return "\n".join(out) + "\n"

    def to_markdown(self) -> str:
        """Render current config as Markdown tables."""
        out = [
            "# aictrack Configuration",
            "",
            f"*Source: {self._source or 'built-in defaults'}*",
        ]
        for section, values in self.to_dict().items():
            out += ["", f"## [{section}]", "", "| Key | Value |", "| --- | ----- |"]
            for key, val in values.items():
                shown = ", ".join(map(str, val)) if isinstance(val, list) else val
                out.append(f"| `{key}` | `{shown}` |")
        return "\n".join(out) + "\n"


def _resolve(repo_path: Path, raw: str) -> Path:
    p = Path(raw)
    return p if p.is_absolute() else Path(repo_path) / p


# ---------------------------------------------------------------------------
# TOML subset: [tables], bare keys, strings, integers, floats, booleans and
# one-line arrays of those.  Basic strings share JSON's escape rules.
# ---------------------------------------------------------------------------

_TABLE_RE = re.compile(r"\[\s*([A-Za-z0-9_-]+)\s*\]")
_KEY_RE = re.compile(r"[A-Za-z0-9_-]+")


def _toml_value(val: Any) -> str:
    if isinstance(val, bool):
        return "true" if val else "false"
    if isinstance(val, list):
        return "[" + ", ".join(_toml_value(v) for v in val) + "]"
    if isinstance(val, str):
        return json.dumps(val, ensure_ascii=False)
    return str(val)


def _unquoted(text: str) -> Iterator[tuple[int, str]]:
    """Yield ``(index, char)`` for characters outside string literals."""
    quote = ""
    escaped = False
    for i, ch in enumerate(text):
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\" and quote == '"':
                escaped = True
            elif ch == quote:
                quote = ""
        elif ch in "\"'":
            quote = ch
        else:
            yield i, ch
    if quote:
        raise ValueError(f"unterminated string in {text!r}")


def _strip_comment(line: str) -> str:
    for i, ch in _unquoted(line):
        if ch == "#":
            return line[:i].rstrip()
    return line


def _split_array(inner: str) -> list[str]:
    cuts = [i for i, ch in _unquoted(inner) if ch == ","]
    items = [inner[a + 1:b].strip() for a, b in zip([-1] + cuts, cuts + [len(inner)])]
    if not items[-1]:
        items.pop()  # trailing comma, or an empty array
    if any(not item for item in items):
        raise ValueError(f"empty array element in [{inner}]")
    return items


def _parse_toml_value(raw: str) -> Any:
    """Decode one TOML value; anything outside the subset raises ``ValueError``."""
    if not raw:
        raise ValueError("missing value")
    if raw[0] == '"':
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"bad string {raw}: {exc.msg}") from exc
    if raw[0] == "'":
        if len(raw) < 2 or raw[-1] != "'" or "'" in raw[1:-1]:
            raise ValueError(f"bad literal string {raw}")
        return raw[1:-1]
    if raw[0] == "[":
        if raw[-1] != "]":
            raise ValueError(f"unterminated array {raw}")
        return [_parse_toml_value(item) for item in _split_array(raw[1:-1])]
    if raw in ("true", "false"):
        return raw == "true"
    for convert in (int, float):
        try:
            return convert(raw)
        except ValueError:
            pass
    raise ValueError(f"unsupported value {raw} (strings must be quoted)")


def _parse_toml(text: str) -> dict[str, Any]:
    result: dict[str, Any] = {}
    table = result
    for lineno, line in enumerate(text.splitlines(), start=1):
        try:
            line = _strip_comment(line.strip())
        except ValueError as exc:
            raise ValueError(f"line {lineno}: {exc}") from exc
        if not line:
            continue
        m = _TABLE_RE.fullmatch(line)
        if m:
            table = result.setdefault(m.group(1), {})
            if not isinstance(table, dict):
                raise ValueError(f"line {lineno}: [{m.group(1)}] was already set as a key")
            continue
        key, sep, raw = line.partition("=")
        key = key.strip()
        if not sep or not _KEY_RE.fullmatch(key):
            raise ValueError(f"line {lineno}: expected 'key = value', got {line!r}")
        try:
            table[key] = _parse_toml_value(raw.strip())
        except ValueError as exc:
            raise ValueError(f"line {lineno}: {exc}") from exc
    return result


# ---------------------------------------------------------------------------
# Typed sections
# ---------------------------------------------------------------------------


def _coerce(value: Any, default: Any) -> Any:
    """Check *value* against the type of the built-in *default*."""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise ValueError("expected true or false")
    if isinstance(default, int):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        raise ValueError("expected an integer")
    if isinstance(default, list):
        if isinstance(value, list) and all(isinstance(v, str) for v in value):
            return list(value)
        raise ValueError("expected an array of strings")
    if isinstance(value, str):
        return value
    raise ValueError("expected a string")


def _positive(value: int) -> None:
    if value < 1:
        raise ValueError("must be at least 1")


def _output_format(value: str) -> None:
    if value not in OUTPUT_FORMATS:
        raise ValueError(f"must be one of {', '.join(OUTPUT_FORMATS)}")


_CHECKS: dict[tuple[str, str], Callable[[Any], Any]] = {
    ("classifier", "cutover"): parse_cutover,
    ("resolver", "max_workers"): _positive,
    ("output", "format"): _output_format,
}


def _load_section(name: str, section: Any, raw: Any, source: Path) -> Any:
    """Overlay the valid keys of *raw* onto the default *section*."""
    if raw is None:
        return section
    if not isinstance(raw, dict):
        logger.warning("%s: %s should be a [%s] table; using defaults", source, name, name)
        return section
    known = {f.name for f in fields(section)}
    for key, value in raw.items():
        if key not in known:
            logger.warning("%s: unknown setting [%s] %s ignored", source, name, key)
            continue
        try:
            coerced = _coerce(value, getattr(section, key))
            check = _CHECKS.get((name, key))
            if check is not None:
                check(coerced)
        except ValueError as exc:
            logger.warning("%s: [%s] %s = %r: %s; using default", source, name, key, value, exc)
            continue
        setattr(section, key, coerced)
    return section


def load_config(repo_path: Optional[Path] = None) -> AictrackConfig:
    """Load ``aictrack.toml`` from *repo_path*, falling back to defaults."""
    repo_path = Path(repo_path) if repo_path is not None else Path.cwd()
    config_path = repo_path / CONFIG_FILENAME
    cfg = AictrackConfig()
    if not config_path.exists():
        return cfg
    try:
        raw = _parse_toml(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("ignoring %s: %s", config_path, exc)
        return cfg
    names = AictrackConfig.section_names()
    for name in names:
        setattr(cfg, name, _load_section(name, getattr(cfg, name), raw.get(name), config_path))
    for name in raw.keys() - set(names):
        logger.warning("%s: unknown section %s ignored", config_path, name)
    cfg._source = config_path
    return cfg


def save_default_config(repo_path: Path) -> Path:
    """Write ``aictrack.toml`` with default values to *repo_path*."""
    config_path = Path(repo_path) / CONFIG_FILENAME
    config_path.write_text(AictrackConfig.defaults().to_toml(), encoding="utf-8")
    return config_path
