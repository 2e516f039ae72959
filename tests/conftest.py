"""Shared test doubles for aictrack tests."""
from __future__ import annotations

from typing import Callable, Optional, Union

import pytest

from aictrack.errors import GitCommandError


class FakeRunner:
    """Stands in for ``GitRunner``; records every argument list it sees."""

    def __init__(self, handler: Optional[Callable[[list[str]], Union[str, Exception]]] = None):
        self.calls: list[list[str]] = []
        self.handler = handler or (lambda args: "")
        self.repo_path = None

    def run(self, *args: str) -> str:
        self.calls.append(list(args))
        result = self.handler(list(args))
        if isinstance(result, Exception):
            raise result
        return result

    def head(self) -> str:
        return self.run("rev-parse", "HEAD").strip()

    def current_branch(self) -> str:
        return self.run("rev-parse", "--abbrev-ref", "HEAD").strip()


class FakeNotesGit(FakeRunner):
    """In-memory emulation of the ``git notes`` / ``git log --notes`` calls."""

    def __init__(self, history: Optional[list[str]] = None):
        super().__init__(self._dispatch)
        self.notes: dict[str, str] = {}
        self.history = history or []  # newest first, like git log
        self.head_commit = "c" * 40
        self.branch = "feature/ui"
        self.remote_refs: dict[str, list[str]] = {"push": [], "fetch": []}

    def _dispatch(self, args: list[str]) -> Union[str, Exception]:
        if args[0] == "notes":
            sub = args[2]
            if sub == "add":
                self.notes[args[-1]] = args[args.index("-m") + 1]
                return ""
            if sub == "show":
                commit = args[-1]
                if commit not in self.notes:
                    return GitCommandError(args, 1, f"error: no note found for object {commit}.")
                return self.notes[commit] + "\n"
            if sub == "list":
                return "".join(f"{'f' * 40} {c}\n" for c in self.notes)
            if sub == "remove":
                commit = args[-1]
                if commit not in self.notes:
                    return GitCommandError(args, 1, f"error: Object {commit} has no note")
                del self.notes[commit]
                return ""
        if args[0] == "log":
            rng = args[1]
            if rng == "bad..range":
                return GitCommandError(args, 128, "fatal: bad revision 'bad..range'")
            out = []
            for commit in self.history:
                out.append(f"__AICT_HASH__{commit}\n{self.notes.get(commit, '')}\n")
            return "".join(out)
        if args[0] == "rev-parse":
            return (self.branch if "--abbrev-ref" in args else self.head_commit) + "\n"
        if args[0] in ("push", "fetch"):
            if args[2] != "origin":
                return GitCommandError(args, 128, f"fatal: '{args[2]}' does not appear to be a git repository")
            self.remote_refs[args[0]].append(args[3])
            return ""
        return GitCommandError(args, 1, "unsupported")


@pytest.fixture
def fake_notes() -> FakeNotesGit:
    return FakeNotesGit()
