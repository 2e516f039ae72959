"""Thin wrapper around the ``git`` executable.

Every git invocation in aictrack goes through :class:`GitRunner` so that
tests can substitute a fake runner and so failures surface uniformly as
:class:`~aictrack.errors.GitCommandError`.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional, Union

from .errors import GitCommandError

logger = logging.getLogger(__name__)


class GitRunner:
    """Run git commands inside one repository."""

    def __init__(
        self,
        repo_path: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.repo_path = Path(repo_path) if repo_path else None
        self.timeout = timeout

    def run(self, *args: str) -> str:
        """Run ``git <args>`` and return its stdout unmodified.

        Output is decoded as UTF-8.  Bytes that are not valid UTF-8 (blame of
        a latin-1 file, a hand-edited note) come back as U+FFFD.

        Raises:
            GitCommandError: on a non-zero exit, a missing git binary, or a
                timeout.
        """
        cmd = ["git", *args]
        logger.debug("running %s", cmd)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                cwd=str(self.repo_path) if self.repo_path else None,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise GitCommandError(args, 127, "git executable not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise GitCommandError(args, -1, f"timed out after {self.timeout}s") from exc
        if result.returncode != 0:
            raise GitCommandError(args, result.returncode, result.stderr or "")
        return result.stdout

    def toplevel(self) -> Path:
        """Return the repository root."""
        return Path(self.run("rev-parse", "--show-toplevel").strip())

    def head(self) -> str:
        """Return the commit id HEAD points at."""
        return self.run("rev-parse", "HEAD").strip()

    def current_branch(self) -> str:
        """Return the checked-out branch name (``HEAD`` when detached)."""
        return self.run("rev-parse", "--abbrev-ref", "HEAD").strip()
