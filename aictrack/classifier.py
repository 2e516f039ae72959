"""Name-based fallback classifier for commits with no provenance record.

History that predates provenance records can only be attributed by looking
at the blame author.  A case-insensitive substring match against known AI
tool aliases marks the line as AI, and the model is guessed from the commit
date.  This is lower confidence than a provenance record and is kept behind
one object so it can be replaced or disabled without touching the resolver.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

# Author names / email fragments that identify an AI coding tool.
DEFAULT_AI_PATTERNS = [
    "Claude Code",
    "Claude",
    "claude",
    "AI Assistant",
    "noreply@anthropic.com",
]

# Commits strictly after this instant are assumed to use the newer model.
DEFAULT_CUTOVER = datetime(2024, 6, 1, tzinfo=timezone.utc)
DEFAULT_NEWER_MODEL = "claude-sonnet-4"
DEFAULT_OLDER_MODEL = "claude-3-sonnet"


@dataclass
class AuthorClassifier:
    """Heuristic AI-author classifier."""

    patterns: list[str] = field(default_factory=lambda: list(DEFAULT_AI_PATTERNS))
    cutover: datetime = DEFAULT_CUTOVER
    newer_model: str = DEFAULT_NEWER_MODEL
    older_model: str = DEFAULT_OLDER_MODEL
    enabled: bool = True

    def is_ai_author(self, author: str) -> bool:
        """Return True if *author* contains a known AI alias (any case)."""
        if not self.enabled or not author:
            return False
        lowered = author.lower()
        return any(p.lower() in lowered for p in self.patterns if p)

    def guess_model(self, when: Optional[datetime]) -> str:
        """Guess the AI model from the commit date.

        The cutover instant itself belongs to the older model.  An unknown
        date is treated as recent.
        """
        if when is None:
            return self.newer_model
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return self.newer_model if when > self.cutover else self.older_model

    def classify(
        self,
        author: str,
        when: Optional[datetime],
        mail: str = "",
    ) -> Optional[str]:
        """Return the guessed model if the author looks like an AI, else None."""
        if self.is_ai_author(author) or self.is_ai_author(mail):
            return self.guess_model(when)
        return None


_DEFAULT = AuthorClassifier()


def is_ai_author(author: str) -> bool:
    """Module-level shortcut using the default aliases."""
    return _DEFAULT.is_ai_author(author)


def guess_model(when: Optional[datetime]) -> str:
    """Module-level shortcut using the default cutover."""
    return _DEFAULT.guess_model(when)


def classify_author(author: str, when: Optional[datetime], mail: str = "") -> Optional[str]:
    """Module-level shortcut for :meth:`AuthorClassifier.classify`."""
    return _DEFAULT.classify(author, when, mail)
