"""aictrack -- line-level AI/human authorship attribution for git repositories."""

__version__ = "0.4.0"
