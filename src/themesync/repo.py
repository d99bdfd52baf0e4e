"""Repository reference parsing.

Accepts the forms people paste into a settings field::

    owner/repo
    https://github.com/owner/repo
    https://github.com/owner/repo.git
    git@github.com:owner/repo.git
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from themesync.errors import ErrorKind, Result

CODE_HOST_DOMAIN = "github.com"

_SHORTHAND_RE = re.compile(r"^([A-Za-z0-9_-]+)/([A-Za-z0-9_.-]+)$")
_URL_RE = re.compile(re.escape(CODE_HOST_DOMAIN) + r"[/:]([A-Za-z0-9_-]+)/([A-Za-z0-9_.-]+)")


@dataclass(frozen=True)
class RepositoryRef:
    """Normalized ``owner/repo`` identity."""

    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def _strip_git_suffix(name: str) -> str:
    return name[:-4] if name.endswith(".git") else name


def parse_repository(value: str | None) -> Result[RepositoryRef]:
    """Parse a repository URL or ``owner/repo`` shorthand."""
    text = (value or "").strip()
    if not text:
        return Result.failure(ErrorKind.INVALID_REFERENCE, "Repository URL is empty.")

    match = _SHORTHAND_RE.match(text) or _URL_RE.search(text)
    if match is None:
        return Result.failure(
            ErrorKind.INVALID_REFERENCE,
            "Invalid GitHub repository URL.",
            detail=text,
        )

    repo = _strip_git_suffix(match.group(2))
    if not repo or repo in {".", ".."}:
        return Result.failure(
            ErrorKind.INVALID_REFERENCE,
            "Invalid GitHub repository URL.",
            detail=text,
        )
    return Result.success(RepositoryRef(owner=match.group(1), repo=repo))
