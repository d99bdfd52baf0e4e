"""Data models for code-host API responses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class RepoInfo:
    """Repository metadata."""

    name: str
    full_name: str
    description: str = ""
    private: bool = False
    default_branch: str = "main"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RepoInfo:
        return cls(
            name=data.get("name") or "",
            full_name=data.get("full_name") or "",
            description=data.get("description") or "",
            private=bool(data.get("private", False)),
            default_branch=data.get("default_branch") or "main",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "full_name": self.full_name,
            "description": self.description,
            "private": self.private,
            "default_branch": self.default_branch,
        }


@dataclass(frozen=True)
class CommitInfo:
    """The tip commit of a branch."""

    sha: str
    message: str = ""
    author: str = ""
    date: str = ""  # ISO-8601 as returned by the API

    @property
    def short_sha(self) -> str:
        return self.sha[:7]

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> CommitInfo:
        commit = data.get("commit") or {}
        author = commit.get("author") or {}
        return cls(
            sha=data["sha"],
            message=commit.get("message") or "",
            author=author.get("name") or "",
            date=author.get("date") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sha": self.sha,
            "short_sha": self.short_sha,
            "message": self.message,
            "author": self.author,
            "date": self.date,
        }
