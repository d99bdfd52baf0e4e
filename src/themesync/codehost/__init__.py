"""Client for the GitHub REST API (repository metadata, commits, archives)."""

from themesync.codehost.cache import TTLCache
from themesync.codehost.client import CodeHostClient
from themesync.codehost.models import CommitInfo, RepoInfo

__all__ = ["CodeHostClient", "CommitInfo", "RepoInfo", "TTLCache"]
