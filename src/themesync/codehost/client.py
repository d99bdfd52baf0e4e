"""Async GitHub REST API client.

Fetches repository metadata, the tip commit of a branch and the branch
list (all cached for five minutes), and streams branch archives to disk.
Every non-success response is translated into exactly one ``ErrorKind``;
the upstream message is preserved in ``PullerError.detail``.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from themesync import __version__
from themesync.codehost.cache import TTLCache
from themesync.codehost.models import CommitInfo, RepoInfo
from themesync.errors import ErrorKind, PullerError, Result
from themesync.logging import get_logger
from themesync.repo import parse_repository
from themesync.security import token_kind

log = get_logger("themesync.codehost.client")

API_BASE = "https://api.github.com"
API_VERSION = "2022-11-28"
USER_AGENT = f"themesync/{__version__}"


def _segment(value: str) -> str:
    return quote(value, safe="")


class CodeHostClient:
    """Client for the subset of the GitHub API the deployer needs."""

    def __init__(
        self,
        token_provider: Callable[[], str] | None = None,
        base_url: str = API_BASE,
        timeout: float = 30.0,
        download_timeout: float = 120.0,
        cache: TTLCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._download_timeout = download_timeout
        self._cache = cache if cache is not None else TTLCache()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def clear_cache(self) -> None:
        """Drop every cached response."""
        self._cache.clear()
        log.debug("codehost_cache_cleared")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_repo_info(self, owner: str, repo: str) -> Result[RepoInfo]:
        key = f"repo:{owner}/{repo}"
        cached = self._cache.get(key)
        if cached is not None:
            return Result.success(cached)

        result = await self._request("GET", f"/repos/{_segment(owner)}/{_segment(repo)}")
        if not result.ok:
            return Result.from_error(result.error)  # type: ignore[arg-type]
        if not isinstance(result.value, dict):
            return self._malformed("repository")

        info = RepoInfo.from_api(result.value)
        self._cache.set(key, info)
        return Result.success(info)

    async def get_latest_commit(self, owner: str, repo: str, branch: str) -> Result[CommitInfo]:
        key = f"commit:{owner}/{repo}@{branch}"
        cached = self._cache.get(key)
        if cached is not None:
            return Result.success(cached)

        result = await self._request(
            "GET",
            f"/repos/{_segment(owner)}/{_segment(repo)}/commits/{_segment(branch)}",
        )
        if not result.ok:
            return Result.from_error(result.error)  # type: ignore[arg-type]
        data = result.value
        if not isinstance(data, dict) or not data.get("sha"):
            return self._malformed("commit")

        commit = CommitInfo.from_api(data)
        self._cache.set(key, commit)
        log.debug("codehost_latest_commit", repo=f"{owner}/{repo}", branch=branch, sha=commit.sha)
        return Result.success(commit)

    async def get_branches(self, owner: str, repo: str) -> Result[list[str]]:
        key = f"branches:{owner}/{repo}"
        cached = self._cache.get(key)
        if cached is not None:
            return Result.success(list(cached))

        result = await self._request(
            "GET",
            f"/repos/{_segment(owner)}/{_segment(repo)}/branches",
            params={"per_page": 100},
        )
        if not result.ok:
            return Result.from_error(result.error)  # type: ignore[arg-type]
        if not isinstance(result.value, list):
            return self._malformed("branch list")

        branches = [b["name"] for b in result.value if isinstance(b, dict) and b.get("name")]
        self._cache.set(key, branches)
        return Result.success(list(branches))

    async def download_archive(self, owner: str, repo: str, branch: str) -> Result[Path]:
        """Stream the branch zipball into a temporary file and return its path.

        The caller owns the file. Never cached.
        """
        endpoint = f"/repos/{_segment(owner)}/{_segment(repo)}/zipball/{_segment(branch)}"
        fd, name = tempfile.mkstemp(prefix="themesync-", suffix=".zip")
        os.close(fd)
        archive = Path(name)

        client = await self._get_client()
        try:
            async with client.stream(
                "GET",
                endpoint,
                headers=self._headers(),
                timeout=self._download_timeout,
            ) as resp:
                if resp.status_code != 200:
                    await resp.aread()
                    archive.unlink(missing_ok=True)
                    return Result.from_error(self._error_for(resp, endpoint))
                with archive.open("wb") as fh:
                    async for chunk in resp.aiter_bytes():
                        fh.write(chunk)
        except httpx.TimeoutException as exc:
            archive.unlink(missing_ok=True)
            log.warning("codehost_download_timeout", endpoint=endpoint)
            return Result.failure(
                ErrorKind.TRANSPORT_ERROR,
                "Downloading the repository archive timed out.",
                detail=str(exc),
            )
        except httpx.RequestError as exc:
            archive.unlink(missing_ok=True)
            log.warning("codehost_download_failed", endpoint=endpoint, error=str(exc))
            return Result.failure(
                ErrorKind.TRANSPORT_ERROR,
                f"Failed to download repository archive: {exc}",
                detail=str(exc),
            )
        except OSError as exc:
            archive.unlink(missing_ok=True)
            log.warning("codehost_download_write_failed", path=str(archive), error=str(exc))
            return Result.failure(
                ErrorKind.TRANSPORT_ERROR,
                "Failed to save downloaded file.",
                detail=str(exc),
            )

        log.info(
            "codehost_archive_downloaded",
            repo=f"{owner}/{repo}",
            branch=branch,
            bytes=archive.stat().st_size,
        )
        return Result.success(archive)

    async def test_connection(self, reference: str) -> Result[RepoInfo]:
        """Parse *reference* and fetch its metadata."""
        parsed = parse_repository(reference)
        if not parsed.ok:
            return Result.from_error(parsed.error)  # type: ignore[arg-type]
        ref = parsed.unwrap()
        return await self.get_repo_info(ref.owner, ref.repo)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _token(self) -> str:
        if self._token_provider is None:
            return ""
        return self._token_provider() or ""

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": API_VERSION,
        }
        token = self._token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> Result[Any]:
        client = await self._get_client()
        try:
            resp = await client.request(method, endpoint, headers=self._headers(), params=params)
        except httpx.TimeoutException as exc:
            log.warning("codehost_request_timeout", endpoint=endpoint)
            return Result.failure(
                ErrorKind.TRANSPORT_ERROR,
                "Request to GitHub timed out.",
                detail=str(exc),
            )
        except httpx.RequestError as exc:
            log.warning("codehost_request_failed", endpoint=endpoint, error=str(exc))
            return Result.failure(
                ErrorKind.TRANSPORT_ERROR,
                f"Could not reach GitHub: {exc}",
                detail=str(exc),
            )

        log.debug("codehost_response", method=method, endpoint=endpoint, status=resp.status_code)

        if resp.status_code in (200, 201):
            try:
                return Result.success(resp.json())
            except ValueError:
                return self._malformed("JSON")

        return Result.from_error(self._error_for(resp, endpoint))

    @staticmethod
    def _upstream_message(resp: httpx.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return resp.text[:500] or "Unknown error"

    def _error_for(self, resp: httpx.Response, endpoint: str) -> PullerError:
        status = resp.status_code
        message = self._upstream_message(resp)

        if status == 401:
            error = PullerError(
                ErrorKind.AUTHENTICATION_FAILED,
                "GitHub authentication failed (401). Your token may be invalid or expired.",
                detail=message,
                status=status,
            )
        elif status == 403:
            remaining = resp.headers.get("x-ratelimit-remaining")
            if "rate limit" in message.lower() or remaining == "0":
                error = PullerError(
                    ErrorKind.RATE_LIMITED,
                    "GitHub API rate limit exceeded. Try again later or add an access token.",
                    detail=message,
                    status=status,
                )
            else:
                error = PullerError(
                    ErrorKind.FORBIDDEN,
                    f"Access forbidden (403): {message}",
                    detail=message,
                    status=status,
                )
        elif status == 404:
            error = PullerError(
                ErrorKind.NOT_FOUND,
                self._not_found_message(endpoint),
                detail=message,
                status=status,
            )
        else:
            error = PullerError(
                ErrorKind.UNEXPECTED_STATUS,
                f"GitHub API error ({status}): {message}",
                detail=message,
                status=status,
            )

        log.warning("codehost_error", endpoint=endpoint, status=status, kind=error.kind.value)
        return error

    def _not_found_message(self, endpoint: str) -> str:
        token = self._token()
        if not token:
            return (
                "Repository not found (404). For private repositories, "
                "configure an access token."
            )
        return (
            f"Repository not found (404). Auth: {token_kind(token)}. Endpoint: {endpoint}. "
            "Ensure the token has Contents and Metadata read access for this repository."
        )

    @staticmethod
    def _malformed(what: str) -> Result[Any]:
        return Result.failure(
            ErrorKind.UNEXPECTED_STATUS,
            f"GitHub returned an unexpected {what} response.",
        )
