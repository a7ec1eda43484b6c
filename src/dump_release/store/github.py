"""GitHub Releases API client used as the release store.

This module talks to GitHub's REST API to list, create and delete releases
of a single repository:
- GET    /repos/{repo}/releases               (paginated)
- POST   /repos/{repo}/releases               (create as a draft)
- POST   {uploads}/repos/{repo}/releases/{id}/assets
- PATCH  /repos/{repo}/releases/{id}          (publish the draft)
- GET    /repos/{repo}/releases/tags/{tag}    (resolve a tag to an id)
- DELETE /repos/{repo}/releases/{id}

Design notes:
- Uses httpx for async HTTP requests
- The token is passed in by the caller; this module never reads the
  environment, so tests can build a client against a mock transport
- Every HTTP or transport failure, and every response body that is not the
  JSON we expect, surfaces as ReleaseStoreError, and the controller decides
  what that means for the current stage

GitHub API docs: https://docs.github.com/en/rest/releases
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

import httpx

from dump_release.errors import ReleaseStoreError
from dump_release.logging_config import get_logger
from dump_release.schemas import ReleaseRecord
from dump_release.timestamps import parse_published_at

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Protocol (Interface)
# ---------------------------------------------------------------------------


class ReleaseStoreProtocol(Protocol):
    """Interface the controller uses to read and mutate releases."""

    async def list_releases(self) -> list[ReleaseRecord]:
        """Return every published release in the store."""
        ...

    async def create_release(self, tag: str, title: str, artifact: Path) -> ReleaseRecord:
        """Publish a release named ``title`` under ``tag`` carrying ``artifact``."""
        ...

    async def delete_release(self, tag: str) -> None:
        """Delete the release with the given tag."""
        ...


# ---------------------------------------------------------------------------
# Concrete Implementation
# ---------------------------------------------------------------------------


class GitHubReleaseStore:
    """Release store backed by a GitHub repository.

    Usage:
        store = GitHubReleaseStore("myorg/crates-dump", token="ghp_...")
        releases = await store.list_releases()
    """

    def __init__(
        self,
        repository: str,
        token: str,
        api_url: str = "https://api.github.com",
        upload_url: str = "https://uploads.github.com",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the store client.

        Args:
            repository: Repository in "owner/name" format
            token: GitHub token with contents:write permission
            api_url: REST API base URL (GitHub Enterprise uses another host)
            upload_url: Base URL for release asset uploads
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if not repository or "/" not in repository:
            raise ValueError(f"Repository must be 'owner/name', got {repository!r}")
        self.repository = repository
        self._api_url = api_url.rstrip("/")
        self._upload_url = upload_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    def __repr__(self) -> str:
        return f"GitHubReleaseStore(repository={self.repository!r})"

    def _client(self, base_url: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def list_releases(self) -> list[ReleaseRecord]:
        """Fetch all published releases, following pagination.

        Drafts are skipped: they are either a create in progress or one
        that failed before its asset was attached.

        Raises:
            ReleaseStoreError: If any request fails or returns malformed data
        """
        async with self._client(self._api_url) as client:
            items = await self._handle_pagination(client, f"/repos/{self.repository}/releases")
        return [self._to_record(item) for item in items if not item.get("draft")]

    async def create_release(self, tag: str, title: str, artifact: Path) -> ReleaseRecord:
        """Create a release for ``artifact`` and publish it once the asset is attached.

        The release is created as a draft, the asset is uploaded, and only
        then is the draft flipped to published. If the upload or the flip
        fails, the draft is deleted so no release without its artifact is
        ever visible. The tag is created by GitHub on the default branch when
        the release is published. A duplicate tag is rejected with 422.

        Raises:
            ReleaseStoreError: If the release, the upload or the publish fails
        """
        payload = {"tag_name": tag, "name": title, "draft": True, "prerelease": False}
        async with self._client(self._api_url) as client:
            resp = await self._request(
                client, "POST", f"/repos/{self.repository}/releases", json=payload
            )
        draft = self._to_record(self._json(resp))
        release_url = f"/repos/{self.repository}/releases/{draft.release_id}"

        try:
            async with self._client(self._upload_url) as client:
                await self._request(
                    client,
                    "POST",
                    f"{release_url}/assets",
                    params={"name": artifact.name},
                    content=artifact.read_bytes(),
                    headers={"Content-Type": "application/octet-stream"},
                )
            async with self._client(self._api_url) as client:
                resp = await self._request(client, "PATCH", release_url, json={"draft": False})
            return self._to_record(self._json(resp))
        except (ReleaseStoreError, OSError) as exc:
            await self._discard_draft(release_url, tag)
            if isinstance(exc, ReleaseStoreError):
                raise
            raise ReleaseStoreError(f"Could not read artifact {artifact}: {exc}") from exc

    async def _discard_draft(self, release_url: str, tag: str) -> None:
        try:
            async with self._client(self._api_url) as client:
                await self._request(client, "DELETE", release_url)
        except ReleaseStoreError as exc:
            logger.warning("draft_cleanup_failed", tag=tag, error=str(exc))
        else:
            logger.info("draft_discarded", tag=tag)

    async def delete_release(self, tag: str) -> None:
        """Delete the release for ``tag``. The git tag itself is kept.

        Raises:
            ReleaseStoreError: If the tag has no release or the delete fails
        """
        async with self._client(self._api_url) as client:
            resp = await self._request(
                client, "GET", f"/repos/{self.repository}/releases/tags/{tag}"
            )
            release_id = self._to_record(self._json(resp)).release_id
            if release_id is None:
                raise ReleaseStoreError(f"Release for tag {tag} has no id")
            await self._request(
                client, "DELETE", f"/repos/{self.repository}/releases/{release_id}"
            )

    async def _request(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs
    ) -> httpx.Response:
        try:
            resp = await client.request(method, url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ReleaseStoreError(
                f"{method} {url} failed with {exc.response.status_code}: "
                f"{exc.response.text[:200]}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise ReleaseStoreError(f"{method} {url} failed: {exc}") from exc
        return resp

    async def _handle_pagination(
        self,
        client: httpx.AsyncClient,
        url: str,
    ) -> list[dict]:
        """Collect all items of a paginated list endpoint.

        GitHub returns a 'Link' header with next/prev/last URLs for
        paginated responses. The next URL already carries the query string.
        """
        all_items: list[dict] = []
        next_url: str | None = url
        params: dict | None = {"per_page": 100}

        while next_url:
            resp = await self._request(client, "GET", next_url, params=params)
            page = self._json(resp)
            if not isinstance(page, list) or not all(isinstance(i, dict) for i in page):
                raise ReleaseStoreError(f"GET {next_url} did not return a list of releases")
            all_items.extend(page)
            next_url = self._parse_next_link(resp.headers.get("link", ""))
            params = None

        return all_items

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        """Extract the 'next' URL from a GitHub Link header."""
        if not link_header:
            return None
        for part in link_header.split(","):
            if 'rel="next"' in part:
                return part.split(";")[0].strip().strip("<>")
        return None

    @staticmethod
    def _json(resp: httpx.Response):
        """Decode a response body, treating malformed JSON as a store failure."""
        try:
            return resp.json()
        except ValueError as exc:
            raise ReleaseStoreError(
                f"{resp.request.method} {resp.request.url} returned malformed JSON: {exc}",
                status_code=resp.status_code,
            ) from exc

    @staticmethod
    def _to_record(item: dict) -> ReleaseRecord:
        try:
            published = item.get("published_at")
            return ReleaseRecord(
                tag=item["tag_name"],
                title=item.get("name") or "",
                published_at=parse_published_at(published) if published else None,
                release_id=item.get("id"),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ReleaseStoreError(f"Unexpected release payload: {exc!r}") from exc
