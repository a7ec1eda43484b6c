"""In-memory release store.

Use this in tests and for local dry runs when you don't want to touch a
real repository. Failures can be injected per operation to exercise the
controller's error paths.

Usage:
    store = InMemoryReleaseStore([ReleaseRecord(tag="v1", title="...")])
    store.fail_on_delete = True
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from dump_release.errors import ReleaseStoreError
from dump_release.schemas import ReleaseRecord


class InMemoryReleaseStore:
    """Release store that keeps records in a list."""

    def __init__(self, releases: list[ReleaseRecord] | None = None) -> None:
        self.releases: list[ReleaseRecord] = list(releases or [])
        self.artifacts: dict[str, bytes] = {}
        self.created: list[str] = []
        self.deleted: list[str] = []
        self.fail_on_list = False
        self.fail_on_create = False
        self.fail_on_delete = False

    async def list_releases(self) -> list[ReleaseRecord]:
        if self.fail_on_list:
            raise ReleaseStoreError("store unreachable")
        return list(self.releases)

    async def create_release(self, tag: str, title: str, artifact: Path) -> ReleaseRecord:
        if self.fail_on_create:
            raise ReleaseStoreError("release creation rejected", status_code=403)
        if any(r.tag == tag for r in self.releases):
            raise ReleaseStoreError(f"tag {tag} already exists", status_code=422)
        record = ReleaseRecord(
            tag=tag,
            title=title,
            published_at=datetime.now(UTC),
            release_id=len(self.created) + 1,
        )
        self.artifacts[tag] = artifact.read_bytes()
        self.releases.append(record)
        self.created.append(tag)
        return record

    async def delete_release(self, tag: str) -> None:
        if self.fail_on_delete:
            raise ReleaseStoreError("delete rejected", status_code=500)
        remaining = [r for r in self.releases if r.tag != tag]
        if len(remaining) == len(self.releases):
            raise ReleaseStoreError(f"release {tag} not found", status_code=404)
        self.releases = remaining
        self.artifacts.pop(tag, None)
        self.deleted.append(tag)
