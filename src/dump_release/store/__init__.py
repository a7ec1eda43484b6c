"""Release store clients.

The release store is the system of record for published releases. The
controller only depends on ReleaseStoreProtocol; GitHub is the production
backend and the in-memory store backs tests and dry runs.
"""

from dump_release.store.github import GitHubReleaseStore, ReleaseStoreProtocol
from dump_release.store.memory import InMemoryReleaseStore

__all__ = ["GitHubReleaseStore", "InMemoryReleaseStore", "ReleaseStoreProtocol"]
