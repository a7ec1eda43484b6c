"""Helpers for naming a new release.

Tags have the form ``{prefix}-{short revision}-{run id}``. The run id makes
the tag unique even when several runs build the same revision, so a retried
create can never collide with an earlier run's release.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

from dump_release.errors import PackagingConsistencyError

SHORT_REVISION_LENGTH = 7


def read_release_title(path: Path) -> str:
    """Read the one-line release title the producer wrote.

    Raises:
        PackagingConsistencyError: If the file is missing or blank
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PackagingConsistencyError(f"Release title file {path} is unreadable: {exc}") from exc
    lines = text.splitlines()
    title = lines[0].strip() if lines else ""
    if not title:
        raise PackagingConsistencyError(f"Release title file {path} is empty")
    return title


def make_release_tag(
    revision: str,
    run_id: str,
    prefix: str = "release",
    short_length: int = SHORT_REVISION_LENGTH,
) -> str:
    """Build a unique release tag."""
    revision = revision.strip()
    run_id = str(run_id).strip()
    if not revision:
        raise ValueError("revision must not be empty")
    if not run_id:
        raise ValueError("run_id must not be empty")
    return f"{prefix}-{revision[:short_length]}-{run_id}"


async def resolve_revision(workdir: Path, configured: str | None = None) -> str:
    """Return the configured revision, or ask git for HEAD in ``workdir``.

    Raises:
        ValueError: If no revision is configured and git cannot provide one
    """
    if configured:
        return configured
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            "rev-parse",
            "HEAD",
            cwd=workdir,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as exc:
        raise ValueError(f"No revision configured and git is unavailable: {exc}") from exc
    stdout, _ = await process.communicate()
    revision = stdout.decode().strip()
    if process.returncode != 0 or not revision:
        raise ValueError(f"No revision configured and {workdir} is not a git checkout")
    return revision


def resolve_run_id(configured: str | None = None) -> str:
    """Return the configured run id, or a nanosecond clock reading."""
    return configured or str(time.time_ns())
