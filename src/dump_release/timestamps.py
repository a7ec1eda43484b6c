"""Timestamp formats shared by the producer, release titles and the store.

Two closely related RFC-2822 style formats are in play:

- The producer argument uses an unpadded day (``%-d``), e.g.
  ``"Fri, 4 Apr 2025 01:00:00 +0000"``.
- Release titles are written by the producer with a padded day and are parsed
  with ``"%a, %d %b %Y %H:%M:%S %z"`` (``strptime`` accepts both paddings).
"""

from __future__ import annotations

from datetime import UTC, datetime

from dump_release.errors import TitleParseError

DEFAULT_PRIOR_TIMESTAMP = "Fri, 4 Apr 2025 1:00:00 +0000"

TITLE_FORMAT = "%a, %d %b %Y %H:%M:%S %z"


def format_prior_timestamp(moment: datetime) -> str:
    """Render ``moment`` in UTC as the producer's argument format.

    ``%-d`` is a glibc extension, so the day is substituted by hand.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    moment = moment.astimezone(UTC)
    return moment.strftime(f"%a, {moment.day} %b %Y %H:%M:%S %z")


def parse_title_timestamp(title: str) -> datetime:
    """Parse a release title as a timestamp.

    Raises:
        TitleParseError: If the title is not in TITLE_FORMAT.
    """
    try:
        return datetime.strptime(title.strip(), TITLE_FORMAT)
    except ValueError as exc:
        raise TitleParseError(f"Release title {title!r} is not a timestamp: {exc}") from exc


def parse_published_at(value: str) -> datetime:
    """Parse the ISO-8601 ``publishedAt`` value returned by the GitHub API."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
