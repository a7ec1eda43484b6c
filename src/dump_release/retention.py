"""Retention rule for published releases.

Once ``threshold`` (default 2) releases exist, the oldest one is deleted.
"Oldest" is decided by the release TITLE, which the producer writes as an
RFC-2822 timestamp of the data it published, not by the publication time
of the release itself.

One release is deleted per pass, or more when an interrupted cycle left the
store above the threshold: the pass then trims it back to ``threshold``.
Ties on the parsed timestamp are broken by tag so the choice is reproducible.

Titles that do not parse are handled by UnparsablePolicy:
- FAIL (default): the pass aborts with RetentionError, nothing is deleted
- EXCLUDE: those releases are ignored when picking the oldest
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from dump_release.config import UnparsablePolicy
from dump_release.errors import RetentionError, TitleParseError
from dump_release.logging_config import get_logger
from dump_release.schemas import ReleaseRecord, RetentionDecision
from dump_release.timestamps import parse_title_timestamp

logger = get_logger(__name__)


def excess_count(count: int, threshold: int) -> int:
    """How many releases to delete once ``count`` has reached ``threshold``.

    Normally one. A store left above the threshold by an interrupted cycle
    is trimmed back to ``threshold``.
    """
    if count < threshold:
        return 0
    return max(1, count - threshold)


def plan_retention(
    records: Sequence[ReleaseRecord],
    threshold: int = 2,
    unparsable: UnparsablePolicy = UnparsablePolicy.FAIL,
) -> RetentionDecision:
    """Decide which release (if any) to delete.

    Args:
        records: Every release currently in the store
        threshold: Minimum number of releases before one is deleted
        unparsable: What to do with titles that are not timestamps

    Returns:
        A RetentionDecision listing the records to delete, oldest first

    Raises:
        RetentionError: If a title does not parse and the policy is FAIL
    """
    count = len(records)
    if count < threshold:
        return RetentionDecision(
            to_delete=[],
            considered=count,
            reason=f"{count} release(s), below threshold of {threshold}",
        )

    dated: list[tuple[datetime, str, ReleaseRecord]] = []
    excluded: list[ReleaseRecord] = []
    for record in records:
        try:
            moment = parse_title_timestamp(record.title)
        except TitleParseError as exc:
            if unparsable == UnparsablePolicy.FAIL:
                raise RetentionError(
                    f"Cannot order release {record.tag}: {exc}"
                ) from exc
            logger.warning("retention_title_unparsable", tag=record.tag, title=record.title)
            excluded.append(record)
            continue
        dated.append((moment, record.tag, record))

    if not dated:
        return RetentionDecision(
            to_delete=[],
            considered=count,
            excluded=excluded,
            reason="no release has a parsable title",
        )

    dated.sort(key=lambda item: (item[0], item[1]))
    victims = dated[: excess_count(count, threshold)]
    return RetentionDecision(
        to_delete=[record for _, _, record in victims],
        considered=count,
        excluded=excluded,
        reason=f"{count} release(s) at or above threshold of {threshold}; "
        f"oldest is {victims[0][1]} ({victims[0][0].isoformat()})",
    )
