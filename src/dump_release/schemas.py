"""Data model for the release cycle.

- ReleaseRecord: one published release, as the store reports it
- ProducerResult: the classified exit status of one producer run
- RetentionDecision: what the retention pass intends to delete
- CycleReport: the summary of a cycle that did not fail

Only ReleaseRecords are persisted, and they live in the external release
store. Everything else is derived and discarded within one cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# Exit codes the producer uses to say "nothing new". Fixed by the producer.
EXIT_SUCCESS = 0
EXIT_NO_CHANGE_LOW = 20
EXIT_NO_CHANGE_HIGH = 21


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProducerStatus(StrEnum):
    """Classified producer exit status.

    SUCCESS: outputs were written, publish them
    NO_CHANGE_LOW: exit 20, the producer found no new data
    NO_CHANGE_HIGH: exit 21, the producer could not tell and chose to skip
    FAILURE: anything else, including timeouts
    """

    SUCCESS = "SUCCESS"
    NO_CHANGE_LOW = "NO_CHANGE_LOW"
    NO_CHANGE_HIGH = "NO_CHANGE_HIGH"
    FAILURE = "FAILURE"


class CycleOutcome(StrEnum):
    """Terminal outcome of a cycle that did not fail."""

    PUBLISHED = "PUBLISHED"
    SKIPPED = "SKIPPED"


# ---------------------------------------------------------------------------
# Store records
# ---------------------------------------------------------------------------


class ReleaseRecord(BaseModel):
    """A published release.

    Attributes:
        tag: Tag name, unique within the store
        title: Release name; expected to encode a timestamp
        published_at: Publication time (None for drafts)
        release_id: Store-internal identifier, if the store has one
    """

    model_config = ConfigDict(frozen=True)

    tag: str = Field(..., min_length=1, description="Release tag")
    title: str = Field("", description="Release title")
    published_at: datetime | None = Field(None, description="Publication time")
    release_id: int | None = Field(None, description="Store-internal id")


# ---------------------------------------------------------------------------
# Producer result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProducerResult:
    """Outcome of a single producer invocation.

    Attributes:
        status: Classified status
        exit_code: Raw exit status (None when the process was killed on timeout)
        timed_out: Whether the run was stopped by the controller's timeout
    """

    status: ProducerStatus
    exit_code: int | None
    timed_out: bool = False

    @property
    def is_success(self) -> bool:
        return self.status == ProducerStatus.SUCCESS

    @property
    def is_skip(self) -> bool:
        return self.status in (ProducerStatus.NO_CHANGE_LOW, ProducerStatus.NO_CHANGE_HIGH)

    @classmethod
    def timeout(cls) -> ProducerResult:
        return cls(status=ProducerStatus.FAILURE, exit_code=None, timed_out=True)


def classify_exit_code(code: int) -> ProducerResult:
    """Map a raw exit status onto the producer contract."""
    if code == EXIT_SUCCESS:
        status = ProducerStatus.SUCCESS
    elif code == EXIT_NO_CHANGE_LOW:
        status = ProducerStatus.NO_CHANGE_LOW
    elif code == EXIT_NO_CHANGE_HIGH:
        status = ProducerStatus.NO_CHANGE_HIGH
    else:
        status = ProducerStatus.FAILURE
    return ProducerResult(status=status, exit_code=code)


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetentionDecision:
    """What a retention pass will delete.

    Attributes:
        to_delete: Zero or one record
        considered: Number of records listed
        excluded: Records left out because their title did not parse
        reason: Human-readable explanation, for logs
    """

    to_delete: list[ReleaseRecord]
    considered: int
    reason: str
    excluded: list[ReleaseRecord] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Cycle report
# ---------------------------------------------------------------------------


class CycleReport(BaseModel):
    """Summary of a cycle that ended in PUBLISHED or SKIPPED."""

    outcome: CycleOutcome
    prior_timestamp: str = Field(..., description="Timestamp passed to the producer")
    producer_status: ProducerStatus
    exit_code: int | None = None
    tag: str | None = Field(None, description="Tag of the new release")
    title: str | None = Field(None, description="Title of the new release")
    archive: str | None = Field(None, description="Path of the uploaded archive")
    deleted_tags: list[str] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime
