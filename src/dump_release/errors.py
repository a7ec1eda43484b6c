"""Exception types for the release cycle.

Every fatal failure of a cycle is a ReleaseCycleError. The ``kind`` attribute
is stable and is what the CLI and the HTTP service report to operators.

An intentional skip (producer exit 20/21) is deliberately NOT an exception:
it is a normal cycle outcome (see CycleOutcome.SKIPPED).
"""

from __future__ import annotations


class ReleaseCycleError(Exception):
    """Base class for errors that abort a cycle."""

    kind = "release_cycle_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TransientInfrastructureError(ReleaseCycleError):
    """The release store could not be reached or answered with an error.

    Nothing was mutated; the next scheduled trigger retries.
    """

    kind = "transient_infrastructure"


class ProducerFailure(ReleaseCycleError):
    """The producer exited with a status outside the known contract."""

    kind = "producer_failure"

    def __init__(
        self, message: str, exit_code: int | None = None, timed_out: bool = False
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.timed_out = timed_out


class PackagingConsistencyError(ReleaseCycleError):
    """The producer reported success but its outputs are missing or broken."""

    kind = "packaging_consistency"


class PublicationError(ReleaseCycleError):
    """Creating the release failed. Retention is skipped."""

    kind = "publication"


class RetentionError(ReleaseCycleError):
    """Retiring the oldest release failed after a successful publish."""

    kind = "retention"


class ReleaseStoreError(Exception):
    """Raised by release store clients on HTTP or transport failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TitleParseError(ValueError):
    """A release title does not encode a timestamp in the expected format."""
