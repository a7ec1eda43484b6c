"""Producer invocation.

The producer is an external program that decides whether new data exists
and, if so, writes it to the working directory. The controller treats it
as opaque and only relies on this contract:

- It is called with exactly one argument: the prior-release timestamp.
- Exit status 0: the outputs (``categories``, ``keywords``, ``dump``) and a
  one-line title file (``last_updated``) were written.
- Exit status 20 or 21: nothing new; skip this cycle.
- Any other status: failure.

Its stdout and stderr are passed through to ours and never interpreted.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from dump_release.errors import ProducerFailure
from dump_release.logging_config import get_logger
from dump_release.schemas import EXIT_SUCCESS, ProducerResult, classify_exit_code

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ProducerProtocol(Protocol):
    """Anything that can be run once with a prior-release timestamp."""

    async def run(self, prior_timestamp: str) -> ProducerResult:
        ...


# ---------------------------------------------------------------------------
# Subprocess Implementation
# ---------------------------------------------------------------------------


class SubprocessProducer:
    """Runs the producer binary as a child process.

    Usage:
        producer = SubprocessProducer(["./target/release/rust-dump"], workdir=Path("."))
        result = await producer.run("Fri, 4 Apr 2025 1:00:00 +0000")
    """

    def __init__(
        self,
        command: Sequence[str],
        workdir: Path,
        timeout: float | None = None,
    ) -> None:
        """Initialize the producer.

        Args:
            command: Program and any fixed leading arguments
            workdir: Directory the producer runs in and writes its outputs to
            timeout: Seconds before the process is killed; None waits forever
        """
        if not command:
            raise ValueError("Producer command must not be empty")
        self.command = list(command)
        self.workdir = Path(workdir)
        self.timeout = timeout

    async def run(self, prior_timestamp: str) -> ProducerResult:
        """Run the producer once and classify its exit status.

        Raises:
            ProducerFailure: If the program cannot be started at all
        """
        argv = [*self.command, prior_timestamp]
        logger.info("producer_started", command=self.command, prior_timestamp=prior_timestamp)
        try:
            process = await asyncio.create_subprocess_exec(*argv, cwd=self.workdir)
        except OSError as exc:
            raise ProducerFailure(f"Could not start producer {self.command[0]!r}: {exc}") from exc

        try:
            code = await asyncio.wait_for(process.wait(), timeout=self.timeout)
        except TimeoutError:
            process.kill()
            await process.wait()
            logger.error("producer_timed_out", timeout=self.timeout)
            return ProducerResult.timeout()

        result = classify_exit_code(code)
        logger.info("producer_finished", exit_code=code, status=result.status.value)
        return result


# ---------------------------------------------------------------------------
# Scripted Implementation (for testing)
# ---------------------------------------------------------------------------


class ScriptedProducer:
    """Producer double that returns a fixed exit code.

    On exit code 0 it honours the filesystem contract by writing ``outputs``
    and the title file into ``workdir``.

    Usage:
        producer = ScriptedProducer(0, workdir=tmp_path, title="Sat, 05 Apr 2025 ...")
    """

    def __init__(
        self,
        exit_code: int,
        workdir: Path | None = None,
        title: str = "Sat, 05 Apr 2025 06:00:00 +0000",
        outputs: Sequence[str] = ("categories", "keywords", "dump"),
        title_file: str = "last_updated",
    ) -> None:
        self.exit_code = exit_code
        self.workdir = workdir
        self.title = title
        self.outputs = list(outputs)
        self.title_file = title_file
        self.calls: list[str] = []

    async def run(self, prior_timestamp: str) -> ProducerResult:
        self.calls.append(prior_timestamp)
        if self.exit_code == EXIT_SUCCESS and self.workdir is not None:
            for name in self.outputs:
                (self.workdir / name).write_bytes(f"{name} for {prior_timestamp}\n".encode())
            (self.workdir / self.title_file).write_text(self.title)
        return classify_exit_code(self.exit_code)
