"""Release-cycle controller.

One cycle runs these stages strictly in order, each waiting for the previous:

1. Look up the newest existing release (or fall back to a fixed default)
2. Run the producer with that timestamp
3. Exit 20/21: stop, nothing changes
4. Exit 0: package the outputs into data.tar.zst
5. Publish a release titled from the producer's ``last_updated`` file
6. Delete the oldest release once the store holds ``threshold`` releases

Any failure aborts the cycle immediately and nothing is retried; the next
scheduled trigger is the retry. A release is only ever deleted after this
cycle's own publish succeeded.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import UTC, datetime
from pathlib import Path

from dump_release.config import Settings, load_settings
from dump_release.errors import (
    ProducerFailure,
    PublicationError,
    ReleaseCycleError,
    ReleaseStoreError,
    RetentionError,
    TransientInfrastructureError,
)
from dump_release.logging_config import get_logger, setup_logging
from dump_release.packaging import build_archive
from dump_release.producer import ProducerProtocol, SubprocessProducer
from dump_release.publication import (
    make_release_tag,
    read_release_title,
    resolve_revision,
    resolve_run_id,
)
from dump_release.retention import plan_retention
from dump_release.schemas import (
    CycleOutcome,
    CycleReport,
    ProducerResult,
    ReleaseRecord,
)
from dump_release.store import GitHubReleaseStore, ReleaseStoreProtocol
from dump_release.timestamps import format_prior_timestamp

logger = get_logger(__name__)


class ReleaseCycleController:
    """Runs release cycles against a release store and a producer.

    The controller holds no state between cycles: everything it needs is
    re-read from the store each time.

    Usage:
        controller = ReleaseCycleController(store, producer, settings)
        report = await controller.run_cycle()
    """

    def __init__(
        self,
        store: ReleaseStoreProtocol,
        producer: ProducerProtocol,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.producer = producer
        self.settings = settings or Settings()

    @property
    def workdir(self) -> Path:
        return self.settings.workdir

    # -- stages -------------------------------------------------------------

    async def lookup_prior_timestamp(self) -> str:
        """Return the publication time of the newest release, producer-formatted.

        Raises:
            TransientInfrastructureError: If the store cannot be listed
        """
        try:
            releases = await self.store.list_releases()
        except ReleaseStoreError as exc:
            raise TransientInfrastructureError(f"Could not list releases: {exc}") from exc

        published = [r for r in releases if r.published_at is not None]
        if not published:
            prior = self.settings.default_prior_timestamp
            logger.info("lookup_complete", releases=len(releases), prior_timestamp=prior, default=True)
            return prior

        newest = max(published, key=lambda r: r.published_at)
        prior = format_prior_timestamp(newest.published_at)
        logger.info("lookup_complete", releases=len(releases), prior_timestamp=prior, tag=newest.tag)
        return prior

    async def invoke_producer(self, prior_timestamp: str) -> ProducerResult:
        """Run the producer once. Fatal statuses raise ProducerFailure."""
        result = await self.producer.run(prior_timestamp)
        if result.is_success or result.is_skip:
            return result
        if result.timed_out:
            raise ProducerFailure("Producer timed out", exit_code=None, timed_out=True)
        raise ProducerFailure(
            f"Unexpected failure with exit code {result.exit_code}",
            exit_code=result.exit_code,
        )

    def package(self) -> Path:
        """Bundle the producer outputs into the release archive."""
        return build_archive(self.workdir, self.settings.outputs, self.settings.archive_name)

    async def publish(self, archive: Path) -> ReleaseRecord:
        """Create the release for ``archive``.

        Raises:
            PackagingConsistencyError: If the title file is missing or blank
            PublicationError: If no tag can be built or the store rejects it
        """
        title = read_release_title(self.workdir / self.settings.title_file)
        try:
            revision = await resolve_revision(self.workdir, self.settings.revision)
            tag = make_release_tag(
                revision,
                resolve_run_id(self.settings.run_id),
                prefix=self.settings.tag_prefix,
            )
        except ValueError as exc:
            raise PublicationError(f"Could not build a release tag: {exc}") from exc

        try:
            record = await self.store.create_release(tag, title, archive)
        except ReleaseStoreError as exc:
            raise PublicationError(f"Could not publish release {tag}: {exc}") from exc
        logger.info("release_published", tag=record.tag, title=record.title)
        return record

    async def enforce_retention(self) -> list[str]:
        """Delete the oldest release(s) once the store has reached the threshold.

        Returns:
            Tags that were deleted, oldest first

        Raises:
            RetentionError: If listing, ordering or deleting fails
        """
        try:
            releases = await self.store.list_releases()
        except ReleaseStoreError as exc:
            raise RetentionError(f"Could not list releases for retention: {exc}") from exc

        decision = plan_retention(
            releases,
            threshold=self.settings.retention.threshold,
            unparsable=self.settings.retention.unparsable,
        )
        logger.info(
            "retention_planned",
            considered=decision.considered,
            to_delete=[r.tag for r in decision.to_delete],
            excluded=[r.tag for r in decision.excluded],
            reason=decision.reason,
        )

        deleted: list[str] = []
        for record in decision.to_delete:
            try:
                await self.store.delete_release(record.tag)
            except ReleaseStoreError as exc:
                raise RetentionError(f"Could not delete release {record.tag}: {exc}") from exc
            logger.info("release_deleted", tag=record.tag, title=record.title)
            deleted.append(record.tag)
        return deleted

    # -- cycle --------------------------------------------------------------

    async def run_cycle(self) -> CycleReport:
        """Run one full cycle.

        Returns:
            A CycleReport with outcome PUBLISHED or SKIPPED

        Raises:
            ReleaseCycleError: On any fatal failure
        """
        started_at = datetime.now(UTC)
        logger.info("cycle_started", repository=getattr(self.store, "repository", None))
        try:
            prior = await self.lookup_prior_timestamp()
            result = await self.invoke_producer(prior)

            if result.is_skip:
                logger.info(
                    "cycle_skipped",
                    exit_code=result.exit_code,
                    status=result.status.value,
                )
                return CycleReport(
                    outcome=CycleOutcome.SKIPPED,
                    prior_timestamp=prior,
                    producer_status=result.status,
                    exit_code=result.exit_code,
                    started_at=started_at,
                    finished_at=datetime.now(UTC),
                )

            archive = self.package()
            record = await self.publish(archive)
            deleted = await self.enforce_retention()
        except ReleaseCycleError as exc:
            logger.error("cycle_failed", kind=exc.kind, error=exc.message)
            raise

        logger.info("cycle_complete", tag=record.tag, deleted=deleted)
        return CycleReport(
            outcome=CycleOutcome.PUBLISHED,
            prior_timestamp=prior,
            producer_status=result.status,
            exit_code=result.exit_code,
            tag=record.tag,
            title=record.title,
            archive=str(archive),
            deleted_tags=deleted,
            started_at=started_at,
            finished_at=datetime.now(UTC),
        )


def build_controller(settings: Settings) -> ReleaseCycleController:
    """Wire the GitHub store and the subprocess producer from settings."""
    store = GitHubReleaseStore(
        settings.repository,
        token=settings.token.get_secret_value(),
        api_url=settings.api_url,
        upload_url=settings.upload_url,
        timeout=settings.http_timeout_seconds,
    )
    producer = SubprocessProducer(
        settings.producer.command,
        workdir=settings.workdir,
        timeout=settings.producer.timeout_seconds,
    )
    return ReleaseCycleController(store, producer, settings)


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------


def exit_code_for(exc: ReleaseCycleError) -> int:
    """Process exit status for a failed cycle.

    A producer failure is passed through with the producer's own status so
    the scheduler shows the same code the producer returned. A producer
    killed by a signal maps to 128 + the signal number, as a shell reports it.
    """
    if isinstance(exc, ProducerFailure) and exc.exit_code not in (None, 0):
        if exc.exit_code < 0:
            return 128 - exc.exit_code
        return exc.exit_code
    return 1


def _add_common_options(parser: argparse.ArgumentParser, default=None) -> None:
    parser.add_argument("--config", "-c", default=default, help="Path to a YAML config file")
    parser.add_argument(
        "--workdir", "-w", default=default, help="Directory the producer runs in"
    )


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    ``--config`` and ``--workdir`` are accepted before or after the command.

    Usage:
        dump-release run --config dump-release.yaml
        dump-release --config dump-release.yaml lookup
        dump-release serve --port 8000
    """
    parser = argparse.ArgumentParser(
        prog="dump-release", description="Publish data dumps as GitHub releases"
    )
    _add_common_options(parser)
    # SUPPRESS keeps a subcommand from resetting options given before it.
    common = argparse.ArgumentParser(add_help=False)
    _add_common_options(common, default=argparse.SUPPRESS)

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", parents=[common], help="Run one release cycle")
    sub.add_parser("lookup", parents=[common], help="Print the prior-release timestamp")
    serve = sub.add_parser("serve", parents=[common], help="Run the HTTP trigger service")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_usage()
        return 2

    setup_logging()
    try:
        settings = load_settings(args.config)
    except ValueError as exc:
        logger.error("config_invalid", error=str(exc))
        return 2
    if args.workdir:
        settings = settings.model_copy(update={"workdir": Path(args.workdir)})

    if args.command == "serve":
        import uvicorn

        from dump_release.main import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port)
        return 0

    try:
        controller = build_controller(settings)
    except ValueError as exc:
        logger.error("config_invalid", error=str(exc))
        return 2

    try:
        if args.command == "lookup":
            print(asyncio.run(controller.lookup_prior_timestamp()))
            return 0
        report = asyncio.run(controller.run_cycle())
    except ReleaseCycleError as exc:
        return exit_code_for(exc)

    print(report.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
