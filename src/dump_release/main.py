"""FastAPI service for triggering release cycles.

The service replaces the workflow's "schedule + manual dispatch" triggers:
- POST /cycles                  - Run one cycle now (409 if one is running)
- GET  /cycles/last             - Report of the last completed cycle
- GET  /releases                - Releases currently in the store
- GET  /releases/prior-timestamp - What the next cycle would pass the producer
- GET  /health                  - Health check

When ``schedule.interval_seconds`` is set, a background task also runs a
cycle on that interval. Only one cycle runs at a time; a trigger that
arrives while a cycle is in progress is rejected rather than queued.

To run locally:
    dump-release serve --config dump-release.yaml --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from dump_release import __version__
from dump_release.config import Settings, load_settings
from dump_release.controller import ReleaseCycleController, build_controller
from dump_release.errors import (
    PackagingConsistencyError,
    ProducerFailure,
    ReleaseCycleError,
    ReleaseStoreError,
)
from dump_release.logging_config import get_logger
from dump_release.schemas import CycleReport, ReleaseRecord

logger = get_logger(__name__)


class CycleRunner:
    """Serializes cycles and remembers the last report."""

    def __init__(self, controller: ReleaseCycleController) -> None:
        self.controller = controller
        self.last_report: CycleReport | None = None
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run(self) -> CycleReport:
        async with self._lock:
            report = await self.controller.run_cycle()
            self.last_report = report
            return report

    async def run_periodically(self, interval: float) -> None:
        """Run a cycle every ``interval`` seconds until cancelled."""
        while True:
            if self.busy:
                logger.info("scheduled_cycle_skipped", reason="cycle already running")
            else:
                try:
                    await self.run()
                except ReleaseCycleError as exc:
                    # Already logged by the controller; the next tick retries.
                    logger.warning("scheduled_cycle_failed", kind=exc.kind)
                except Exception:
                    logger.exception("scheduled_cycle_crashed")
            await asyncio.sleep(interval)


class TimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.time()
        response = await call_next(request)
        duration = time.time() - start
        response.headers["X-Process-Time"] = f"{duration:.2f}s"
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration=round(duration, 3),
        )
        return response


def error_status(exc: ReleaseCycleError) -> int:
    """HTTP status for a fatal cycle error.

    Producer and packaging problems are ours (500); store problems are an
    upstream failure (502).
    """
    if isinstance(exc, (ProducerFailure, PackagingConsistencyError)):
        return 500
    return 502


def create_app(
    settings: Settings | None = None,
    controller: ReleaseCycleController | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Configuration; loaded from the environment if omitted
        controller: Pre-built controller (tests pass one with fakes)
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        runner = CycleRunner(controller or build_controller(settings))
        app.state.runner = runner

        scheduler: asyncio.Task | None = None
        interval = settings.schedule.interval_seconds
        if interval > 0:
            scheduler = asyncio.create_task(runner.run_periodically(interval))
            logger.info("scheduler_started", interval_seconds=interval)
        yield
        if scheduler is not None:
            scheduler.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await scheduler

    app = FastAPI(
        title="dump-release",
        description="Publishes data dumps as GitHub releases",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(TimingMiddleware)

    # -----------------------------------------------------------------------
    # Error Handling
    # -----------------------------------------------------------------------

    @app.exception_handler(ReleaseCycleError)
    async def cycle_error_handler(request: Request, exc: ReleaseCycleError) -> JSONResponse:
        content: dict = {"error": exc.kind, "detail": exc.message}
        if isinstance(exc, ProducerFailure):
            content["exit_code"] = exc.exit_code
            content["timed_out"] = exc.timed_out
        return JSONResponse(status_code=error_status(exc), content=content)

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/releases", response_model=list[ReleaseRecord])
    async def list_releases(request: Request) -> list[ReleaseRecord]:
        runner: CycleRunner = request.app.state.runner
        try:
            return await runner.controller.store.list_releases()
        except ReleaseStoreError as e:
            raise HTTPException(status_code=502, detail=f"Could not list releases: {e}")

    @app.get("/releases/prior-timestamp")
    async def prior_timestamp(request: Request) -> dict[str, str]:
        runner: CycleRunner = request.app.state.runner
        return {"prior_timestamp": await runner.controller.lookup_prior_timestamp()}

    @app.post("/cycles", response_model=CycleReport)
    async def trigger_cycle(request: Request) -> CycleReport:
        """Run one cycle and return its report."""
        runner: CycleRunner = request.app.state.runner
        if runner.busy:
            raise HTTPException(status_code=409, detail="A cycle is already running")
        return await runner.run()

    @app.get("/cycles/last", response_model=CycleReport)
    async def last_cycle(request: Request) -> CycleReport:
        runner: CycleRunner = request.app.state.runner
        if runner.last_report is None:
            raise HTTPException(status_code=404, detail="No cycle has completed yet")
        return runner.last_report

    return app
