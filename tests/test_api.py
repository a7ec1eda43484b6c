"""Tests for the HTTP trigger service."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from dump_release.config import Settings
from dump_release.controller import ReleaseCycleController
from dump_release.errors import (
    PackagingConsistencyError,
    ProducerFailure,
    PublicationError,
    RetentionError,
    TransientInfrastructureError,
)
from dump_release.main import CycleRunner, create_app, error_status
from dump_release.producer import ScriptedProducer
from dump_release.schemas import ProducerResult, ReleaseRecord
from dump_release.store import InMemoryReleaseStore

TITLE = "Sun, 06 Apr 2025 09:30:00 +0000"


class BlockingProducer:
    """Producer that waits until released, to hold a cycle open."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def run(self, prior_timestamp: str) -> ProducerResult:
        self.started.set()
        await self.release.wait()
        return ProducerResult.timeout()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(workdir=tmp_path, revision="abcdef0123456789", run_id="42")


@pytest.fixture
def store() -> InMemoryReleaseStore:
    return InMemoryReleaseStore(
        [
            ReleaseRecord(
                tag="release-1111111-1",
                title="Sat, 05 Apr 2025 06:00:00 +0000",
                published_at=datetime(2025, 4, 5, 6, 5, tzinfo=UTC),
            )
        ]
    )


def client_for(settings: Settings, store: InMemoryReleaseStore, exit_code: int = 0) -> TestClient:
    producer = ScriptedProducer(exit_code, workdir=settings.workdir, title=TITLE)
    controller = ReleaseCycleController(store, producer, settings)
    return TestClient(create_app(settings, controller=controller))


class TestReadRoutes:
    def test_health_check(self, settings: Settings, store: InMemoryReleaseStore) -> None:
        with client_for(settings, store) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_list_releases(self, settings: Settings, store: InMemoryReleaseStore) -> None:
        with client_for(settings, store) as client:
            response = client.get("/releases")
        assert response.status_code == 200
        assert [r["tag"] for r in response.json()] == ["release-1111111-1"]

    def test_list_releases_store_down(
        self, settings: Settings, store: InMemoryReleaseStore
    ) -> None:
        store.fail_on_list = True
        with client_for(settings, store) as client:
            response = client.get("/releases")
        assert response.status_code == 502

    def test_prior_timestamp(self, settings: Settings, store: InMemoryReleaseStore) -> None:
        with client_for(settings, store) as client:
            response = client.get("/releases/prior-timestamp")
        assert response.json() == {"prior_timestamp": "Sat, 5 Apr 2025 06:05:00 +0000"}

    def test_prior_timestamp_store_down(
        self, settings: Settings, store: InMemoryReleaseStore
    ) -> None:
        store.fail_on_list = True
        with client_for(settings, store) as client:
            response = client.get("/releases/prior-timestamp")
        assert response.status_code == 502
        assert response.json()["error"] == "transient_infrastructure"


class TestCycleRoutes:
    def test_last_cycle_is_404_before_any_run(
        self, settings: Settings, store: InMemoryReleaseStore
    ) -> None:
        with client_for(settings, store) as client:
            assert client.get("/cycles/last").status_code == 404

    def test_trigger_publishes_and_retires(
        self, settings: Settings, store: InMemoryReleaseStore
    ) -> None:
        with client_for(settings, store) as client:
            response = client.post("/cycles")
            assert response.status_code == 200
            body = response.json()
            assert body["outcome"] == "PUBLISHED"
            assert body["tag"] == "release-abcdef0-42"
            assert body["deleted_tags"] == ["release-1111111-1"]

            last = client.get("/cycles/last")
            assert last.status_code == 200
            assert last.json()["tag"] == "release-abcdef0-42"
        assert [r.tag for r in store.releases] == ["release-abcdef0-42"]

    def test_trigger_skip(self, settings: Settings, store: InMemoryReleaseStore) -> None:
        with client_for(settings, store, exit_code=20) as client:
            response = client.post("/cycles")
        assert response.status_code == 200
        assert response.json()["outcome"] == "SKIPPED"
        assert store.created == []

    def test_producer_failure_reports_exit_code(
        self, settings: Settings, store: InMemoryReleaseStore
    ) -> None:
        with client_for(settings, store, exit_code=3) as client:
            response = client.post("/cycles")
        assert response.status_code == 500
        assert response.json()["error"] == "producer_failure"
        assert response.json()["exit_code"] == 3

    def test_publication_failure_is_502(
        self, settings: Settings, store: InMemoryReleaseStore
    ) -> None:
        store.fail_on_create = True
        with client_for(settings, store) as client:
            response = client.post("/cycles")
        assert response.status_code == 502
        assert response.json()["error"] == "publication"


class TestErrorStatus:
    @pytest.mark.parametrize(
        "exc,status",
        [
            (ProducerFailure("x", exit_code=1), 500),
            (PackagingConsistencyError("x"), 500),
            (TransientInfrastructureError("x"), 502),
            (PublicationError("x"), 502),
            (RetentionError("x"), 502),
        ],
    )
    def test_mapping(self, exc, status: int) -> None:
        assert error_status(exc) == status


class TestCycleRunner:
    @pytest.mark.asyncio
    async def test_busy_while_cycle_runs(self, settings: Settings) -> None:
        producer = BlockingProducer()
        runner = CycleRunner(ReleaseCycleController(InMemoryReleaseStore(), producer, settings))

        task = asyncio.create_task(runner.run())
        await producer.started.wait()
        assert runner.busy

        producer.release.set()
        with pytest.raises(ProducerFailure):
            await task
        assert not runner.busy

    @pytest.mark.asyncio
    async def test_periodic_runs_survive_failures(self, settings: Settings) -> None:
        producer = ScriptedProducer(1, workdir=settings.workdir)
        runner = CycleRunner(ReleaseCycleController(InMemoryReleaseStore(), producer, settings))

        task = asyncio.create_task(runner.run_periodically(0.01))
        for _ in range(200):
            if len(producer.calls) >= 2:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(producer.calls) >= 2
        assert runner.last_report is None

    @pytest.mark.asyncio
    async def test_periodic_runs_survive_unexpected_errors(self, settings: Settings) -> None:
        class BrokenStore(InMemoryReleaseStore):
            async def list_releases(self) -> list[ReleaseRecord]:
                self.calls = getattr(self, "calls", 0) + 1
                raise KeyError("tag_name")

        store = BrokenStore()
        producer = ScriptedProducer(0, workdir=settings.workdir)
        runner = CycleRunner(ReleaseCycleController(store, producer, settings))

        task = asyncio.create_task(runner.run_periodically(0.01))
        for _ in range(200):
            if getattr(store, "calls", 0) >= 2:
                break
            await asyncio.sleep(0.01)
        assert not task.done()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert store.calls >= 2
        assert producer.calls == []
