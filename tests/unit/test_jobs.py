"""
Unit tests for background jobs.

Tests cover:
- Scheduler job registration
- Health endpoints
- Task bodies under the distributed lock
- Lock timeouts against task time limits
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp.test_utils import TestClient, TestServer

from atlas.services.funds.ledger import LedgerReport
from atlas.services.matrix.engine import CycleRunReport
from atlas.utils.exceptions import CycleAborted
from jobs import health
from jobs.scheduler import create_scheduler
from jobs.tasks.process_cycles import _process_cycles_async, process_cycles
from jobs.tasks.reconcile_ledger import _reconcile_ledger_async, reconcile_ledger
from jobs.tasks.update_scores import _update_queue_scores_async, update_queue_scores


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.set = AsyncMock(return_value=True)
    client.eval = AsyncMock(return_value=1)
    return client


@pytest.fixture(autouse=True)
def reset_health_scheduler():
    yield
    health._scheduler = None


class TestScheduler:
    """Test periodic job registration."""

    def test_jobs_registered(self):
        scheduler = create_scheduler()

        ids = {job.id for job in scheduler.get_jobs()}

        assert ids == {"process_cycles", "update_queue_scores", "reconcile_ledger"}


class TestHealthEndpoints:
    """Test container health endpoints."""

    @pytest.mark.asyncio
    async def test_liveness(self):
        async with TestClient(TestServer(health.create_health_app())) as client:
            response = await client.get("/liveness")
            assert response.status == 200
            assert (await response.json())["alive"] is True

    @pytest.mark.asyncio
    async def test_not_ready_without_scheduler(self):
        async with TestClient(TestServer(health.create_health_app())) as client:
            assert (await client.get("/readiness")).status == 503
            assert (await client.get("/health")).status == 503

    @pytest.mark.asyncio
    async def test_healthy_with_running_scheduler(self):
        jobs = []
        for job_id in sorted(health.REQUIRED_JOBS):
            job = MagicMock(next_run_time=None)
            job.id = job_id
            job.name = job_id
            jobs.append(job)
        health.set_scheduler(MagicMock(running=True, get_jobs=MagicMock(return_value=jobs)))

        async with TestClient(TestServer(health.create_health_app())) as client:
            response = await client.get("/health")
            body = await response.json()

        assert response.status == 200
        assert body["status"] == "healthy"
        assert body["missing_jobs"] == []
        assert body["jobs"][0]["id"] == "process_cycles"

    @pytest.mark.asyncio
    async def test_degraded_when_job_missing(self):
        job = MagicMock(next_run_time=None)
        job.id = "process_cycles"
        job.name = "Process matrix cycles"
        health.set_scheduler(MagicMock(running=True, get_jobs=MagicMock(return_value=[job])))

        async with TestClient(TestServer(health.create_health_app())) as client:
            response = await client.get("/health")
            body = await response.json()
            ready = await client.get("/readiness")

        assert response.status == 503
        assert body["missing_jobs"] == ["reconcile_ledger", "update_queue_scores"]
        assert ready.status == 503


class TestProcessCyclesTask:
    """Test the cycle task body."""

    @pytest.mark.asyncio
    async def test_skipped_when_locked(self, redis_client):
        redis_client.set.return_value = None

        with patch(
            "jobs.async_runner.get_redis_client",
            AsyncMock(return_value=redis_client),
        ), patch("jobs.tasks.process_cycles.task_matrix_engine") as engine_factory:
            result = await _process_cycles_async(None)

        assert result is None
        engine_factory.assert_not_called()
        redis_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_report_summary(self, redis_client):
        report = CycleRunReport(errors={2: CycleAborted()}, capped=True)
        engine = MagicMock()
        engine.run_scheduled_cycles = AsyncMock(return_value=report)

        with patch(
            "jobs.async_runner.get_redis_client",
            AsyncMock(return_value=redis_client),
        ), patch("jobs.tasks.process_cycles.task_matrix_engine", return_value=engine):
            result = await _process_cycles_async(5)

        engine.run_scheduled_cycles.assert_awaited_once_with(5)
        assert result == {
            "processed": 0,
            "by_level": {},
            "errors": {2: "CYCLE_ABORTED"},
            "capped": True,
        }


class TestReconcileTask:
    """Test the reconciliation task body."""

    @pytest.mark.asyncio
    async def test_returns_issues(self, redis_client):
        report = LedgerReport(snapshot=MagicMock(), issues=["Matrix holdings differ"])
        engine = MagicMock()
        engine.reconcile = AsyncMock(return_value=report)

        with patch(
            "jobs.async_runner.get_redis_client",
            AsyncMock(return_value=redis_client),
        ), patch("jobs.tasks.reconcile_ledger.task_matrix_engine", return_value=engine):
            issues = await _reconcile_ledger_async()

        assert issues == ["Matrix holdings differ"]
        redis_client.aclose.assert_awaited_once()


class TestLockTimeouts:
    """Test that each task's lock outlives its time limit."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("module", "actor", "body", "args"),
        [
            ("process_cycles", process_cycles, _process_cycles_async, (None,)),
            ("update_scores", update_queue_scores, _update_queue_scores_async, ()),
            ("reconcile_ledger", reconcile_ledger, _reconcile_ledger_async, ()),
        ],
    )
    async def test_lock_outlasts_time_limit(self, module, actor, body, args):
        with patch(f"jobs.tasks.{module}.run_exclusive", AsyncMock()) as run_exclusive:
            await body(*args)

        lock_timeout = run_exclusive.await_args.args[1]
        assert lock_timeout * 1000 > actor.options["time_limit"]
