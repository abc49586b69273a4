"""
Scheduler health endpoints.

``/liveness`` answers while the process runs. ``/readiness`` and
``/health`` also require the scheduler to be running with every matrix
job registered.
"""

import asyncio

from aiohttp import web
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

REQUIRED_JOBS = frozenset({"process_cycles", "update_queue_scores", "reconcile_ledger"})

_scheduler: AsyncIOScheduler | None = None


def set_scheduler(scheduler: AsyncIOScheduler) -> None:
    global _scheduler
    _scheduler = scheduler


def _job_view(job: Job) -> dict:
    return {
        "id": job.id,
        "name": job.name,
        "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
    }


def _missing_jobs() -> list[str]:
    registered = {job.id for job in _scheduler.get_jobs()}
    return sorted(REQUIRED_JOBS - registered)


async def health_handler(request: web.Request) -> web.Response:
    if _scheduler is None:
        return web.json_response(
            {"status": "unhealthy", "error": "Scheduler not initialized"}, status=503
        )
    missing = _missing_jobs()
    healthy = _scheduler.running and not missing
    return web.json_response(
        {
            "status": "healthy" if healthy else "degraded",
            "scheduler_running": _scheduler.running,
            "missing_jobs": missing,
            "jobs": [_job_view(job) for job in _scheduler.get_jobs()],
        },
        status=200 if healthy else 503,
    )


async def readiness_handler(request: web.Request) -> web.Response:
    ready = _scheduler is not None and _scheduler.running and not _missing_jobs()
    return web.json_response({"ready": ready}, status=200 if ready else 503)


async def liveness_handler(request: web.Request) -> web.Response:
    return web.json_response({"alive": True})


def create_health_app() -> web.Application:
    app = web.Application()
    app.add_routes(
        [
            web.get("/health", health_handler),
            web.get("/readiness", readiness_handler),
            web.get("/liveness", liveness_handler),
        ]
    )
    return app


async def start_health_server(host: str, port: int) -> web.AppRunner:
    """Serve the health app in the background; returns the runner to stop it."""
    runner = web.AppRunner(create_health_app())
    await runner.setup()
    await web.TCPSite(runner, host, port).start()
    logger.info(f"Health endpoints on http://{host}:{port}")
    return runner


async def stop_health_server(runner: web.AppRunner, timeout: int = 5) -> None:
    try:
        await asyncio.wait_for(runner.cleanup(), timeout=timeout)
    except TimeoutError:
        logger.warning(f"Health server cleanup timed out after {timeout}s")
