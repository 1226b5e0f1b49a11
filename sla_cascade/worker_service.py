"""HTTP service entrypoint for the background worker (health checks + job loop)."""

from __future__ import annotations

import asyncio
import contextlib
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sla_cascade.core.config import settings
from sla_cascade.worker import jobs_status, worker_loop

_worker_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


async def start_worker() -> None:
    global _worker_task, _stop_event
    _stop_event = asyncio.Event()
    _worker_task = asyncio.create_task(worker_loop(_stop_event))


async def stop_worker() -> None:
    global _worker_task
    if _stop_event is not None:
        _stop_event.set()
    if _worker_task:
        _worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _worker_task
        _worker_task = None


@asynccontextmanager
async def lifespan(_app: FastAPI):
    await start_worker()
    try:
        yield
    finally:
        await stop_worker()


app = FastAPI(title="sla-cascade-worker", version=settings.VERSION, lifespan=lifespan)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/health/jobs")
def health_jobs() -> dict:
    worker_running = _worker_task is not None and not _worker_task.done()
    return {"worker_running": worker_running, "jobs": jobs_status()}


def main() -> None:
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    host = os.getenv("HOST", "0.0.0.0")
    uvicorn.run("sla_cascade.worker_service:app", host=host, port=port)


if __name__ == "__main__":
    main()
