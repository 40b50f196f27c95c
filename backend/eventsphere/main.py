"""FastAPI application exposing the upload gate and running the job workers."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from eventsphere import container, obs
from eventsphere.api import ops
from eventsphere.api.errors import install_error_handlers
from eventsphere.jobs.scheduler import JobScheduler
from eventsphere.jobs.worker import JobWorker, spawn_workers
from eventsphere.settings import settings
from eventsphere.uploads import api as uploads_api

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	# Raises ScannerUnavailableError in production when clamd is unreachable.
	scanner = container.get_scanner()
	await scanner.initialize()
	app.state.virus_scanner = scanner

	worker_tasks: list[asyncio.Task] = []
	workers: list[JobWorker] = []
	scheduler: JobScheduler | None = None
	if settings.job_workers_enabled:
		queue = container.get_job_queue()
		workers, worker_tasks = spawn_workers(queue, container.build_handler_registry())
		logger.info("job_workers.started", extra={"count": len(workers), "queue": queue.name})
	if settings.recurring_job_enabled:
		scheduler = JobScheduler()
		scheduler.start()
		scheduler.schedule_daily("recurring-events", container.build_recurring_generator().run_once)
		app.state.job_scheduler = scheduler
	app.state.job_workers = workers
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		for worker in workers:
			worker.stop()
		for task in worker_tasks:
			task.cancel()
		if worker_tasks:
			await asyncio.gather(*worker_tasks, return_exceptions=True)


app = FastAPI(title="EventSphere Upload & Notification API", lifespan=lifespan)
install_error_handlers(app)
obs.init(app)
app.include_router(ops.router)
app.include_router(uploads_api.router)


__all__ = ["app", "lifespan"]
