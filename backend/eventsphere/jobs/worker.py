"""Consumer-group worker that dispatches queued jobs to registered handlers."""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from pydantic import ValidationError

from eventsphere.jobs.queue import Delivery, JobQueue
from eventsphere.jobs.types import (
	PAYLOAD_MODELS,
	JobItem,
	JobPayload,
	JobType,
	PermanentJobError,
	RegistryError,
	UnknownJobType,
)
from eventsphere.obs import logging as obs_logging
from eventsphere.obs import metrics
from eventsphere.settings import settings

_LOG = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True)
class Registration:
	model: type[JobPayload]
	handler: Handler


class HandlerRegistry:
	"""Maps each job type to its payload model and handler."""

	def __init__(self) -> None:
		self._entries: dict[str, Registration] = {}

	@classmethod
	def from_bindings(cls, bindings: Mapping[JobType, Handler]) -> "HandlerRegistry":
		registry = cls()
		for job_type, handler in bindings.items():
			registry.register(job_type, handler)
		return registry

	def register(self, job_type: JobType, handler: Handler, model: type[JobPayload] | None = None) -> None:
		self._entries[job_type.value] = Registration(model=model or PAYLOAD_MODELS[job_type], handler=handler)

	def resolve(self, job_type: str) -> Registration:
		try:
			return self._entries[job_type]
		except KeyError:
			raise UnknownJobType(job_type) from None

	def validate(self, required: Iterable[JobType] = tuple(JobType)) -> None:
		"""Fail fast at startup when a catalogued job type has no handler."""
		missing = sorted(job_type.value for job_type in required if job_type.value not in self._entries)
		if missing:
			raise RegistryError(f"no handler registered for: {', '.join(missing)}")

	def __contains__(self, job_type: object) -> bool:
		value = job_type.value if isinstance(job_type, JobType) else job_type
		return value in self._entries


def default_consumer_name(index: int = 0) -> str:
	# Stable across restarts so a consumer can re-read its own unacknowledged entries.
	return f"{socket.gethostname()}-{index}"


class JobWorker:
	"""Reads jobs from the queue's consumer group and runs their handlers.

	Handler failures never escape ``process_once``: each job is acknowledged
	after it completes, is scheduled for a retry, or lands in the failed list.
	"""

	def __init__(
		self,
		*,
		queue: JobQueue,
		registry: HandlerRegistry,
		consumer_name: Optional[str] = None,
		batch_size: int = 10,
		poll_interval: Optional[float] = None,
		block_ms: Optional[int] = 1000,
		job_timeout: Optional[float] = None,
	) -> None:
		self.queue = queue
		self.registry = registry
		self.consumer_name = consumer_name or default_consumer_name()
		self.batch_size = batch_size
		self.poll_interval = poll_interval if poll_interval is not None else settings.job_poll_interval_seconds
		self.block_ms = block_ms
		self.job_timeout = job_timeout if job_timeout is not None else settings.job_timeout_seconds
		self._running = False
		self._group_ready = False
		self._recovering = True

	async def run_forever(self) -> None:
		self._running = True
		_LOG.info("job_worker.started", extra={"consumer": self.consumer_name, "queue": self.queue.name})
		while self._running:
			try:
				processed = await self.process_once()
			except Exception:
				_LOG.exception("job_worker.poll_failed", extra={"consumer": self.consumer_name})
				processed = 0
			if processed == 0:
				await asyncio.sleep(self.poll_interval)

	def stop(self) -> None:
		self._running = False

	async def process_once(self) -> int:
		if not self._group_ready:
			await self.queue.ensure_group()
			self._group_ready = True
		await self.queue.promote_due()
		deliveries: list[Delivery] = []
		if self._recovering:
			deliveries = await self.queue.read(self.consumer_name, count=self.batch_size, pending=True)
			if not deliveries:
				self._recovering = False
		if not deliveries:
			deliveries = await self.queue.read(self.consumer_name, count=self.batch_size, block_ms=self.block_ms)
		for delivery in deliveries:
			await self._handle(delivery)
		return len(deliveries)

	async def _handle(self, delivery: Delivery) -> None:
		if not delivery.fields:
			await self.queue.ack(delivery.entry_id, delete=True)
			return
		try:
			item = JobItem.from_fields(delivery.fields)
		except ValueError:
			_LOG.warning("job_worker.malformed_entry", extra={"entry_id": delivery.entry_id})
			metrics.record_job("unknown", "malformed")
			await self.queue.ack(delivery.entry_id, delete=True)
			return

		token = obs_logging.bind_context(job_id=item.id, job_type=item.type)
		try:
			await self._dispatch(delivery, item)
		finally:
			obs_logging.reset_context(token)

	async def _dispatch(self, delivery: Delivery, item: JobItem) -> None:
		try:
			registration = self.registry.resolve(item.type)
		except UnknownJobType:
			_LOG.warning("Unknown job type %s; dropping job %s", item.type, item.id)
			metrics.record_job(item.type, "unknown")
			await self.queue.ack(delivery.entry_id, delete=True)
			return

		try:
			payload = registration.model.model_validate(item.payload)
		except ValidationError as exc:
			await self._fail(item.next_attempt(), delivery, exc, retry=False)
			return

		attempt = item.next_attempt()
		started = time.perf_counter()
		try:
			result = await asyncio.wait_for(registration.handler(payload), timeout=self.job_timeout)
		except PermanentJobError as exc:
			await self._fail(attempt, delivery, exc, retry=False)
			return
		except Exception as exc:
			await self._fail(attempt, delivery, exc, retry=True)
			return
		duration = time.perf_counter() - started
		await self.queue.ack(delivery.entry_id, delete=attempt.options.remove_on_complete)
		metrics.record_job(item.type, "completed", duration_seconds=duration)
		_LOG.info(
			"Notification job %s completed",
			item.id,
			extra={"job_type": item.type, "attempt": attempt.attempts, "result": repr(result) if result else None},
		)

	async def _fail(self, item: JobItem, delivery: Delivery, exc: BaseException, *, retry: bool) -> None:
		error = f"{exc.__class__.__name__}: {exc}"
		if retry and item.attempts < item.options.attempts:
			delay = item.options.backoff_for(item.attempts)
			_LOG.warning(
				"job_worker.retry_scheduled",
				extra={"job_id": item.id, "job_type": item.type, "attempt": item.attempts, "delay": delay, "error": error},
			)
			await self.queue.schedule_retry(item, delay)
			outcome = "retried"
		else:
			_LOG.error(
				"job_worker.job_failed",
				exc_info=(type(exc), exc, exc.__traceback__),
				extra={"job_id": item.id, "job_type": item.type, "attempt": item.attempts},
			)
			await self.queue.record_failure(item, error)
			outcome = "failed"
		await self.queue.ack(delivery.entry_id, delete=True)
		metrics.record_job(item.type, outcome)


def spawn_workers(
	queue: JobQueue,
	registry: HandlerRegistry,
	*,
	concurrency: Optional[int] = None,
) -> tuple[list[JobWorker], list[asyncio.Task]]:
	"""Start ``concurrency`` consumers sharing one consumer group."""
	registry.validate()
	workers = [
		JobWorker(queue=queue, registry=registry, consumer_name=default_consumer_name(index))
		for index in range(max(1, concurrency or settings.job_worker_concurrency))
	]
	tasks = [
		asyncio.create_task(worker.run_forever(), name=f"jobs-{queue.name}-{index}")
		for index, worker in enumerate(workers)
	]
	return workers, tasks


__all__ = ["HandlerRegistry", "JobWorker", "Registration", "default_consumer_name", "spawn_workers"]
