"""Redis Streams job queue with a consumer group and delayed retries.

Layout for a queue named ``q``::

    jobs:q              stream of pending items (consumer group ``q-workers``)
    jobs:delayed:q      sorted set of items waiting for a retry, scored by due time
    jobs:failed:<type>  list of the most recent failed items per job type

Delivery is at-least-once: an entry stays pending in the group until a worker
acknowledges it.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional

import ulid
from redis.exceptions import ResponseError, WatchError

from eventsphere.infra.redis import RedisProxy, redis_client
from eventsphere.jobs.types import JobItem, JobOptions, JobType, options_for
from eventsphere.obs import metrics
from eventsphere.settings import settings

_LOG = logging.getLogger(__name__)

_STREAM_MAXLEN = 100_000


@dataclass(frozen=True)
class Delivery:
	"""One stream entry handed to a consumer."""

	entry_id: str
	fields: Mapping[str, str]


class JobQueue:
	def __init__(
		self,
		name: Optional[str] = None,
		*,
		redis: RedisProxy | None = None,
		clock: Callable[[], float] = time.time,
	) -> None:
		self.name = name or settings.job_queue_name
		self.redis = redis or redis_client
		self.clock = clock
		self.stream = f"jobs:{self.name}"
		self.delayed_key = f"jobs:delayed:{self.name}"
		self.group = f"{self.name}-workers"

	@staticmethod
	def failed_key(job_type: str) -> str:
		return f"jobs:failed:{job_type}"

	async def ensure_group(self) -> None:
		try:
			await self.redis.xgroup_create(self.stream, self.group, id="0", mkstream=True)
		except ResponseError as exc:
			if "BUSYGROUP" not in str(exc):
				raise

	async def enqueue(
		self,
		job_type: JobType | str,
		payload: Mapping[str, Any],
		options: JobOptions | None = None,
	) -> str:
		type_value = job_type.value if isinstance(job_type, JobType) else str(job_type)
		item = JobItem(
			id=ulid.new().str,
			type=type_value,
			payload=dict(payload),
			enqueued_at=self.clock(),
			options=options or options_for(type_value),
		)
		await self._append(item)
		metrics.JOBS_ENQUEUED_TOTAL.labels(type=type_value).inc()
		_LOG.debug("job_queue.enqueued", extra={"job_id": item.id, "job_type": type_value})
		return item.id

	async def _append(self, item: JobItem) -> str:
		return await self.redis.xadd(self.stream, item.to_fields(), maxlen=_STREAM_MAXLEN, approximate=True)

	async def read(
		self,
		consumer: str,
		*,
		count: int = 10,
		block_ms: Optional[int] = None,
		pending: bool = False,
	) -> List[Delivery]:
		"""Read new entries for ``consumer``; ``pending`` re-reads its unacknowledged ones."""
		response = await self.redis.xreadgroup(
			self.group,
			consumer,
			{self.stream: "0" if pending else ">"},
			count=count,
			block=block_ms,
		)
		deliveries: List[Delivery] = []
		for _stream, entries in response or []:
			for entry_id, fields in entries:
				# Pending re-reads report entries deleted since delivery with empty fields.
				deliveries.append(Delivery(entry_id=entry_id, fields=dict(fields or {})))
		return deliveries

	async def ack(self, entry_id: str, *, delete: bool = False) -> None:
		async with self.redis.pipeline(transaction=True) as pipe:
			pipe.xack(self.stream, self.group, entry_id)
			if delete:
				pipe.xdel(self.stream, entry_id)
			await pipe.execute()

	async def schedule_retry(self, item: JobItem, delay_seconds: float) -> None:
		await self.redis.zadd(self.delayed_key, {item.to_json(): self.clock() + delay_seconds})

	async def promote_due(self) -> int:
		"""Move retries whose delay has elapsed back onto the stream."""
		due = await self.redis.zrangebyscore(self.delayed_key, "-inf", self.clock())
		promoted = 0
		for raw in due:
			try:
				item = JobItem.from_json(raw)
			except ValueError:
				_LOG.warning("job_queue.malformed_delayed_item", extra={"queue": self.name})
				await self.redis.zrem(self.delayed_key, raw)
				continue
			if await self._promote(raw, item):
				promoted += 1
		return promoted

	async def _promote(self, raw: str, item: JobItem) -> bool:
		# ZREM and XADD commit together, and only while the member is still ours.
		async with self.redis.pipeline(transaction=True) as pipe:
			try:
				await pipe.watch(self.delayed_key)
				if await pipe.zscore(self.delayed_key, raw) is None:
					return False
				pipe.multi()
				pipe.zrem(self.delayed_key, raw)
				pipe.xadd(self.stream, item.to_fields(), maxlen=_STREAM_MAXLEN, approximate=True)
				await pipe.execute()
			except WatchError:
				# Another poller touched the set; anything still due is picked up next round.
				return False
		return True

	async def record_failure(self, item: JobItem, error: str) -> None:
		if item.options.keep_failed <= 0:
			return
		key = self.failed_key(item.type)
		record = json.dumps({**item.to_fields(), "error": error, "failed_at": self.clock()})
		async with self.redis.pipeline(transaction=True) as pipe:
			pipe.lpush(key, record)
			pipe.ltrim(key, 0, item.options.keep_failed - 1)
			await pipe.execute()

	async def failed(self, job_type: JobType | str, limit: int = 100) -> List[dict[str, Any]]:
		type_value = job_type.value if isinstance(job_type, JobType) else str(job_type)
		rows = await self.redis.lrange(self.failed_key(type_value), 0, max(0, limit - 1))
		return [json.loads(row) for row in rows]

	async def depth(self) -> dict[str, int]:
		return {
			"stream": int(await self.redis.xlen(self.stream)),
			"delayed": int(await self.redis.zcard(self.delayed_key)),
		}


__all__ = ["Delivery", "JobQueue"]
