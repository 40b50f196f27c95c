"""APScheduler wrapper for periodic background jobs."""

from __future__ import annotations

from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger


class JobScheduler:
	def __init__(self) -> None:
		self._scheduler = AsyncIOScheduler(timezone="UTC")
		self._started = False

	@property
	def running(self) -> bool:
		return self._started

	def start(self) -> None:
		if not self._started:
			self._scheduler.start()
			self._started = True

	def shutdown(self) -> None:
		if self._started:
			self._scheduler.shutdown(wait=False)
			self._started = False

	def schedule_daily(self, job_id: str, func: Callable[[], object], *, hour: int = 0, minute: int = 0) -> None:
		trigger = CronTrigger(hour=hour, minute=minute, timezone="UTC")
		self._scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True, coalesce=True, max_instances=1)

	def job_ids(self) -> list[str]:
		return [job.id for job in self._scheduler.get_jobs()]


__all__ = ["JobScheduler"]
