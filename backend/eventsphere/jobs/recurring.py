"""Daily sweep that materialises the next occurrence of recurring events."""

from __future__ import annotations

import calendar
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from eventsphere.domain.events import EventRecord, EventStore, RecurringRule, UserDirectory
from eventsphere.jobs.producers import NotificationProducer
from eventsphere.obs import metrics

_LOG = logging.getLogger(__name__)

_JOB_NAME = "recurring-events"


def add_months(value: datetime, months: int) -> datetime:
	"""Shift by calendar months, clamping the day to the target month's length."""
	index = value.month - 1 + months
	year, month = value.year + index // 12, index % 12 + 1
	day = min(value.day, calendar.monthrange(year, month)[1])
	return value.replace(year=year, month=month, day=day)


def shift(start: datetime, rule: RecurringRule, periods: int = 1) -> Optional[datetime]:
	if rule is RecurringRule.WEEKLY:
		return start + timedelta(days=7 * periods)
	if rule is RecurringRule.MONTHLY:
		return add_months(start, periods)
	return None


def next_occurrence(parent: EventRecord, now: datetime) -> Optional[datetime]:
	"""First ``start + k * period`` (k >= 1) that is later than ``now``."""
	candidate = shift(parent.start_at, parent.recurring_rule)
	periods = 1
	while candidate is not None and candidate <= now:
		periods += 1
		candidate = shift(parent.start_at, parent.recurring_rule, periods)
	return candidate


@dataclass(frozen=True)
class SweepSummary:
	scanned: int
	created: int
	skipped: int
	notify_failed: int


class RecurringInstanceGenerator:
	def __init__(
		self,
		*,
		events: EventStore,
		users: UserDirectory,
		producer: NotificationProducer,
		clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
	) -> None:
		self.events = events
		self.users = users
		self.producer = producer
		self.clock = clock

	async def run_once(self) -> SweepSummary:
		_LOG.info("Running recurring events job")
		started = time.perf_counter()
		try:
			summary = await self._sweep()
		except Exception:
			metrics.record_background_run(_JOB_NAME, result="error")
			_LOG.exception("Error in recurring events job")
			raise
		metrics.record_background_run(_JOB_NAME, result="ok", duration_seconds=time.perf_counter() - started)
		_LOG.info(
			"recurring_events.completed",
			extra={"scanned": summary.scanned, "created_count": summary.created, "skipped": summary.skipped},
		)
		return summary

	async def _sweep(self) -> SweepSummary:
		now = self.clock()
		parents = await self.events.list_recurring()
		created = skipped = notify_failed = 0
		for parent in parents:
			start = next_occurrence(parent, now)
			if start is None:
				continue
			if await self.events.find_instance(parent.organizer_id, parent.title, start) is not None:
				skipped += 1
				continue
			instance = await self.events.create(parent.derive(start))
			created += 1
			_LOG.info("Created recurring event for %s at %s", parent.title, start.isoformat())
			if not await self._notify_organizer(parent, instance):
				notify_failed += 1
		return SweepSummary(scanned=len(parents), created=created, skipped=skipped, notify_failed=notify_failed)

	async def _notify_organizer(self, parent: EventRecord, instance: EventRecord) -> bool:
		try:
			organizer = await self.users.get(parent.organizer_id)
			if organizer is None:
				_LOG.info("recurring_events.organizer_missing", extra={"organizer_id": parent.organizer_id})
				return True
			await self.producer.recurring_created(
				organizer.email,
				organizer.name,
				parent.title,
				instance.start_at.strftime("%a %b %d %Y"),
			)
		except Exception:
			# The instance stays; the notification is best-effort.
			_LOG.exception("Failed to queue recurring event email", extra={"event_id": instance.id})
			return False
		return True


__all__ = ["RecurringInstanceGenerator", "SweepSummary", "add_months", "next_occurrence"]
