"""Per-identity daily upload quotas."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Mapping

from eventsphere.infra.counters import CounterStore, RedisCounterStore
from eventsphere.obs import metrics
from eventsphere.settings import settings
from eventsphere.uploads.constants import UPLOAD_LIMIT_KEY_PREFIX

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaDecision:
	allowed: bool
	limit: int
	used: int
	remaining: int
	resets_in: int


class UploadQuotaTracker:
	"""Counts upload attempts per identity over a rolling window.

	The window opens on the first counted attempt and lasts ``window_seconds``;
	the counter expires with it. Counter-store failures never block uploads.
	"""

	def __init__(
		self,
		store: CounterStore | None = None,
		*,
		limits: Mapping[str, int] | None = None,
		window_seconds: int | None = None,
		limit_for: Callable[[str | None], int] | None = None,
	) -> None:
		self.store = store or RedisCounterStore()
		self.window_seconds = window_seconds or settings.upload_limit_window_seconds
		self._limits = {key.upper(): value for key, value in limits.items()} if limits is not None else None
		self._limit_for = limit_for or settings.upload_limit_for

	def limit_for(self, role: str | None) -> int:
		if self._limits is None:
			return self._limit_for(role)
		if role and role.upper() in self._limits:
			return self._limits[role.upper()]
		# Unknown roles get the lowest tier.
		return min(self._limits.values()) if self._limits else 0

	@staticmethod
	def key_for(identity: str) -> str:
		return f"{UPLOAD_LIMIT_KEY_PREFIX}{identity}"

	async def check_and_increment(self, identity: str, role: str | None) -> QuotaDecision:
		limit = self.limit_for(role)
		key = self.key_for(identity)
		try:
			count = await self.store.get(key)
			logger.info("User %s (%s) upload count: %s/%s", identity, role, count, limit)
			if count >= limit:
				return QuotaDecision(False, limit, count, 0, await self._resets_in(key))
			new_count = await self.store.increment(key, ttl_seconds=self.window_seconds)
			if new_count > limit:
				# A concurrent attempt took the last slot between the read and the increment.
				await self.store.decrement(key)
				return QuotaDecision(False, limit, limit, 0, await self._resets_in(key))
			resets_in = await self._resets_in(key)
		except Exception:
			logger.exception("upload_quota.store_unavailable", extra={"identity": identity})
			metrics.QUOTA_FAIL_OPEN_TOTAL.inc()
			return QuotaDecision(True, limit, 0, limit, self.window_seconds)
		logger.info("Upload allowed for user %s. New count: %s/%s", identity, new_count, limit)
		return QuotaDecision(True, limit, new_count, max(0, limit - new_count), resets_in)

	async def stats(self, identity: str, role: str | None) -> QuotaDecision:
		"""Return the identity's current usage without counting an attempt."""
		limit = self.limit_for(role)
		key = self.key_for(identity)
		try:
			used = await self.store.get(key)
			resets_in = await self._resets_in(key)
		except Exception:
			logger.exception("upload_quota.stats_failed", extra={"identity": identity})
			return QuotaDecision(True, limit, 0, limit, self.window_seconds)
		remaining = max(0, limit - used)
		return QuotaDecision(remaining > 0, limit, used, remaining, resets_in)

	async def _resets_in(self, key: str) -> int:
		ttl = await self.store.ttl(key)
		return ttl if ttl > 0 else self.window_seconds


__all__ = ["QuotaDecision", "UploadQuotaTracker"]
