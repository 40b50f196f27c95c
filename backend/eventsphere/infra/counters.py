"""Expiring counter stores backing per-identity upload quotas."""

from __future__ import annotations

import math
import time
from typing import Callable, Dict, Protocol, Tuple

from redis.exceptions import WatchError

from eventsphere.infra.redis import RedisProxy, redis_client


class CounterStore(Protocol):
	"""Shared counter store with atomic increments and key expiry."""

	async def get(self, key: str) -> int:
		...

	async def increment(self, key: str, *, ttl_seconds: int) -> int:
		"""Atomically increment ``key``; a key created by this call expires after ``ttl_seconds``."""
		...

	async def decrement(self, key: str) -> int:
		"""Decrement a live counter; a missing or expired key is left absent and reads as 0."""
		...

	async def set_with_expiry(self, key: str, value: int, ttl_seconds: int) -> None:
		...

	async def ttl(self, key: str) -> int:
		"""Seconds until expiry; -1 when the key has no expiry, -2 when missing."""
		...


class RedisCounterStore:
	"""Counter store on top of Redis string keys."""

	def __init__(self, redis: RedisProxy | None = None) -> None:
		self.redis = redis or redis_client

	async def get(self, key: str) -> int:
		value = await self.redis.get(key)
		return int(value) if value else 0

	async def increment(self, key: str, *, ttl_seconds: int) -> int:
		# SET NX seeds the window with its TTL; INCR never touches the expiry.
		async with self.redis.pipeline(transaction=True) as pipe:
			pipe.set(key, 0, ex=ttl_seconds, nx=True)
			pipe.incr(key)
			_, count = await pipe.execute()
		return int(count)

	async def decrement(self, key: str) -> int:
		# A window that expired in the meantime stays gone; DECR would recreate it without a TTL.
		async with self.redis.pipeline(transaction=True) as pipe:
			while True:
				try:
					await pipe.watch(key)
					if not await pipe.exists(key):
						return 0
					pipe.multi()
					pipe.decr(key)
					(count,) = await pipe.execute()
					return int(count)
				except WatchError:
					continue

	async def set_with_expiry(self, key: str, value: int, ttl_seconds: int) -> None:
		await self.redis.setex(key, ttl_seconds, int(value))

	async def ttl(self, key: str) -> int:
		return int(await self.redis.ttl(key))


class InMemoryCounterStore:
	"""Process-local counter store with an injectable clock, used in tests and local tooling."""

	def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
		self._clock = clock
		self._values: Dict[str, Tuple[int, float | None]] = {}

	def _live(self, key: str) -> Tuple[int, float | None] | None:
		entry = self._values.get(key)
		if entry is None:
			return None
		_, expires_at = entry
		if expires_at is not None and expires_at <= self._clock():
			del self._values[key]
			return None
		return entry

	async def get(self, key: str) -> int:
		entry = self._live(key)
		return entry[0] if entry else 0

	async def increment(self, key: str, *, ttl_seconds: int) -> int:
		entry = self._live(key)
		if entry is None:
			self._values[key] = (1, self._clock() + ttl_seconds)
			return 1
		value, expires_at = entry
		self._values[key] = (value + 1, expires_at)
		return value + 1

	async def decrement(self, key: str) -> int:
		entry = self._live(key)
		if entry is None:
			return 0
		value, expires_at = entry
		self._values[key] = (value - 1, expires_at)
		return value - 1

	async def set_with_expiry(self, key: str, value: int, ttl_seconds: int) -> None:
		self._values[key] = (int(value), self._clock() + ttl_seconds)

	async def ttl(self, key: str) -> int:
		entry = self._live(key)
		if entry is None:
			return -2
		_, expires_at = entry
		if expires_at is None:
			return -1
		return max(0, math.ceil(expires_at - self._clock()))


__all__ = ["CounterStore", "RedisCounterStore", "InMemoryCounterStore"]
