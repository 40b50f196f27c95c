"""Liveness and readiness probes.

Readiness fails (503) when Redis does not answer in time or the virus scanner
is ``unavailable``. A disabled scanner is reported but does not fail the probe.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Tuple

from eventsphere.infra.redis import redis_client
from eventsphere.jobs.queue import JobQueue
from eventsphere.obs import metrics
from eventsphere.uploads.scanner import ScannerState, VirusScanner

_LOG = logging.getLogger(__name__)

REDIS_PROBE_TIMEOUT = 0.5


async def _check_redis(queue: Optional[JobQueue], timeout: float) -> Dict[str, Any]:
	started = time.perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
		elapsed = time.perf_counter() - started
		check: Dict[str, Any] = {"ok": True, "latency_ms": round(elapsed * 1000, 2)}
		if queue is not None:
			check["queue"] = {"name": queue.name, **await asyncio.wait_for(queue.depth(), timeout=timeout)}
	except Exception as exc:
		metrics.mark_redis(False)
		_LOG.warning("health.redis_unreachable", exc_info=True)
		return {"ok": False, "error": f"{exc.__class__.__name__}: {exc}"}
	metrics.mark_redis(True, latency_seconds=elapsed)
	return check


def _check_scanner(scanner: Optional[VirusScanner]) -> Dict[str, Any]:
	if scanner is None:
		return {"ok": True, "state": ScannerState.DISABLED.value}
	return {**scanner.status(), "ok": scanner.state is not ScannerState.UNAVAILABLE}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness(
	scanner: Optional[VirusScanner] = None,
	queue: Optional[JobQueue] = None,
	*,
	timeout: float = REDIS_PROBE_TIMEOUT,
) -> Tuple[int, Dict[str, Any]]:
	checks = {
		"redis": await _check_redis(queue, timeout),
		"virus_scanner": _check_scanner(scanner),
	}
	ready = all(check["ok"] for check in checks.values())
	return (200 if ready else 503), {"status": "ready" if ready else "degraded", "checks": checks}


__all__ = ["liveness", "readiness"]
