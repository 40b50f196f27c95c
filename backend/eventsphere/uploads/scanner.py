"""Virus scanning through a clamd daemon.

``VirusScanner`` owns the scanner state for the process. It is constructed once
at startup with its daemon client injected and moves through::

    uninitialized -> disabled | ready | unavailable

Outside production the scanner soft-fails (disabled on init failure, clean on
per-scan failure) so local development is not blocked. In production it fails
closed: initialization failure aborts startup and a failed scan rejects the
upload.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import struct
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from eventsphere.obs import metrics
from eventsphere.settings import settings
from eventsphere.uploads.exceptions import ScannerUnavailableError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class ScannerState(str, enum.Enum):
	UNINITIALIZED = "uninitialized"
	DISABLED = "disabled"
	READY = "ready"
	UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class ScanResult:
	infected: bool
	signatures: tuple[str, ...] = field(default_factory=tuple)


CLEAN = ScanResult(infected=False)


class ScanDaemonError(Exception):
	"""Raised when the scan daemon answers with an error or cannot be reached."""


class ScanDaemon(Protocol):
	async def ping(self) -> None:
		...

	async def scan(self, payload: bytes) -> ScanResult:
		...


class ClamdClient:
	"""Minimal asyncio client for clamd's ``PING`` and ``INSTREAM`` commands.

	Each call opens its own connection so scans never share protocol state;
	``max_concurrency`` caps how many connections are open at once.
	"""

	def __init__(
		self,
		host: str | None = None,
		port: int | None = None,
		*,
		timeout: float | None = None,
		max_concurrency: int | None = None,
	) -> None:
		self.host = host or settings.clamav_host
		self.port = port or settings.clamav_port
		self.timeout = timeout if timeout is not None else settings.clamav_timeout_seconds
		self._slots = asyncio.Semaphore(max_concurrency or settings.clamav_max_concurrency)

	async def ping(self) -> None:
		reply = await self._command(b"zPING\0")
		if reply != "PONG":
			raise ScanDaemonError(f"unexpected PING reply: {reply!r}")

	async def scan(self, payload: bytes) -> ScanResult:
		chunks = [b"zINSTREAM\0"]
		for start in range(0, len(payload), _CHUNK_SIZE):
			chunk = payload[start:start + _CHUNK_SIZE]
			chunks.append(struct.pack("!L", len(chunk)) + chunk)
		chunks.append(struct.pack("!L", 0))
		reply = await self._command(b"".join(chunks))
		return parse_instream_reply(reply)

	async def _command(self, request: bytes) -> str:
		async with self._slots:
			try:
				return await asyncio.wait_for(self._roundtrip(request), timeout=self.timeout)
			except asyncio.TimeoutError as exc:
				raise ScanDaemonError(f"clamd did not answer within {self.timeout}s") from exc
			except OSError as exc:
				raise ScanDaemonError(f"clamd connection failed: {exc}") from exc

	async def _roundtrip(self, request: bytes) -> str:
		reader, writer = await asyncio.open_connection(self.host, self.port)
		try:
			writer.write(request)
			await writer.drain()
			raw = await reader.readuntil(b"\0")
		except asyncio.IncompleteReadError as exc:
			raise ScanDaemonError("clamd closed the connection mid-reply") from exc
		finally:
			writer.close()
			try:
				await writer.wait_closed()
			except OSError:
				pass
		return raw.rstrip(b"\0").decode("utf-8", errors="replace").strip()


def parse_instream_reply(reply: str) -> ScanResult:
	"""Parse ``stream: OK`` / ``stream: <name> FOUND`` / ``... ERROR`` replies."""
	_, _, verdict = reply.partition(": ")
	verdict = verdict or reply
	if verdict == "OK":
		return CLEAN
	if verdict.endswith(" FOUND"):
		return ScanResult(infected=True, signatures=(verdict[: -len(" FOUND")],))
	raise ScanDaemonError(f"clamd error: {reply}")


class VirusScanner:
	"""Process-wide scanner with explicit state and environment-aware failure policy."""

	def __init__(
		self,
		daemon: ScanDaemon | None = None,
		*,
		enabled: bool | None = None,
		fail_closed: bool | None = None,
		timeout: float | None = None,
	) -> None:
		self.daemon = daemon
		self.enabled = settings.clamav_enabled if enabled is None else enabled
		self.fail_closed = settings.is_prod() if fail_closed is None else fail_closed
		self.timeout = timeout if timeout is not None else settings.clamav_timeout_seconds
		self._state = ScannerState.UNINITIALIZED
		self._init_lock = asyncio.Lock()

	@property
	def state(self) -> ScannerState:
		return self._state

	def status(self) -> dict[str, object]:
		return {
			"state": self._state.value,
			"initialized": self._state is not ScannerState.UNINITIALIZED,
			"enabled": self.enabled and self._state is not ScannerState.DISABLED,
			"available": self._state is ScannerState.READY,
		}

	async def initialize(self) -> ScannerState:
		"""Connect to the daemon once; raises ScannerUnavailableError when failing closed."""
		async with self._init_lock:
			if self._state is not ScannerState.UNINITIALIZED:
				return self._state
			if not self.enabled or self.daemon is None:
				logger.warning("ClamAV virus scanning is disabled")
				self._state = ScannerState.DISABLED
				return self._state
			try:
				await asyncio.wait_for(self.daemon.ping(), timeout=self.timeout)
			except (ScanDaemonError, asyncio.TimeoutError, OSError) as exc:
				logger.error("Failed to initialize ClamAV scanner: %s", exc)
				if self.fail_closed:
					self._state = ScannerState.UNAVAILABLE
					raise ScannerUnavailableError("ClamAV scanner initialization failed in production") from exc
				logger.warning("ClamAV not available - virus scanning disabled outside production")
				self._state = ScannerState.DISABLED
				return self._state
			self._state = ScannerState.READY
			logger.info("ClamAV scanner initialized successfully")
			return self._state

	async def scan(self, payload: bytes, filename: str) -> ScanResult:
		if self._state is ScannerState.UNINITIALIZED:
			await self.initialize()
		if self._state is ScannerState.DISABLED:
			logger.warning("Virus scan skipped for %s - scanner disabled", filename)
			metrics.VIRUS_SCANS_TOTAL.labels(result="skipped").inc()
			return CLEAN
		if self._state is ScannerState.UNAVAILABLE or self.daemon is None:
			metrics.VIRUS_SCANS_TOTAL.labels(result="unavailable").inc()
			return self._degraded(filename, "Virus scanner unavailable")

		logger.info("Scanning file: %s (%d bytes)", filename, len(payload))
		started = time.perf_counter()
		try:
			result = await asyncio.wait_for(self.daemon.scan(payload), timeout=self.timeout)
		except (ScanDaemonError, asyncio.TimeoutError, OSError) as exc:
			logger.error("Error scanning file %s: %s", filename, exc)
			metrics.VIRUS_SCANS_TOTAL.labels(result="error").inc()
			return self._degraded(filename, "Virus scan failed")
		finally:
			metrics.VIRUS_SCAN_LATENCY_SECONDS.observe(time.perf_counter() - started)

		if result.infected:
			logger.warning("Virus detected in %s", filename, extra={"signatures": list(result.signatures)})
			metrics.VIRUS_SCANS_TOTAL.labels(result="infected").inc()
		else:
			logger.info("File %s is clean", filename)
			metrics.VIRUS_SCANS_TOTAL.labels(result="clean").inc()
		return result

	def _degraded(self, filename: str, reason: str) -> ScanResult:
		if self.fail_closed:
			raise ScannerUnavailableError(reason)
		logger.warning("%s - allowing %s outside production", reason, filename)
		return CLEAN


def build_scanner(*, factory: Callable[[], ScanDaemon] | None = None) -> VirusScanner:
	"""Create the process scanner from settings."""
	daemon = (factory or ClamdClient)() if settings.clamav_enabled else None
	return VirusScanner(daemon)


__all__ = [
	"ClamdClient",
	"ScanDaemon",
	"ScanDaemonError",
	"ScanResult",
	"ScannerState",
	"VirusScanner",
	"build_scanner",
	"parse_instream_reply",
]
