"""Ordered, fail-fast security gate for uploaded files.

Stages run strictly in this order and stop at the first failure::

    mime/extension -> signature -> quota -> virus scan -> image integrity

Only the quota stage mutates shared state. The quota slot is spent on the
attempt: a file rejected by a later stage keeps its increment.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from eventsphere.infra.auth import AuthenticatedUser
from eventsphere.obs import metrics
from eventsphere.settings import settings
from eventsphere.uploads import signatures
from eventsphere.uploads.constants import (
	ALLOWED_FILE_EXTENSIONS,
	ALLOWED_IMAGE_TYPES,
	FILENAME_UNSAFE_CHARS,
	LEADING_DOTS,
	MAX_FILENAME_LENGTH,
	MULTIPLE_DOTS,
)
from eventsphere.uploads.exceptions import (
	DoubleExtension,
	EmptyFile,
	FileTooLarge,
	ImageRejected,
	InvalidExtension,
	InvalidFileType,
	QuotaExceeded,
	SignatureMismatch,
	UploadAborted,
	UploadError,
	VirusDetected,
)
from eventsphere.uploads.images import ImageIntegrityChecker, ImageMetadata
from eventsphere.uploads.quota import QuotaDecision, UploadQuotaTracker
from eventsphere.uploads.scanner import VirusScanner

logger = logging.getLogger(__name__)

AbortProbe = Callable[[], Awaitable[bool]]


@dataclass(slots=True)
class UploadCandidate:
	"""One uploaded part, held in memory until the gate decides."""

	data: bytes
	content_type: str
	filename: str

	@property
	def size(self) -> int:
		return len(self.data)


@dataclass(frozen=True)
class ValidationOutcome:
	stage: str
	passed: bool
	detail: str


@dataclass(slots=True)
class GateResult:
	filename: str
	safe_name: str
	content_type: str
	size: int
	outcomes: list[ValidationOutcome] = field(default_factory=list)
	quota: Optional[QuotaDecision] = None
	image: Optional[ImageMetadata] = None


def extension_of(filename: str) -> str:
	return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def has_double_extension(filename: str) -> bool:
	return len(filename.split(".")) > 2


def sanitize_filename(filename: str) -> str:
	"""Return a name safe to embed in a storage key."""
	cleaned = FILENAME_UNSAFE_CHARS.sub("_", filename)
	cleaned = MULTIPLE_DOTS.sub(".", cleaned)
	cleaned = LEADING_DOTS.sub("", cleaned)
	return cleaned[:MAX_FILENAME_LENGTH]


class UploadGate:
	"""Runs every validation stage for one upload and returns the accepted result."""

	def __init__(
		self,
		*,
		quota: UploadQuotaTracker,
		scanner: VirusScanner,
		images: ImageIntegrityChecker | None = None,
		max_file_size: int | None = None,
	) -> None:
		self.quota = quota
		self.scanner = scanner
		self.images = images or ImageIntegrityChecker()
		self.max_file_size = max_file_size or settings.max_file_size

	async def evaluate(
		self,
		candidate: UploadCandidate,
		user: AuthenticatedUser | None = None,
		*,
		should_abort: AbortProbe | None = None,
	) -> GateResult:
		result = GateResult(
			filename=candidate.filename,
			safe_name=sanitize_filename(candidate.filename),
			content_type=candidate.content_type.lower(),
			size=candidate.size,
		)
		logger.info(
			"upload_gate.received",
			extra={"upload_name": candidate.filename, "content_type": candidate.content_type, "size": candidate.size},
		)
		stages: list[tuple[str, Callable[[UploadCandidate, AuthenticatedUser | None, GateResult], Awaitable[str]]]] = [
			("file_type", self._check_file_type),
			("signature", self._check_signature),
			("quota", self._check_quota),
			("virus_scan", self._check_virus),
			("image", self._check_image),
		]
		for index, (stage, check) in enumerate(stages):
			if index and should_abort is not None and await should_abort():
				logger.info("upload_gate.aborted", extra={"upload_name": candidate.filename, "stage": stage})
				raise UploadAborted()
			started = time.perf_counter()
			try:
				detail = await check(candidate, user, result)
			except UploadError as exc:
				result.outcomes.append(ValidationOutcome(stage, False, exc.message))
				metrics.UPLOAD_GATE_STAGE_TOTAL.labels(stage=stage, result="rejected").inc()
				self._log_rejection(candidate, stage, exc)
				raise
			finally:
				metrics.UPLOAD_GATE_STAGE_SECONDS.labels(stage=stage).observe(time.perf_counter() - started)
			result.outcomes.append(ValidationOutcome(stage, True, detail))
			metrics.UPLOAD_GATE_STAGE_TOTAL.labels(stage=stage, result="passed").inc()

		logger.info("File %s passed all security checks", candidate.filename)
		return result

	async def _check_file_type(self, candidate: UploadCandidate, _user, _result: GateResult) -> str:
		if candidate.content_type.lower() not in ALLOWED_IMAGE_TYPES:
			raise InvalidFileType(f"Invalid file type. Allowed types: {', '.join(ALLOWED_IMAGE_TYPES)}")
		if extension_of(candidate.filename) not in ALLOWED_FILE_EXTENSIONS:
			raise InvalidExtension(
				f"Invalid file extension. Allowed extensions: {', '.join(ALLOWED_FILE_EXTENSIONS)}"
			)
		if has_double_extension(candidate.filename):
			raise DoubleExtension()
		if candidate.size == 0:
			raise EmptyFile()
		if candidate.size > self.max_file_size:
			raise FileTooLarge(f"File too large. Maximum size: {self.max_file_size // 1024 // 1024}MB")
		return "type and extension allowed"

	async def _check_signature(self, candidate: UploadCandidate, _user, _result: GateResult) -> str:
		check = signatures.validate(candidate.data, candidate.content_type)
		if not check.valid:
			logger.info("upload_gate.signature_mismatch", extra={"reason": check.message})
			raise SignatureMismatch()
		return check.message

	async def _check_quota(self, _candidate: UploadCandidate, user: AuthenticatedUser | None, result: GateResult) -> str:
		if user is None:
			return "anonymous upload; quota not applied"
		decision = await self.quota.check_and_increment(user.id, user.role)
		result.quota = decision
		if not decision.allowed:
			role = (user.role or "user").upper()
			raise QuotaExceeded(
				f"Upload limit exceeded. {role}s can upload {decision.limit} files per day. Please try again tomorrow.",
				limit=decision.limit,
				remaining=decision.remaining,
				resets_in=decision.resets_in,
			)
		return f"{decision.used}/{decision.limit} uploads used"

	async def _check_virus(self, candidate: UploadCandidate, _user, _result: GateResult) -> str:
		scan = await self.scanner.scan(candidate.data, candidate.filename)
		if scan.infected:
			raise VirusDetected(scan.signatures)
		return "clean"

	async def _check_image(self, candidate: UploadCandidate, _user, result: GateResult) -> str:
		if not candidate.content_type.lower().startswith("image/"):
			return "not an image"
		validation = await self.images.validate(candidate.data, candidate.filename)
		if not validation.valid:
			raise ImageRejected(f"Image validation failed: {validation.error}")
		result.image = validation.metadata
		return "image intact"

	@staticmethod
	def _log_rejection(candidate: UploadCandidate, stage: str, exc: UploadError) -> None:
		if isinstance(exc, VirusDetected):
			logger.error(
				"Virus detected in file %s",
				candidate.filename,
				extra={"stage": stage, "signatures": list(exc.signatures)},
			)
			return
		logger.info(
			"upload_gate.rejected",
			extra={"upload_name": candidate.filename, "stage": stage, "reason": exc.detail},
		)


__all__ = [
	"AbortProbe",
	"GateResult",
	"UploadCandidate",
	"UploadGate",
	"ValidationOutcome",
	"extension_of",
	"has_double_extension",
	"sanitize_filename",
]
