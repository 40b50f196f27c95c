"""Exceptions raised by the upload gate."""

from __future__ import annotations

from typing import Sequence

from fastapi import status

if hasattr(status, "HTTP_413_CONTENT_TOO_LARGE"):
	_HTTP_413 = status.HTTP_413_CONTENT_TOO_LARGE
else:  # pragma: no cover - older Starlette builds
	_HTTP_413 = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class UploadError(Exception):
	"""Base class for upload rejections surfaced to the caller."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "upload_rejected"
	stage: str = "upload"
	message: str = "Upload rejected"

	def __init__(self, message: str | None = None) -> None:
		super().__init__(message or self.message)
		if message:
			self.message = message


class InvalidFileType(UploadError):
	detail = "invalid_file_type"
	stage = "mime"


class InvalidExtension(UploadError):
	detail = "invalid_extension"
	stage = "extension"


class DoubleExtension(UploadError):
	detail = "double_extension"
	stage = "extension"
	message = "Invalid filename: multiple extensions detected"


class EmptyFile(UploadError):
	detail = "empty_file"
	stage = "size"
	message = "No file content uploaded"


class FileTooLarge(UploadError):
	status_code = _HTTP_413
	detail = "file_too_large"
	stage = "size"


class SignatureMismatch(UploadError):
	detail = "signature_mismatch"
	stage = "signature"
	message = "File signature validation failed. The file content does not match its declared type."


class QuotaExceeded(UploadError):
	"""Raised when the identity has used its daily upload allowance."""

	status_code = status.HTTP_429_TOO_MANY_REQUESTS
	detail = "upload_limit_exceeded"
	stage = "quota"

	def __init__(self, message: str, *, limit: int, remaining: int, resets_in: int) -> None:
		super().__init__(message)
		self.limit = limit
		self.remaining = remaining
		self.resets_in = resets_in


class VirusDetected(UploadError):
	"""Security rejection; the matched signatures are kept for the audit log."""

	detail = "virus_detected"
	stage = "virus_scan"

	def __init__(self, signatures: Sequence[str]) -> None:
		self.signatures = tuple(signatures)
		super().__init__(f"File rejected: Virus detected ({', '.join(self.signatures)})")


class ScannerUnavailableError(UploadError):
	"""The virus scanner could not vouch for the file and the environment fails closed."""

	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	detail = "virus_scanner_unavailable"
	stage = "virus_scan"
	message = "Virus scanner unavailable"


class ImageRejected(UploadError):
	detail = "image_invalid"
	stage = "image"


class TooManyFiles(UploadError):
	detail = "too_many_files"
	message = "Too many files in one request"


class UploadAborted(UploadError):
	"""The client went away before the gate finished."""

	detail = "upload_aborted"
	message = "Upload aborted by client"


__all__ = [
	"UploadError",
	"InvalidFileType",
	"InvalidExtension",
	"DoubleExtension",
	"EmptyFile",
	"FileTooLarge",
	"SignatureMismatch",
	"QuotaExceeded",
	"VirusDetected",
	"ScannerUnavailableError",
	"ImageRejected",
	"UploadAborted",
	"TooManyFiles",
]
