"""Magic-number checks for uploaded file content."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from eventsphere.uploads.constants import MIME_ALIASES


@dataclass(frozen=True)
class FileSignature:
	mime_type: str
	magic: bytes
	offset: int = 0

	def matches(self, buffer: bytes) -> bool:
		end = self.offset + len(self.magic)
		return buffer[self.offset:end] == self.magic


@dataclass(frozen=True)
class SignatureCheck:
	valid: bool
	detected: Optional[str]
	message: str


# Order matters: detect() returns the first entry that matches.
FILE_SIGNATURES: tuple[FileSignature, ...] = (
	FileSignature("image/jpeg", bytes([0xFF, 0xD8, 0xFF])),
	FileSignature("image/png", bytes([0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A])),
	FileSignature("image/gif", b"GIF87a"),
	FileSignature("image/gif", b"GIF89a"),
	FileSignature("image/webp", b"RIFF"),
)

WEBP_MARKER = FileSignature("image/webp", b"WEBP", offset=8)


def _canonical(mime_type: str) -> str:
	lowered = mime_type.lower()
	return MIME_ALIASES.get(lowered, lowered)


def _accept(signature: FileSignature, buffer: bytes) -> bool:
	if not signature.matches(buffer):
		return False
	# RIFF is shared with AVI/WAV; only the WEBP marker makes it an image.
	if signature.mime_type == "image/webp":
		return WEBP_MARKER.matches(buffer)
	return True


def detect(buffer: bytes) -> Optional[str]:
	"""Return the MIME type whose magic bytes open ``buffer``, if any."""
	for signature in FILE_SIGNATURES:
		if _accept(signature, buffer):
			return signature.mime_type
	return None


def matches(buffer: bytes, declared_mime_type: str) -> bool:
	"""Return True when ``buffer`` carries a signature of the declared type."""
	wanted = _canonical(declared_mime_type)
	candidates = [sig for sig in FILE_SIGNATURES if sig.mime_type == wanted]
	return any(_accept(sig, buffer) for sig in candidates)


def validate(buffer: bytes, declared_mime_type: str) -> SignatureCheck:
	detected = detect(buffer)
	if detected is None:
		return SignatureCheck(False, None, "Unknown or unsupported file type")
	if detected != _canonical(declared_mime_type):
		return SignatureCheck(
			False,
			detected,
			f"File signature mismatch. Declared: {declared_mime_type}, Detected: {detected}",
		)
	return SignatureCheck(True, detected, "File signature validated successfully")


__all__ = ["FILE_SIGNATURES", "FileSignature", "SignatureCheck", "detect", "matches", "validate"]
