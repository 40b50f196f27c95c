"""Image integrity checks run on fully buffered uploads."""

from __future__ import annotations

import asyncio
import io
import logging
import struct
from dataclasses import dataclass
from typing import Optional

from PIL import Image, UnidentifiedImageError

from eventsphere.settings import settings
from eventsphere.uploads.constants import SUPPORTED_IMAGE_FORMATS

logger = logging.getLogger(__name__)

# Pillow reports multi-picture camera JPEGs as MPO.
_FORMAT_ALIASES = {"mpo": "jpeg"}


@dataclass(frozen=True)
class ImageMetadata:
	format: str
	width: int
	height: int
	channels: int

	def as_dict(self) -> dict[str, object]:
		return {"format": self.format, "width": self.width, "height": self.height, "channels": self.channels}


@dataclass(frozen=True)
class ImageValidation:
	valid: bool
	metadata: Optional[ImageMetadata] = None
	error: Optional[str] = None


class ImageIntegrityChecker:
	"""Decodes an image and checks format, dimensions and colour channels.

	Dimensions come from the header and are bounded before the pixel data is
	decoded; the whole inspection runs in a worker thread under a timeout.
	"""

	def __init__(
		self,
		*,
		min_dimension: int | None = None,
		max_dimension: int | None = None,
		decode_timeout: float | None = None,
	) -> None:
		self.min_dimension = min_dimension if min_dimension is not None else settings.min_image_dimension
		self.max_dimension = max_dimension if max_dimension is not None else settings.max_image_dimension
		self.decode_timeout = decode_timeout if decode_timeout is not None else settings.image_decode_timeout_seconds

	async def validate(self, buffer: bytes, filename: str) -> ImageValidation:
		logger.info("image_validation.start", extra={"upload_name": filename, "size": len(buffer)})
		try:
			result = await asyncio.wait_for(asyncio.to_thread(self.inspect, buffer), timeout=self.decode_timeout)
		except asyncio.TimeoutError:
			logger.error("image_validation.timeout", extra={"upload_name": filename, "timeout": self.decode_timeout})
			return ImageValidation(valid=False, error="Image decoding timed out")
		if result.valid and result.metadata is not None:
			meta = result.metadata
			logger.info(
				"Image validated: %s (%sx%s, %s)", filename, meta.width, meta.height, meta.format,
			)
		else:
			logger.warning("image_validation.failed", extra={"upload_name": filename, "error": result.error})
		return result

	def inspect(self, buffer: bytes) -> ImageValidation:
		too_large = f"Image too large. Maximum dimensions: {self.max_dimension}x{self.max_dimension}"
		try:
			image = Image.open(io.BytesIO(buffer))
		except Image.DecompressionBombError:
			return ImageValidation(valid=False, error=too_large)
		except (UnidentifiedImageError, OSError, ValueError, SyntaxError, struct.error):
			return ImageValidation(valid=False, error="Unable to determine image format")

		with image:
			raw_format = (image.format or "").lower()
			fmt = _FORMAT_ALIASES.get(raw_format, raw_format)
			if not fmt:
				return ImageValidation(valid=False, error="Unable to determine image format")
			if fmt not in SUPPORTED_IMAGE_FORMATS:
				return ImageValidation(valid=False, error=f"Unsupported image format: {fmt}")

			width, height = image.size
			if not width or not height:
				return ImageValidation(valid=False, error="Unable to determine image dimensions")
			if width < self.min_dimension or height < self.min_dimension:
				return ImageValidation(
					valid=False,
					error=f"Image too small. Minimum dimensions: {self.min_dimension}x{self.min_dimension}",
				)
			if width > self.max_dimension or height > self.max_dimension:
				return ImageValidation(valid=False, error=too_large)

			try:
				image.load()
				bands = image.getbands()
			except Image.DecompressionBombError:
				return ImageValidation(valid=False, error=too_large)
			except (OSError, ValueError, SyntaxError, struct.error):
				return ImageValidation(valid=False, error="Failed to validate image channels")
			if not bands:
				return ImageValidation(valid=False, error="Invalid image: no color channels detected")

			metadata = ImageMetadata(format=fmt, width=width, height=height, channels=len(bands))
		return ImageValidation(valid=True, metadata=metadata)


__all__ = ["ImageIntegrityChecker", "ImageMetadata", "ImageValidation"]
