"""Upload policy constants shared by the gate stages."""

from __future__ import annotations

import re

ALLOWED_IMAGE_TYPES = (
	"image/jpeg",
	"image/jpg",
	"image/png",
	"image/webp",
	"image/gif",
)

ALLOWED_FILE_EXTENSIONS = (
	"jpg",
	"jpeg",
	"png",
	"webp",
	"gif",
)

# Declared types that name the same format as a canonical one.
MIME_ALIASES = {"image/jpg": "image/jpeg"}

MAX_FILES_PER_REQUEST = 5

SUPPORTED_IMAGE_FORMATS = ("jpeg", "png", "webp", "gif")

MAX_FILENAME_LENGTH = 100
FILENAME_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")
MULTIPLE_DOTS = re.compile(r"\.+")
LEADING_DOTS = re.compile(r"^\.+")

UPLOAD_LIMIT_KEY_PREFIX = "upload_limit:"
