"""Response models for the upload endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class ImageMetadataOut(BaseModel):
	format: str
	width: int
	height: int
	channels: int


class UploadResponse(BaseModel):
	"""Stored upload that passed every gate stage."""
	key: str
	url: str
	filename: str
	content_type: str
	size: int
	metadata: Optional[ImageMetadataOut] = None


class QuotaResponse(BaseModel):
	limit: int
	used: int
	remaining: int
	resets_in: int


class EventPhotoResponse(BaseModel):
	event_id: str
	url: str
	photos: list[str]
