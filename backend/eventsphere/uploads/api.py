"""Upload endpoints guarded by the upload gate."""

from __future__ import annotations

import logging

import ulid
from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile, status

from eventsphere import container
from eventsphere.api.errors import quota_headers
from eventsphere.infra.auth import AuthenticatedUser, get_current_user
from eventsphere.obs import metrics
from eventsphere.settings import settings
from eventsphere.uploads import schemas
from eventsphere.uploads.constants import MAX_FILES_PER_REQUEST
from eventsphere.uploads.exceptions import TooManyFiles
from eventsphere.uploads.gate import GateResult, UploadCandidate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/uploads", tags=["uploads"])


async def _read_candidate(file: UploadFile) -> UploadCandidate:
	# One byte past the limit is enough for the size check to reject it.
	data = await file.read(settings.max_file_size + 1)
	return UploadCandidate(data=data, content_type=file.content_type or "", filename=file.filename or "")


async def _gate(
	request: Request,
	response: Response,
	file: UploadFile,
	user: AuthenticatedUser,
) -> tuple[UploadCandidate, GateResult]:
	candidate = await _read_candidate(file)
	result = await container.get_upload_gate().evaluate(candidate, user, should_abort=request.is_disconnected)
	if result.quota is not None:
		response.headers.update(quota_headers(result.quota.limit, result.quota.remaining, result.quota.resets_in))
	return candidate, result


async def _store(candidate: UploadCandidate, result: GateResult, prefix: str) -> tuple[str, str]:
	key = f"{prefix}/{ulid.new().str}-{result.safe_name}"
	url = await container.get_storage().put(key, candidate.data, content_type=result.content_type)
	metrics.UPLOADS_STORED_TOTAL.inc()
	logger.info("upload.stored", extra={"key": key, "size": result.size})
	return key, url


def _to_response(result: GateResult, key: str, url: str) -> schemas.UploadResponse:
	return schemas.UploadResponse(
		key=key,
		url=url,
		filename=result.safe_name,
		content_type=result.content_type,
		size=result.size,
		metadata=schemas.ImageMetadataOut(**result.image.as_dict()) if result.image else None,
	)


@router.post("/image", response_model=schemas.UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
	request: Request,
	response: Response,
	file: UploadFile = File(...),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.UploadResponse:
	candidate, result = await _gate(request, response, file, auth_user)
	key, url = await _store(candidate, result, f"images/{auth_user.id}")
	return _to_response(result, key, url)


@router.post("/images", response_model=list[schemas.UploadResponse], status_code=status.HTTP_201_CREATED)
async def upload_images(
	request: Request,
	response: Response,
	files: list[UploadFile] = File(...),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> list[schemas.UploadResponse]:
	"""Gate every file before storing any of them."""
	if len(files) > MAX_FILES_PER_REQUEST:
		raise TooManyFiles(f"Too many files. Maximum {MAX_FILES_PER_REQUEST} files per request")
	accepted = [await _gate(request, response, file, auth_user) for file in files]
	uploads: list[schemas.UploadResponse] = []
	for candidate, result in accepted:
		key, url = await _store(candidate, result, f"images/{auth_user.id}")
		uploads.append(_to_response(result, key, url))
	return uploads


@router.get("/quota", response_model=schemas.QuotaResponse)
async def upload_quota(
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.QuotaResponse:
	decision = await container.get_quota_tracker().stats(auth_user.id, auth_user.role)
	response.headers.update(quota_headers(decision.limit, decision.remaining, decision.resets_in))
	return schemas.QuotaResponse(
		limit=decision.limit,
		used=decision.used,
		remaining=decision.remaining,
		resets_in=decision.resets_in,
	)


@router.post("/events/{event_id}/photos", response_model=schemas.EventPhotoResponse, status_code=status.HTTP_201_CREATED)
async def upload_event_photo(
	event_id: str,
	request: Request,
	response: Response,
	file: UploadFile = File(...),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.EventPhotoResponse:
	"""Attach a photo to an event; only the organizer may do so."""
	events = container.get_event_store()
	event = await events.get(event_id)
	if event is None:
		raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="event_not_found")
	if event.organizer_id != auth_user.id:
		raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="organizer_only")
	candidate, result = await _gate(request, response, file, auth_user)
	_, url = await _store(candidate, result, f"events/{event_id}")
	updated = await events.add_photo(event_id, url)
	return schemas.EventPhotoResponse(event_id=event_id, url=url, photos=list(updated.photos))


__all__ = ["router"]
