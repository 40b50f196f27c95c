from datetime import datetime, timedelta, timezone

import pytest

from eventsphere import container
from eventsphere.domain.events import EventRecord, InMemoryEventStore

ATTENDEE = {"X-User-Id": "user-1", "X-User-Role": "ATTENDEE"}


def _png_part(data: bytes, name: str = "photo.png", content_type: str = "image/png"):
    return ("file", (name, data, content_type))


@pytest.mark.asyncio
async def test_upload_image_accepted(api_client, make_image):
    response = await api_client.post("/uploads/image", headers=ATTENDEE, files=[_png_part(make_image())])

    assert response.status_code == 201
    body = response.json()
    assert body["key"].startswith("images/user-1/")
    assert body["key"].endswith("-photo.png")
    assert body["url"].startswith("http://testserver/uploads/images/user-1/")
    assert body["metadata"] == {"format": "png", "width": 32, "height": 32, "channels": 3}
    assert response.headers["X-Upload-Limit"] == "10"
    assert response.headers["X-Upload-Remaining"] == "9"
    assert int(response.headers["X-Upload-Reset"]) > 0


@pytest.mark.asyncio
async def test_upload_requires_identity(api_client, make_image):
    response = await api_client.post("/uploads/image", files=[_png_part(make_image())])
    assert response.status_code == 401
    assert response.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_signature_mismatch_rejected(api_client, make_image):
    response = await api_client.post(
        "/uploads/image",
        headers={**ATTENDEE, "X-Request-Id": "req-sig-1"},
        files=[_png_part(make_image("JPEG"), name="photo.png")],
    )

    assert response.status_code == 400
    body = response.json()
    assert body["detail"] == "signature_mismatch"
    assert body["stage"] == "signature"
    assert body["request_id"] == "req-sig-1"
    assert "does not match" in body["message"]


@pytest.mark.asyncio
async def test_double_extension_rejected(api_client, make_image):
    response = await api_client.post(
        "/uploads/image", headers=ATTENDEE, files=[_png_part(make_image(), name="shell.php.png")]
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "double_extension"


@pytest.mark.asyncio
async def test_quota_exhausted_returns_429(api_client, make_image, fake_redis):
    await fake_redis.set("upload_limit:user-1", 10, ex=3600)

    response = await api_client.post("/uploads/image", headers=ATTENDEE, files=[_png_part(make_image())])

    assert response.status_code == 429
    body = response.json()
    assert body["detail"] == "upload_limit_exceeded"
    assert "ATTENDEEs can upload 10 files per day" in body["message"]
    assert response.headers["X-Upload-Limit"] == "10"
    assert response.headers["X-Upload-Remaining"] == "0"
    assert 0 < int(response.headers["X-Upload-Reset"]) <= 3600


@pytest.mark.asyncio
async def test_quota_endpoint_reports_usage(api_client, make_image):
    await api_client.post("/uploads/image", headers=ATTENDEE, files=[_png_part(make_image())])

    response = await api_client.get("/uploads/quota", headers=ATTENDEE)

    assert response.status_code == 200
    assert response.json()["used"] == 1
    assert response.json()["remaining"] == 9
    assert response.headers["X-Upload-Remaining"] == "9"


@pytest.mark.asyncio
async def test_multiple_images(api_client, make_image):
    files = [("files", (f"p{i}.png", make_image(), "image/png")) for i in range(2)]

    response = await api_client.post("/uploads/images", headers=ATTENDEE, files=files)

    assert response.status_code == 201
    assert [item["filename"] for item in response.json()] == ["p0.png", "p1.png"]


@pytest.mark.asyncio
async def test_too_many_files_rejected(api_client, make_image):
    files = [("files", (f"p{i}.png", make_image(), "image/png")) for i in range(6)]

    response = await api_client.post("/uploads/images", headers=ATTENDEE, files=files)

    assert response.status_code == 400
    assert response.json()["detail"] == "too_many_files"


@pytest.mark.asyncio
async def test_batch_with_one_bad_file_stores_nothing(api_client, make_image, tmp_path):
    files = [
        ("files", ("good.png", make_image(), "image/png")),
        ("files", ("bad.png", b"not an image at all", "image/png")),
    ]

    response = await api_client.post("/uploads/images", headers=ATTENDEE, files=files)

    assert response.status_code == 400
    assert not (tmp_path / "uploads").exists()


def _event_store() -> InMemoryEventStore:
    start = datetime(2026, 6, 1, 18, 0, tzinfo=timezone.utc)
    return InMemoryEventStore([
        EventRecord(id="e1", title="Picnic", organizer_id="org-1", start_at=start, end_at=start + timedelta(hours=3)),
    ])


@pytest.mark.asyncio
async def test_event_photo_requires_organizer(api_client, make_image):
    container.configure(events=_event_store())

    missing = await api_client.post("/uploads/events/nope/photos", headers=ATTENDEE, files=[_png_part(make_image())])
    forbidden = await api_client.post("/uploads/events/e1/photos", headers=ATTENDEE, files=[_png_part(make_image())])

    assert missing.status_code == 404
    assert missing.json()["detail"] == "event_not_found"
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "organizer_only"


@pytest.mark.asyncio
async def test_event_photo_attached(api_client, make_image):
    store = _event_store()
    container.configure(events=store)

    response = await api_client.post(
        "/uploads/events/e1/photos",
        headers={"X-User-Id": "org-1", "X-User-Role": "ORGANIZER"},
        files=[_png_part(make_image())],
    )

    assert response.status_code == 201
    body = response.json()
    assert "/uploads/events/e1/" in body["url"]
    assert body["photos"] == [body["url"]]
    assert (await store.get("e1")).photos == [body["url"]]
    assert response.headers["X-Upload-Limit"] == "50"
