import io
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient
from PIL import Image

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from eventsphere import container
from eventsphere.infra.storage import LocalObjectStorage
from eventsphere.main import app
from eventsphere.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from eventsphere.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Run as a development environment with scanning off unless a test opts in."""
	original_env = settings.environment
	original_clamav = settings.clamav_enabled
	settings.environment = "dev"
	settings.clamav_enabled = False
	try:
		yield
	finally:
		settings.environment = original_env
		settings.clamav_enabled = original_clamav


@pytest.fixture(autouse=True)
def reset_container(tmp_path):
	container.reset()
	container.configure(storage=LocalObjectStorage(tmp_path / "uploads", base_url="http://testserver"))
	try:
		yield
	finally:
		container.reset()


@pytest.fixture
def make_image():
	def _make(fmt: str = "PNG", size: tuple[int, int] = (32, 32), mode: str = "RGB") -> bytes:
		buffer = io.BytesIO()
		Image.new(mode, size, color=(200, 30, 30) if mode == "RGB" else 128).save(buffer, format=fmt)
		return buffer.getvalue()

	return _make


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
