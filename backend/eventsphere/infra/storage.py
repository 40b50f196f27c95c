"""Object storage for uploads that passed the gate."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol

from eventsphere.settings import settings


class ObjectStorage(Protocol):
	async def put(self, key: str, data: bytes, *, content_type: str) -> str:
		"""Persist ``data`` under ``key`` and return its public URL."""
		...


class LocalObjectStorage:
	"""Writes objects below ``UPLOAD_DIR`` and serves them from ``/uploads``."""

	def __init__(self, root: str | Path | None = None, *, base_url: str | None = None) -> None:
		self.root = Path(root or settings.upload_dir)
		self.base_url = (base_url or settings.api_base_url).rstrip("/")

	def _path_for(self, key: str) -> Path:
		path = (self.root / key).resolve()
		if self.root.resolve() not in path.parents:
			raise ValueError("storage key escapes upload root")
		return path

	async def put(self, key: str, data: bytes, *, content_type: str) -> str:  # noqa: ARG002 - interface parity
		path = self._path_for(key)
		await asyncio.to_thread(self._write, path, data)
		return f"{self.base_url}/uploads/{key}"

	@staticmethod
	def _write(path: Path, data: bytes) -> None:
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_bytes(data)


__all__ = ["ObjectStorage", "LocalObjectStorage"]
