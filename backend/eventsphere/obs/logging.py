"""JSON logging with request and job context.

Every record is one JSON object. Fields bound with ``bind_context`` (request id,
route and user for HTTP requests; job id and type inside workers) are attached
to every record emitted in the same task. ``extra`` fields are sanitised:
secret-looking keys and e-mail addresses are redacted and large values are
truncated.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from eventsphere.settings import settings

CONTEXT_FIELDS = ("request_id", "route", "user_id", "job_id", "job_type")

_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("eventsphere_log_context", default={})

_LOGGER_NAME = "eventsphere"

_REDACTED_KEYS = ("token", "secret", "authorization", "password", "email", "payload", "html")

_MAX_STRING_LENGTH = 256
_MAX_COLLECTION_ITEMS = 10

# Anything on a record that a bare LogRecord does not carry came in through ``extra``.
_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime", "taskName"}


def bind_context(**fields: Optional[str]) -> Token:
	"""Layer ``fields`` over the current context; pass the token to ``reset_context``."""
	unknown = set(fields) - set(CONTEXT_FIELDS)
	if unknown:
		raise ValueError(f"unknown log context fields: {', '.join(sorted(unknown))}")
	merged = dict(_CONTEXT.get())
	merged.update({key: value for key, value in fields.items() if value})
	return _CONTEXT.set(merged)


def reset_context(token: Token) -> None:
	_CONTEXT.reset(token)


def current_context() -> Mapping[str, str]:
	return _CONTEXT.get()


def current_request_id() -> Optional[str]:
	return _CONTEXT.get().get("request_id")


def _truncate(value: Any) -> Any:
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING_LENGTH else value[:_MAX_STRING_LENGTH] + "..."
	if isinstance(value, Mapping):
		items = list(value.items())
		cleaned = {str(key): _clean(str(key), nested) for key, nested in items[:_MAX_COLLECTION_ITEMS]}
		if len(items) > _MAX_COLLECTION_ITEMS:
			cleaned["_truncated"] = len(items) - _MAX_COLLECTION_ITEMS
		return cleaned
	if isinstance(value, (list, tuple, set, frozenset)):
		items = [_truncate(item) for item in list(value)[: _MAX_COLLECTION_ITEMS + 1]]
		return items[:_MAX_COLLECTION_ITEMS] + ["..."] if len(items) > _MAX_COLLECTION_ITEMS else items
	if value is None or isinstance(value, (bool, int, float)):
		return value
	return str(value)


def _clean(key: str, value: Any) -> Any:
	if any(marker in key.lower() for marker in _REDACTED_KEYS):
		return "[redacted]"
	if isinstance(value, str) and "@" in value and " " not in value:
		return "[redacted]"
	return _truncate(value)


class JSONLogFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		entry: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"logger": record.name,
			"msg": record.getMessage(),
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		entry.update(_CONTEXT.get())
		extras = {key: value for key, value in vars(record).items() if key not in _RESERVED}
		for key, value in extras.items():
			entry.setdefault(key, _clean(key, value))
		if record.exc_info:
			entry["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(entry, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Keep ``LOG_SAMPLING_RATE_INFO`` of info records; other levels always pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = settings.obs_log_sampling_rate_info
		return rate >= 1.0 or random.random() < max(0.0, rate)


def configure_logging() -> logging.Logger:
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root = logging.getLogger()
	root.handlers[:] = [handler]
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


__all__ = [
	"CONTEXT_FIELDS",
	"InfoSamplingFilter",
	"JSONLogFormatter",
	"bind_context",
	"configure_logging",
	"current_context",
	"current_request_id",
	"reset_context",
]
