"""Settings for the EventSphere upload and notification backend."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
	if env_names:
		alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
		return Field(default=default, validation_alias=alias)
	return Field(default=default)


DEFAULT_UPLOAD_LIMITS: Dict[str, int] = {
	"ATTENDEE": 10,
	"ORGANIZER": 50,
	"ADMIN": 999999,
}


class Settings(BaseSettings):
	environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
	app_name: str = _env_field("EventSphere", "APP_NAME")
	client_url: str = _env_field("http://localhost:5173", "CLIENT_URL")
	api_base_url: str = _env_field("http://localhost:8000", "API_BASE_URL")

	redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")
	redis_socket_timeout: float = _env_field(5.0, "REDIS_SOCKET_TIMEOUT")

	# Upload gate
	upload_dir: str = _env_field("uploads", "UPLOAD_DIR")
	max_file_size: int = _env_field(5 * 1024 * 1024, "MAX_FILE_SIZE")
	min_image_dimension: int = _env_field(10, "MIN_IMAGE_DIMENSION")
	max_image_dimension: int = _env_field(10000, "MAX_IMAGE_DIMENSION")
	image_decode_timeout_seconds: float = _env_field(10.0, "IMAGE_DECODE_TIMEOUT_SECONDS")

	clamav_enabled: bool = _env_field(False, "CLAMAV_ENABLED")
	clamav_host: str = _env_field("localhost", "CLAMAV_HOST")
	clamav_port: int = _env_field(3310, "CLAMAV_PORT")
	clamav_timeout_seconds: float = _env_field(60.0, "CLAMAV_TIMEOUT_SECONDS")
	clamav_max_concurrency: int = _env_field(8, "CLAMAV_MAX_CONCURRENCY")

	upload_limits_by_role: Any = _env_field(dict(DEFAULT_UPLOAD_LIMITS), "UPLOAD_LIMITS_BY_ROLE")
	upload_limit_window_seconds: int = _env_field(24 * 60 * 60, "UPLOAD_LIMIT_WINDOW_SECONDS")

	# Background jobs
	job_queue_name: str = _env_field("email-notifications", "JOB_QUEUE_NAME")
	job_workers_enabled: bool = _env_field(False, "JOB_WORKERS_ENABLED")
	job_worker_concurrency: int = _env_field(2, "JOB_WORKER_CONCURRENCY")
	job_poll_interval_seconds: float = _env_field(0.5, "JOB_POLL_INTERVAL_SECONDS")
	job_timeout_seconds: float = _env_field(120.0, "JOB_TIMEOUT_SECONDS")
	notification_fanout_batch_size: int = _env_field(50, "NOTIFICATION_FANOUT_BATCH_SIZE")
	recurring_job_enabled: bool = _env_field(False, "RECURRING_JOB_ENABLED")

	# Email Settings
	smtp_host: str = _env_field("localhost", "SMTP_HOST")
	smtp_port: int = _env_field(587, "SMTP_PORT")
	smtp_user: Optional[str] = _env_field(None, "SMTP_USER")
	smtp_password: Optional[str] = _env_field(None, "SMTP_PASSWORD", "SMTP_PASS")
	smtp_from_email: str = _env_field("no-reply@eventsphere.com", "SMTP_FROM_EMAIL", "SMTP_FROM")
	smtp_tls: bool = _env_field(False, "SMTP_TLS", "SMTP_SECURE")
	smtp_timeout_seconds: float = _env_field(30.0, "SMTP_TIMEOUT_SECONDS")

	# Observability
	obs_enabled: bool = _env_field(True, "OBS_ENABLED")
	obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
	obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")
	service_name: str = _env_field("eventsphere-api", "SERVICE_NAME")
	git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")

	model_config = SettingsConfigDict(
		env_prefix="",
		env_file=".env",
		case_sensitive=False,
		env_nested_delimiter="__",
		populate_by_name=True,
	)

	# Environment helpers
	def is_prod(self) -> bool:
		return self.environment.lower() in ("prod", "production", "live")

	def is_dev(self) -> bool:
		return self.environment.lower() in ("dev", "development")

	def upload_limit_for(self, role: str | None) -> int:
		limits = {key.upper(): value for key, value in self.upload_limits_by_role.items()}
		if role and role.upper() in limits:
			return limits[role.upper()]
		return min(limits.values()) if limits else 0

	@field_validator("upload_limits_by_role", mode="before")
	def _parse_limits(cls, value: Any):  # type: ignore[override]
		"""Accept a mapping, a JSON object, or ``ROLE=N`` pairs separated by commas."""
		if value in (None, ""):
			return dict(DEFAULT_UPLOAD_LIMITS)
		if isinstance(value, dict):
			return {str(k).upper(): int(v) for k, v in value.items()}
		if isinstance(value, str):
			text = value.strip()
			if text.startswith("{"):
				data = json.loads(text)
				return {str(k).upper(): int(v) for k, v in data.items()}
			limits: Dict[str, int] = {}
			for part in text.split(","):
				if "=" not in part:
					continue
				role, raw = part.split("=", 1)
				limits[role.strip().upper()] = int(raw.strip())
			return limits or dict(DEFAULT_UPLOAD_LIMITS)
		raise ValueError("upload_limits_by_role must be a mapping")

	@field_validator("obs_log_level", mode="after")
	def _normalise_level(cls, value: str) -> str:  # type: ignore[override]
		return value.upper()


settings = Settings()
