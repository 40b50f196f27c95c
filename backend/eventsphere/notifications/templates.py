"""Jinja2 rendering for notification emails."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError, select_autoescape

from eventsphere.settings import settings

logger = logging.getLogger(__name__)


class TemplateRenderer:
	"""Renders ``templates/<name>.html`` inside the shared layout."""

	def __init__(self, env: Environment | None = None) -> None:
		self.env = env or Environment(
			loader=PackageLoader("eventsphere.notifications", "templates"),
			autoescape=select_autoescape(["html"]),
			undefined=StrictUndefined,
			trim_blocks=True,
			lstrip_blocks=True,
		)

	def render(self, name: str, data: Mapping[str, Any]) -> str:
		context = {
			"app_name": settings.app_name,
			"client_url": settings.client_url.rstrip("/"),
			"current_year": datetime.now(timezone.utc).year,
			**data,
		}
		try:
			return self.env.get_template(f"{name}.html").render(**context)
		except TemplateError:
			logger.exception("Failed to render email template: %s", name)
			raise


__all__ = ["TemplateRenderer"]
