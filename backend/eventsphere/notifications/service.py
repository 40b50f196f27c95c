"""Typed email notifications: one method per message the platform sends."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from eventsphere.notifications.mailer import EmailSender, mask_email
from eventsphere.notifications.templates import TemplateRenderer
from eventsphere.settings import settings

logger = logging.getLogger(__name__)


def _format_change_value(value: Any) -> str:
	if isinstance(value, datetime):
		return value.strftime("%a %d %b %Y, %H:%M %Z").strip()
	if isinstance(value, str):
		try:
			return _format_change_value(datetime.fromisoformat(value.replace("Z", "+00:00")))
		except ValueError:
			return value
	return str(value)


def format_changes(changes: Mapping[str, Mapping[str, Any]]) -> dict[str, dict[str, str]]:
	"""Render each ``{old, new}`` pair as display strings; timestamps become dates."""
	return {
		field: {"old": _format_change_value(change.get("old")), "new": _format_change_value(change.get("new"))}
		for field, change in changes.items()
	}


class NotificationMailer:
	def __init__(self, renderer: TemplateRenderer, sender: EmailSender) -> None:
		self.renderer = renderer
		self.sender = sender

	async def _deliver(self, to: str, subject: str, template: str, data: Mapping[str, Any]) -> None:
		html = self.renderer.render(template, data)
		await self.sender.send(to, subject, html)
		logger.info("[Email Sent] %s to %s", template, mask_email(to))

	async def send_welcome(self, to: str, name: str) -> None:
		await self._deliver(to, f"Welcome to {settings.app_name}!", "welcome", {"name": name})

	async def send_verification(self, to: str, name: str, token: str) -> None:
		await self._deliver(to, f"Verify your {settings.app_name} account", "verification", {"name": name, "code": token})

	async def send_event_update(
		self,
		to: str,
		name: str,
		event_title: str,
		changes: Mapping[str, Mapping[str, Any]],
		event_id: str,
	) -> None:
		await self._deliver(
			to,
			f"Update: {event_title}",
			"event-update",
			{"name": name, "event_title": event_title, "changes": format_changes(changes), "event_id": event_id},
		)

	async def send_rsvp_confirmation(
		self,
		to: str,
		name: str,
		event_title: str,
		ticket_code: Optional[str] = None,
		qr_code_data: Optional[str] = None,
	) -> None:
		await self._deliver(
			to,
			f"Ticket: {event_title}",
			"rsvp-confirmation",
			{"name": name, "event_title": event_title, "ticket_code": ticket_code, "qr_code_data": qr_code_data},
		)

	async def send_invitation(self, to: str, name: str, inviter_name: str, event_title: str, event_id: str) -> None:
		link = f"{settings.client_url.rstrip('/')}/events/{event_id}"
		await self._deliver(
			to,
			f"Invitation: {event_title}",
			"invitation",
			{"name": name, "inviter_name": inviter_name, "event_title": event_title, "link": link},
		)

	async def send_recurring_created(self, to: str, name: str, event_title: str, date: str) -> None:
		await self._deliver(
			to,
			f"New Event: {event_title}",
			"recurring-event-created",
			{"name": name, "event_title": event_title, "date": date},
		)

	async def send_community_event(
		self,
		to: str,
		name: str,
		community_name: str,
		event_title: str,
		event_id: str,
	) -> None:
		await self._deliver(
			to,
			f"New Event in {community_name}",
			"community-event-new",
			{"name": name, "community_name": community_name, "event_title": event_title, "event_id": event_id},
		)

	async def send_community_invite(self, to: str, community_name: str, inviter_name: str) -> None:
		await self._deliver(
			to,
			f"Invitation: Join {community_name}",
			"community-invite",
			{"community_name": community_name, "inviter_name": inviter_name},
		)


__all__ = ["NotificationMailer", "format_changes"]
