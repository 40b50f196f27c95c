"""Handlers for the notification job catalogue.

Fan-out jobs (``event-update``, ``community-event-new``) only load recipients
and enqueue one single-recipient job each; the single-recipient jobs render
and send the email.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Mapping, Optional, Sequence

import qrcode

from eventsphere.domain.events import AttendeeDirectory, CommunityDirectory, EventStore
from eventsphere.jobs.queue import JobQueue
from eventsphere.jobs.types import (
	CommunityEventNewPayload,
	CommunityEventSinglePayload,
	CommunityInvitePayload,
	EventUpdatePayload,
	EventUpdateSinglePayload,
	InvitationPayload,
	JobType,
	PermanentJobError,
	RecurringCreatedPayload,
	RsvpConfirmationPayload,
	VerificationPayload,
	WelcomePayload,
)
from eventsphere.notifications.mailer import PermanentEmailError, mask_email
from eventsphere.notifications.service import NotificationMailer
from eventsphere.obs import metrics
from eventsphere.settings import settings

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class FanoutSummary:
	recipients: int
	batches: int
	enqueued: int
	failed: int


async def fan_out(
	queue: JobQueue,
	job_type: JobType,
	payloads: Sequence[Mapping[str, Any]],
	*,
	batch_size: int,
) -> FanoutSummary:
	"""Enqueue one job per payload, ``batch_size`` at a time.

	Items within a batch are enqueued concurrently and batches run one after
	another. A failed enqueue is logged and counted; it never stops the rest.
	"""
	size = max(1, batch_size)
	batches = enqueued = failed = 0
	for start in range(0, len(payloads), size):
		batch = payloads[start:start + size]
		batches += 1
		results = await asyncio.gather(
			*(queue.enqueue(job_type, payload) for payload in batch),
			return_exceptions=True,
		)
		for payload, result in zip(batch, results):
			if isinstance(result, BaseException):
				failed += 1
				_LOG.error(
					"job_fanout.enqueue_failed",
					extra={"job_type": job_type.value, "recipient": mask_email(str(payload.get("email", ""))), "error": repr(result)},
				)
			else:
				enqueued += 1
	metrics.FANOUT_RECIPIENTS.observe(len(payloads))
	return FanoutSummary(recipients=len(payloads), batches=batches, enqueued=enqueued, failed=failed)


def qr_code_data_url(text: str) -> str:
	"""Render ``text`` as a PNG QR code embedded in a data URL."""
	image = qrcode.make(text)
	buffer = io.BytesIO()
	image.save(buffer, format="PNG")
	return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


class NotificationHandlers:
	"""Job handlers bound to their collaborators."""

	def __init__(
		self,
		*,
		mailer: NotificationMailer,
		queue: JobQueue,
		events: EventStore,
		attendees: AttendeeDirectory,
		communities: CommunityDirectory,
		fanout_batch_size: Optional[int] = None,
	) -> None:
		self.mailer = mailer
		self.queue = queue
		self.events = events
		self.attendees = attendees
		self.communities = communities
		self.fanout_batch_size = fanout_batch_size or settings.notification_fanout_batch_size

	@staticmethod
	async def _send(delivery: Awaitable[None]) -> None:
		try:
			await delivery
		except PermanentEmailError as exc:
			raise PermanentJobError(str(exc)) from exc

	async def event_update(self, payload: EventUpdatePayload) -> FanoutSummary | None:
		event = await self.events.get(payload.event_id)
		if event is None:
			_LOG.info("job.event_update.missing_event", extra={"event_id": payload.event_id})
			return None
		attendees = await self.attendees.attendees_of(payload.event_id)
		_LOG.info("[Event Update] Fanning out %s emails for event %s", len(attendees), payload.event_id)
		singles = [
			EventUpdateSinglePayload(
				email=attendee.email,
				name=attendee.name,
				event_title=event.title,
				changes=payload.changes,
				event_id=payload.event_id,
			).model_dump(mode="json")
			for attendee in attendees
			if attendee.email
		]
		return await fan_out(self.queue, JobType.EVENT_UPDATE_SINGLE, singles, batch_size=self.fanout_batch_size)

	async def event_update_single(self, payload: EventUpdateSinglePayload) -> None:
		await self._send(
			self.mailer.send_event_update(payload.email, payload.name, payload.event_title, payload.changes, payload.event_id)
		)

	async def rsvp_confirmation(self, payload: RsvpConfirmationPayload) -> None:
		qr_data: Optional[str] = None
		if payload.ticket_code:
			try:
				qr_data = await asyncio.to_thread(qr_code_data_url, payload.ticket_code)
			except Exception:
				# The ticket code is still printed in the email.
				_LOG.exception("Failed to generate QR code for ticket")
		await self._send(
			self.mailer.send_rsvp_confirmation(
				payload.email, payload.name, payload.event_title, payload.ticket_code, qr_data
			)
		)

	async def welcome(self, payload: WelcomePayload) -> None:
		await self._send(self.mailer.send_welcome(payload.email, payload.name))

	async def verification(self, payload: VerificationPayload) -> None:
		await self._send(self.mailer.send_verification(payload.email, payload.name, payload.token))

	async def invitation(self, payload: InvitationPayload) -> None:
		await self._send(
			self.mailer.send_invitation(
				payload.email, payload.name, payload.inviter_name, payload.event_title, payload.event_id
			)
		)

	async def recurring_created(self, payload: RecurringCreatedPayload) -> None:
		await self._send(
			self.mailer.send_recurring_created(payload.email, payload.name, payload.event_title, payload.date)
		)

	async def community_event_new(self, payload: CommunityEventNewPayload) -> FanoutSummary | None:
		community_name = await self.communities.name_of(payload.community_id)
		if community_name is None:
			_LOG.info("job.community_event.missing_community", extra={"community_id": payload.community_id})
			return None
		members = await self.communities.members_of(payload.community_id)
		singles = [
			CommunityEventSinglePayload(
				email=member.email,
				name=member.name,
				community_name=community_name,
				event_title=payload.event_title,
				event_id=payload.event_id,
			).model_dump(mode="json")
			for member in members
			if member.email and member.name
		]
		return await fan_out(self.queue, JobType.COMMUNITY_EVENT_SINGLE, singles, batch_size=self.fanout_batch_size)

	async def community_event_single(self, payload: CommunityEventSinglePayload) -> None:
		await self._send(
			self.mailer.send_community_event(
				payload.email, payload.name, payload.community_name, payload.event_title, payload.event_id
			)
		)

	async def community_invite(self, payload: CommunityInvitePayload) -> None:
		await self._send(self.mailer.send_community_invite(payload.email, payload.community_name, payload.inviter_name))

	def bindings(self) -> dict[JobType, Any]:
		return {
			JobType.EVENT_UPDATE: self.event_update,
			JobType.EVENT_UPDATE_SINGLE: self.event_update_single,
			JobType.RSVP_CONFIRMATION: self.rsvp_confirmation,
			JobType.WELCOME: self.welcome,
			JobType.VERIFICATION: self.verification,
			JobType.INVITATION: self.invitation,
			JobType.RECURRING_CREATED: self.recurring_created,
			JobType.COMMUNITY_EVENT_NEW: self.community_event_new,
			JobType.COMMUNITY_EVENT_SINGLE: self.community_event_single,
			JobType.COMMUNITY_INVITE: self.community_invite,
		}


__all__ = ["FanoutSummary", "NotificationHandlers", "fan_out", "qr_code_data_url"]
