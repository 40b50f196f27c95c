"""Helpers domain code calls to enqueue notification jobs.

Each helper enqueues exactly one job; fan-out to recipients happens in the
worker.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from eventsphere.jobs.queue import JobQueue
from eventsphere.jobs.types import (
	CommunityEventNewPayload,
	CommunityInvitePayload,
	EventUpdatePayload,
	InvitationPayload,
	JobPayload,
	JobType,
	RecurringCreatedPayload,
	RsvpConfirmationPayload,
	VerificationPayload,
	WelcomePayload,
)

Changes = Mapping[str, Mapping[str, Any]]


class NotificationProducer:
	def __init__(self, queue: JobQueue) -> None:
		self.queue = queue

	async def _add(self, job_type: JobType, payload: JobPayload) -> str:
		return await self.queue.enqueue(job_type, payload.model_dump(mode="json"))

	async def event_updated(self, event_id: str, changes: Changes) -> str:
		return await self._add(JobType.EVENT_UPDATE, EventUpdatePayload(event_id=event_id, changes=changes))

	async def rsvp_confirmed(self, email: str, name: str, event_title: str, ticket_code: Optional[str] = None) -> str:
		return await self._add(
			JobType.RSVP_CONFIRMATION,
			RsvpConfirmationPayload(email=email, name=name, event_title=event_title, ticket_code=ticket_code),
		)

	async def welcome(self, email: str, name: str) -> str:
		return await self._add(JobType.WELCOME, WelcomePayload(email=email, name=name))

	async def verification(self, email: str, name: str, token: str) -> str:
		return await self._add(JobType.VERIFICATION, VerificationPayload(email=email, name=name, token=token))

	async def invitation(self, email: str, name: str, inviter_name: str, event_title: str, event_id: str) -> str:
		return await self._add(
			JobType.INVITATION,
			InvitationPayload(
				email=email, name=name, inviter_name=inviter_name, event_title=event_title, event_id=event_id
			),
		)

	async def recurring_created(self, email: str, name: str, event_title: str, date: str) -> str:
		return await self._add(
			JobType.RECURRING_CREATED,
			RecurringCreatedPayload(email=email, name=name, event_title=event_title, date=date),
		)

	async def community_event_new(self, community_id: str, event_id: str, event_title: str) -> str:
		return await self._add(
			JobType.COMMUNITY_EVENT_NEW,
			CommunityEventNewPayload(community_id=community_id, event_id=event_id, event_title=event_title),
		)

	async def community_invite(self, email: str, community_name: str, inviter_name: str) -> str:
		return await self._add(
			JobType.COMMUNITY_INVITE,
			CommunityInvitePayload(email=email, community_name=community_name, inviter_name=inviter_name),
		)


__all__ = ["NotificationProducer"]
