"""Job catalogue: job types, payload models, delivery options and errors."""

from __future__ import annotations

import enum
import json
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict


class JobType(str, enum.Enum):
	EVENT_UPDATE = "event-update"
	EVENT_UPDATE_SINGLE = "event-update-single"
	RSVP_CONFIRMATION = "rsvp-confirmation"
	WELCOME = "welcome"
	VERIFICATION = "verification"
	INVITATION = "invitation"
	RECURRING_CREATED = "recurring-created"
	COMMUNITY_EVENT_NEW = "community-event-new"
	COMMUNITY_EVENT_SINGLE = "community-event-single"
	COMMUNITY_INVITE = "community-invite"


class JobError(Exception):
	"""Base class for job processing failures."""


class PermanentJobError(JobError):
	"""The job can never succeed; it goes to the failed list without retry."""


class UnknownJobType(JobError):
	"""No handler is registered for the job's type."""


class RegistryError(JobError):
	"""The handler registry does not cover the job catalogue."""


@dataclass(frozen=True)
class JobOptions:
	attempts: int = 3
	backoff_seconds: float = 5.0
	remove_on_complete: bool = False
	keep_failed: int = 1000

	def backoff_for(self, attempt: int) -> float:
		"""Exponential delay before retry number ``attempt`` (1-based)."""
		return self.backoff_seconds * (2 ** max(0, attempt - 1))


# Fan-out jobs run once: a retry would re-send to every recipient.
_FANOUT_OPTIONS = JobOptions(attempts=1, backoff_seconds=0.0)

DEFAULT_JOB_OPTIONS: Dict[JobType, JobOptions] = {
	JobType.EVENT_UPDATE: _FANOUT_OPTIONS,
	JobType.EVENT_UPDATE_SINGLE: JobOptions(remove_on_complete=True, keep_failed=100),
	JobType.RSVP_CONFIRMATION: JobOptions(),
	JobType.WELCOME: JobOptions(),
	JobType.VERIFICATION: JobOptions(),
	JobType.INVITATION: JobOptions(),
	JobType.RECURRING_CREATED: JobOptions(),
	JobType.COMMUNITY_EVENT_NEW: _FANOUT_OPTIONS,
	JobType.COMMUNITY_EVENT_SINGLE: JobOptions(remove_on_complete=True, keep_failed=100),
	JobType.COMMUNITY_INVITE: JobOptions(),
}


def options_for(job_type: str) -> JobOptions:
	try:
		return DEFAULT_JOB_OPTIONS[JobType(job_type)]
	except ValueError:
		return JobOptions()


@dataclass(frozen=True)
class JobItem:
	"""One queued unit of work as stored in the stream."""

	id: str
	type: str
	payload: Dict[str, Any]
	enqueued_at: float = field(default_factory=time.time)
	attempts: int = 0
	options: JobOptions = field(default_factory=JobOptions)

	def next_attempt(self) -> "JobItem":
		return replace(self, attempts=self.attempts + 1)

	def to_fields(self) -> Dict[str, str]:
		return {
			"id": self.id,
			"type": self.type,
			"payload": json.dumps(self.payload, default=str),
			"enqueued_at": repr(self.enqueued_at),
			"attempts": str(self.attempts),
			"options": json.dumps(asdict(self.options)),
		}

	def to_json(self) -> str:
		return json.dumps(self.to_fields())

	@classmethod
	def from_fields(cls, fields: Mapping[str, str]) -> "JobItem":
		"""Rebuild an item from stream fields; raises ``ValueError`` when malformed."""
		try:
			options_raw = fields.get("options")
			options = JobOptions(**json.loads(options_raw)) if options_raw else options_for(fields["type"])
			payload = json.loads(fields.get("payload") or "{}")
			if not isinstance(payload, dict):
				raise ValueError("payload must be a JSON object")
			return cls(
				id=fields["id"],
				type=fields["type"],
				payload=payload,
				enqueued_at=float(fields.get("enqueued_at") or 0.0),
				attempts=int(fields.get("attempts") or 0),
				options=options,
			)
		except (KeyError, TypeError, json.JSONDecodeError) as exc:
			raise ValueError(f"malformed job entry: {exc}") from exc

	@classmethod
	def from_json(cls, raw: str) -> "JobItem":
		return cls.from_fields(json.loads(raw))


class JobPayload(BaseModel):
	model_config = ConfigDict(extra="ignore")


class EventUpdatePayload(JobPayload):
	event_id: str
	changes: Dict[str, Dict[str, Any]] = {}


class EventUpdateSinglePayload(JobPayload):
	email: str
	name: str
	event_title: str
	changes: Dict[str, Dict[str, Any]] = {}
	event_id: str


class RsvpConfirmationPayload(JobPayload):
	email: str
	name: str
	event_title: str
	ticket_code: Optional[str] = None


class WelcomePayload(JobPayload):
	email: str
	name: str


class VerificationPayload(JobPayload):
	email: str
	name: str
	token: str


class InvitationPayload(JobPayload):
	email: str
	name: str
	inviter_name: str
	event_title: str
	event_id: str


class RecurringCreatedPayload(JobPayload):
	email: str
	name: str
	event_title: str
	date: str


class CommunityEventNewPayload(JobPayload):
	community_id: str
	event_id: str
	event_title: str


class CommunityEventSinglePayload(JobPayload):
	email: str
	name: str
	community_name: str
	event_title: str
	event_id: str


class CommunityInvitePayload(JobPayload):
	email: str
	community_name: str
	inviter_name: str


PAYLOAD_MODELS: Dict[JobType, type[JobPayload]] = {
	JobType.EVENT_UPDATE: EventUpdatePayload,
	JobType.EVENT_UPDATE_SINGLE: EventUpdateSinglePayload,
	JobType.RSVP_CONFIRMATION: RsvpConfirmationPayload,
	JobType.WELCOME: WelcomePayload,
	JobType.VERIFICATION: VerificationPayload,
	JobType.INVITATION: InvitationPayload,
	JobType.RECURRING_CREATED: RecurringCreatedPayload,
	JobType.COMMUNITY_EVENT_NEW: CommunityEventNewPayload,
	JobType.COMMUNITY_EVENT_SINGLE: CommunityEventSinglePayload,
	JobType.COMMUNITY_INVITE: CommunityInvitePayload,
}


__all__ = [
	"DEFAULT_JOB_OPTIONS",
	"JobError",
	"JobItem",
	"JobOptions",
	"JobPayload",
	"JobType",
	"PAYLOAD_MODELS",
	"PermanentJobError",
	"RegistryError",
	"UnknownJobType",
	"options_for",
]
