"""Event records and the narrow store/directory interfaces the pipeline consumes.

The document store itself lives outside this service; the in-memory
implementations back local development and tests.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

import ulid


class RecurringRule(str, enum.Enum):
	NONE = "NONE"
	WEEKLY = "WEEKLY"
	MONTHLY = "MONTHLY"

	@classmethod
	def parse(cls, value: str | None) -> "RecurringRule":
		try:
			return cls((value or cls.NONE.value).upper())
		except ValueError:
			return cls.NONE


@dataclass(slots=True)
class EventRecord:
	id: str
	title: str
	organizer_id: str
	start_at: datetime
	end_at: datetime
	description: str = ""
	category: str = "OTHER"
	visibility: str = "PUBLIC"
	community_id: Optional[str] = None
	location: dict = field(default_factory=dict)
	capacity: int = 1
	attendee_count: int = 0
	recurring_rule: RecurringRule = RecurringRule.NONE
	photos: list[str] = field(default_factory=list)
	parent_id: Optional[str] = None

	@property
	def duration(self):
		return self.end_at - self.start_at

	def derive(self, start_at: datetime) -> "EventRecord":
		"""Copy the descriptive fields into a new instance starting at ``start_at``."""
		return replace(
			self,
			id=ulid.new().str,
			start_at=start_at,
			end_at=start_at + self.duration,
			location=dict(self.location),
			attendee_count=0,
			photos=[],
			recurring_rule=RecurringRule.NONE,
			parent_id=self.id,
		)


@dataclass(frozen=True, slots=True)
class Recipient:
	user_id: str
	email: str
	name: str


class EventStore(Protocol):
	async def get(self, event_id: str) -> Optional[EventRecord]:
		...

	async def list_recurring(self) -> Sequence[EventRecord]:
		...

	async def find_instance(self, organizer_id: str, title: str, start_at: datetime) -> Optional[EventRecord]:
		...

	async def create(self, record: EventRecord) -> EventRecord:
		...

	async def add_photo(self, event_id: str, url: str) -> EventRecord:
		...


class AttendeeDirectory(Protocol):
	async def attendees_of(self, event_id: str) -> Sequence[Recipient]:
		...


class CommunityDirectory(Protocol):
	async def members_of(self, community_id: str) -> Sequence[Recipient]:
		...

	async def name_of(self, community_id: str) -> Optional[str]:
		...


class UserDirectory(Protocol):
	async def get(self, user_id: str) -> Optional[Recipient]:
		...


class InMemoryEventStore:
	def __init__(self, events: Iterable[EventRecord] = ()) -> None:
		self._events: dict[str, EventRecord] = {event.id: event for event in events}
		self._lock = asyncio.Lock()

	async def get(self, event_id: str) -> Optional[EventRecord]:
		return self._events.get(event_id)

	async def list_recurring(self) -> Sequence[EventRecord]:
		return [event for event in self._events.values() if event.recurring_rule is not RecurringRule.NONE]

	async def find_instance(self, organizer_id: str, title: str, start_at: datetime) -> Optional[EventRecord]:
		for event in self._events.values():
			if event.organizer_id == organizer_id and event.title == title and event.start_at == start_at:
				return event
		return None

	async def create(self, record: EventRecord) -> EventRecord:
		async with self._lock:
			self._events[record.id] = record
		return record

	async def add_photo(self, event_id: str, url: str) -> EventRecord:
		async with self._lock:
			event = self._events.get(event_id)
			if event is None:
				raise KeyError(event_id)
			event.photos.append(url)
			return event

	def all(self) -> list[EventRecord]:
		return list(self._events.values())


class InMemoryAttendeeDirectory:
	def __init__(self, attendees: dict[str, Sequence[Recipient]] | None = None) -> None:
		self._attendees = {key: list(value) for key, value in (attendees or {}).items()}

	def add(self, event_id: str, recipient: Recipient) -> None:
		self._attendees.setdefault(event_id, []).append(recipient)

	async def attendees_of(self, event_id: str) -> Sequence[Recipient]:
		return list(self._attendees.get(event_id, ()))


class InMemoryCommunityDirectory:
	def __init__(
		self,
		members: dict[str, Sequence[Recipient]] | None = None,
		names: dict[str, str] | None = None,
	) -> None:
		self._members = {key: list(value) for key, value in (members or {}).items()}
		self._names = dict(names or {})

	def add(self, community_id: str, recipient: Recipient) -> None:
		self._members.setdefault(community_id, []).append(recipient)

	async def members_of(self, community_id: str) -> Sequence[Recipient]:
		return list(self._members.get(community_id, ()))

	async def name_of(self, community_id: str) -> Optional[str]:
		return self._names.get(community_id)


class InMemoryUserDirectory:
	def __init__(self, users: Iterable[Recipient] = ()) -> None:
		self._users = {user.user_id: user for user in users}

	def add(self, recipient: Recipient) -> None:
		self._users[recipient.user_id] = recipient

	async def get(self, user_id: str) -> Optional[Recipient]:
		return self._users.get(user_id)


__all__ = [
	"AttendeeDirectory",
	"CommunityDirectory",
	"EventRecord",
	"EventStore",
	"InMemoryAttendeeDirectory",
	"InMemoryCommunityDirectory",
	"InMemoryEventStore",
	"InMemoryUserDirectory",
	"Recipient",
	"RecurringRule",
	"UserDirectory",
]
