"""Lightweight service container wiring the upload gate and job pipeline."""

from __future__ import annotations

from typing import Optional

from eventsphere.domain.events import (
	AttendeeDirectory,
	CommunityDirectory,
	EventStore,
	InMemoryAttendeeDirectory,
	InMemoryCommunityDirectory,
	InMemoryEventStore,
	InMemoryUserDirectory,
	UserDirectory,
)
from eventsphere.infra.counters import CounterStore, RedisCounterStore
from eventsphere.infra.storage import LocalObjectStorage, ObjectStorage
from eventsphere.jobs.handlers import NotificationHandlers
from eventsphere.jobs.producers import NotificationProducer
from eventsphere.jobs.queue import JobQueue
from eventsphere.jobs.recurring import RecurringInstanceGenerator
from eventsphere.jobs.worker import HandlerRegistry
from eventsphere.notifications.mailer import EmailSender, SMTPEmailSender
from eventsphere.notifications.service import NotificationMailer
from eventsphere.notifications.templates import TemplateRenderer
from eventsphere.uploads.gate import UploadGate
from eventsphere.uploads.images import ImageIntegrityChecker
from eventsphere.uploads.quota import UploadQuotaTracker
from eventsphere.uploads.scanner import VirusScanner, build_scanner

_scanner: Optional[VirusScanner] = None
_counter_store: Optional[CounterStore] = None
_quota: Optional[UploadQuotaTracker] = None
_gate: Optional[UploadGate] = None
_storage: Optional[ObjectStorage] = None
_queue: Optional[JobQueue] = None
_sender: Optional[EmailSender] = None
_events: Optional[EventStore] = None
_attendees: Optional[AttendeeDirectory] = None
_communities: Optional[CommunityDirectory] = None
_users: Optional[UserDirectory] = None


def configure(
	*,
	scanner: Optional[VirusScanner] = None,
	counter_store: Optional[CounterStore] = None,
	storage: Optional[ObjectStorage] = None,
	queue: Optional[JobQueue] = None,
	sender: Optional[EmailSender] = None,
	events: Optional[EventStore] = None,
	attendees: Optional[AttendeeDirectory] = None,
	communities: Optional[CommunityDirectory] = None,
	users: Optional[UserDirectory] = None,
) -> None:
	"""Override collaborators; anything left out keeps its current instance."""
	global _scanner, _counter_store, _quota, _gate, _storage, _queue, _sender
	global _events, _attendees, _communities, _users
	if scanner is not None:
		_scanner = scanner
		_gate = None
	if counter_store is not None:
		_counter_store = counter_store
		_quota = None
		_gate = None
	if storage is not None:
		_storage = storage
	if queue is not None:
		_queue = queue
	if sender is not None:
		_sender = sender
	if events is not None:
		_events = events
	if attendees is not None:
		_attendees = attendees
	if communities is not None:
		_communities = communities
	if users is not None:
		_users = users


def reset() -> None:
	global _scanner, _counter_store, _quota, _gate, _storage, _queue, _sender
	global _events, _attendees, _communities, _users
	_scanner = _counter_store = _quota = _gate = _storage = _queue = _sender = None
	_events = _attendees = _communities = _users = None


def get_scanner() -> VirusScanner:
	global _scanner
	if _scanner is None:
		_scanner = build_scanner()
	return _scanner


def get_quota_tracker() -> UploadQuotaTracker:
	global _counter_store, _quota
	if _quota is None:
		if _counter_store is None:
			_counter_store = RedisCounterStore()
		_quota = UploadQuotaTracker(_counter_store)
	return _quota


def get_upload_gate() -> UploadGate:
	global _gate
	if _gate is None:
		_gate = UploadGate(quota=get_quota_tracker(), scanner=get_scanner(), images=ImageIntegrityChecker())
	return _gate


def get_storage() -> ObjectStorage:
	global _storage
	if _storage is None:
		_storage = LocalObjectStorage()
	return _storage


def get_job_queue() -> JobQueue:
	global _queue
	if _queue is None:
		_queue = JobQueue()
	return _queue


def get_email_sender() -> EmailSender:
	global _sender
	if _sender is None:
		_sender = SMTPEmailSender()
	return _sender


def get_event_store() -> EventStore:
	global _events
	if _events is None:
		_events = InMemoryEventStore()
	return _events


def get_attendee_directory() -> AttendeeDirectory:
	global _attendees
	if _attendees is None:
		_attendees = InMemoryAttendeeDirectory()
	return _attendees


def get_community_directory() -> CommunityDirectory:
	global _communities
	if _communities is None:
		_communities = InMemoryCommunityDirectory()
	return _communities


def get_user_directory() -> UserDirectory:
	global _users
	if _users is None:
		_users = InMemoryUserDirectory()
	return _users


def get_producer() -> NotificationProducer:
	return NotificationProducer(get_job_queue())


def build_handler_registry() -> HandlerRegistry:
	handlers = NotificationHandlers(
		mailer=NotificationMailer(TemplateRenderer(), get_email_sender()),
		queue=get_job_queue(),
		events=get_event_store(),
		attendees=get_attendee_directory(),
		communities=get_community_directory(),
	)
	registry = HandlerRegistry.from_bindings(handlers.bindings())
	registry.validate()
	return registry


def build_recurring_generator() -> RecurringInstanceGenerator:
	return RecurringInstanceGenerator(events=get_event_store(), users=get_user_directory(), producer=get_producer())


__all__ = [
	"build_handler_registry",
	"build_recurring_generator",
	"configure",
	"get_attendee_directory",
	"get_community_directory",
	"get_email_sender",
	"get_event_store",
	"get_job_queue",
	"get_producer",
	"get_quota_tracker",
	"get_scanner",
	"get_storage",
	"get_upload_gate",
	"get_user_directory",
	"reset",
]
