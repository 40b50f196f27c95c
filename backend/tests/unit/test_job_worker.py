import asyncio

import pytest

from eventsphere.jobs.queue import JobQueue
from eventsphere.jobs.types import JobOptions, JobType, PermanentJobError, RegistryError, WelcomePayload
from eventsphere.jobs.worker import HandlerRegistry, JobWorker


def _worker(queue: JobQueue, registry: HandlerRegistry, **kwargs) -> JobWorker:
    return JobWorker(queue=queue, registry=registry, consumer_name="test-0", block_ms=None, **kwargs)


@pytest.mark.asyncio
async def test_handler_receives_validated_payload():
    queue = JobQueue("wq")
    seen: list[WelcomePayload] = []

    async def welcome(payload: WelcomePayload) -> None:
        seen.append(payload)

    registry = HandlerRegistry()
    registry.register(JobType.WELCOME, welcome)
    worker = _worker(queue, registry)
    await queue.enqueue(JobType.WELCOME, {"email": "a@example.com", "name": "Ada"})

    assert await worker.process_once() == 1
    assert seen == [WelcomePayload(email="a@example.com", name="Ada")]
    assert await worker.process_once() == 0


@pytest.mark.asyncio
async def test_unknown_job_type_is_dropped(fake_redis):
    queue = JobQueue("wq")
    worker = _worker(queue, HandlerRegistry())
    await queue.enqueue("mystery", {"x": 1})

    assert await worker.process_once() == 1
    assert await fake_redis.xlen(queue.stream) == 0
    assert await worker.process_once() == 0


@pytest.mark.asyncio
async def test_failing_handler_does_not_block_next_job():
    queue = JobQueue("wq")
    seen: list[str] = []

    async def welcome(payload: WelcomePayload) -> None:
        if payload.name == "boom":
            raise RuntimeError("template exploded")
        seen.append(payload.name)

    registry = HandlerRegistry()
    registry.register(JobType.WELCOME, welcome)
    worker = _worker(queue, registry)
    await queue.enqueue(JobType.WELCOME, {"email": "a@example.com", "name": "boom"})
    await queue.enqueue(JobType.WELCOME, {"email": "b@example.com", "name": "Bea"})

    assert await worker.process_once() == 2
    assert seen == ["Bea"]
    depth = await queue.depth()
    assert depth["delayed"] == 1


@pytest.mark.asyncio
async def test_retries_then_records_failure():
    queue = JobQueue("wq")
    attempts = 0

    async def welcome(payload: WelcomePayload) -> None:
        nonlocal attempts
        attempts += 1
        raise ConnectionError("smtp down")

    registry = HandlerRegistry()
    registry.register(JobType.WELCOME, welcome)
    worker = _worker(queue, registry)
    await queue.enqueue(JobType.WELCOME, {"email": "a@example.com", "name": "Ada"}, JobOptions(attempts=3, backoff_seconds=0))

    for _ in range(3):
        await worker.process_once()
    assert attempts == 3
    failed = await queue.failed(JobType.WELCOME)
    assert len(failed) == 1
    assert failed[0]["attempts"] == "3"
    assert "smtp down" in failed[0]["error"]
    assert await queue.depth() == {"stream": 0, "delayed": 0}


@pytest.mark.asyncio
async def test_permanent_error_skips_retry():
    queue = JobQueue("wq")

    async def welcome(payload: WelcomePayload) -> None:
        raise PermanentJobError("mailbox does not exist")

    registry = HandlerRegistry()
    registry.register(JobType.WELCOME, welcome)
    worker = _worker(queue, registry)
    await queue.enqueue(JobType.WELCOME, {"email": "a@example.com", "name": "Ada"})

    await worker.process_once()
    assert len(await queue.failed(JobType.WELCOME)) == 1
    assert (await queue.depth())["delayed"] == 0


@pytest.mark.asyncio
async def test_invalid_payload_goes_to_failed_list():
    queue = JobQueue("wq")
    called = False

    async def welcome(payload: WelcomePayload) -> None:
        nonlocal called
        called = True

    registry = HandlerRegistry()
    registry.register(JobType.WELCOME, welcome)
    worker = _worker(queue, registry)
    await queue.enqueue(JobType.WELCOME, {"name": "no email"})

    await worker.process_once()
    assert not called
    assert len(await queue.failed(JobType.WELCOME)) == 1


@pytest.mark.asyncio
async def test_handler_timeout_counts_as_failure():
    queue = JobQueue("wq")

    async def welcome(payload: WelcomePayload) -> None:
        await asyncio.sleep(1)

    registry = HandlerRegistry()
    registry.register(JobType.WELCOME, welcome)
    worker = _worker(queue, registry, job_timeout=0.01)
    await queue.enqueue(JobType.WELCOME, {"email": "a@example.com", "name": "Ada"}, JobOptions(attempts=1))

    await worker.process_once()
    failed = await queue.failed(JobType.WELCOME)
    assert len(failed) == 1


@pytest.mark.asyncio
async def test_completed_entry_removed_only_when_configured(fake_redis):
    queue = JobQueue("wq")

    async def noop(payload) -> None:
        return None

    registry = HandlerRegistry()
    registry.register(JobType.WELCOME, noop)
    worker = _worker(queue, registry)
    await queue.enqueue(JobType.WELCOME, {"email": "a@example.com", "name": "A"}, JobOptions(remove_on_complete=False))
    await queue.enqueue(JobType.WELCOME, {"email": "b@example.com", "name": "B"}, JobOptions(remove_on_complete=True))

    assert await worker.process_once() == 2
    assert await fake_redis.xlen(queue.stream) == 1
    assert await queue.read("test-0", pending=True) == []


@pytest.mark.asyncio
async def test_worker_recovers_its_pending_entries_after_restart():
    queue = JobQueue("wq")
    await queue.ensure_group()
    await queue.enqueue(JobType.WELCOME, {"email": "a@example.com", "name": "Ada"})
    # A previous run read the entry and died before acknowledging it.
    assert len(await queue.read("test-0")) == 1

    seen: list[str] = []

    async def welcome(payload: WelcomePayload) -> None:
        seen.append(payload.name)

    registry = HandlerRegistry()
    registry.register(JobType.WELCOME, welcome)
    worker = _worker(queue, registry)
    assert await worker.process_once() == 1
    assert seen == ["Ada"]


def test_registry_validation_reports_missing_types():
    registry = HandlerRegistry()

    async def noop(payload) -> None:
        return None

    registry.register(JobType.WELCOME, noop)
    assert JobType.WELCOME in registry
    with pytest.raises(RegistryError) as exc:
        registry.validate()
    assert "event-update" in str(exc.value)
    registry.validate(required=[JobType.WELCOME])


@pytest.mark.asyncio
async def test_run_forever_stops():
    queue = JobQueue("wq")
    worker = JobWorker(queue=queue, registry=HandlerRegistry(), consumer_name="t", block_ms=None, poll_interval=0.01)
    task = asyncio.create_task(worker.run_forever())
    await asyncio.sleep(0.05)
    worker.stop()
    await asyncio.wait_for(task, timeout=1)
