import asyncio

import pytest

from eventsphere.jobs.queue import JobQueue
from eventsphere.jobs.types import JobItem, JobOptions, JobType


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_enqueue_and_read_through_consumer_group():
    queue = JobQueue("test-q")
    await queue.ensure_group()
    await queue.ensure_group()  # idempotent
    job_id = await queue.enqueue(JobType.WELCOME, {"email": "a@example.com", "name": "Ada"})

    deliveries = await queue.read("c1")
    assert len(deliveries) == 1
    item = JobItem.from_fields(deliveries[0].fields)
    assert item.id == job_id
    assert item.type == "welcome"
    assert item.payload == {"email": "a@example.com", "name": "Ada"}
    assert item.attempts == 0

    assert await queue.read("c2") == []


@pytest.mark.asyncio
async def test_unacked_entries_are_redelivered_to_the_same_consumer():
    queue = JobQueue("test-q")
    await queue.ensure_group()
    await queue.enqueue(JobType.WELCOME, {"email": "a@example.com", "name": "Ada"})
    first = await queue.read("c1")
    pending = await queue.read("c1", pending=True)
    assert [d.entry_id for d in pending] == [first[0].entry_id]

    await queue.ack(first[0].entry_id)
    assert await queue.read("c1", pending=True) == []


@pytest.mark.asyncio
async def test_fifo_order_within_the_stream():
    queue = JobQueue("test-q")
    await queue.ensure_group()
    ids = [await queue.enqueue(JobType.WELCOME, {"email": f"u{i}@example.com", "name": "U"}) for i in range(5)]
    deliveries = await queue.read("c1", count=10)
    assert [JobItem.from_fields(d.fields).id for d in deliveries] == ids


@pytest.mark.asyncio
async def test_ack_with_delete_removes_entry(fake_redis):
    queue = JobQueue("test-q")
    await queue.ensure_group()
    await queue.enqueue(JobType.WELCOME, {"email": "a@example.com", "name": "Ada"})
    [delivery] = await queue.read("c1")
    await queue.ack(delivery.entry_id, delete=True)
    assert await fake_redis.xlen(queue.stream) == 0


@pytest.mark.asyncio
async def test_delayed_retry_is_promoted_when_due():
    clock = FakeClock()
    queue = JobQueue("test-q", clock=clock)
    await queue.ensure_group()
    item = JobItem(id="job-1", type="welcome", payload={"email": "a@example.com", "name": "A"}, attempts=1)
    await queue.schedule_retry(item, 10)

    assert await queue.promote_due() == 0
    clock.now += 11
    assert await queue.promote_due() == 1
    assert await queue.promote_due() == 0

    [delivery] = await queue.read("c1")
    promoted = JobItem.from_fields(delivery.fields)
    assert promoted.id == "job-1" and promoted.attempts == 1


@pytest.mark.asyncio
async def test_concurrent_pollers_promote_a_retry_once(fake_redis):
    clock = FakeClock()
    first = JobQueue("test-q", clock=clock)
    second = JobQueue("test-q", clock=clock)
    await first.ensure_group()
    item = JobItem(id="job-1", type="welcome", payload={"email": "a@example.com", "name": "A"}, attempts=1)
    await first.schedule_retry(item, 5)
    clock.now += 6

    counts = await asyncio.gather(first.promote_due(), second.promote_due())

    assert sorted(counts) == [0, 1]
    assert await fake_redis.xlen(first.stream) == 1
    assert await fake_redis.zcard(first.delayed_key) == 0


@pytest.mark.asyncio
async def test_retry_claimed_elsewhere_is_not_appended(fake_redis, monkeypatch):
    clock = FakeClock()
    queue = JobQueue("test-q", clock=clock)
    item = JobItem(id="job-1", type="welcome", payload={"email": "a@example.com", "name": "A"}, attempts=1)
    stale = [item.to_json()]

    async def _stale_range(*_args, **_kwargs):
        return stale

    monkeypatch.setattr(fake_redis, "zrangebyscore", _stale_range)

    assert await queue.promote_due() == 0
    assert await fake_redis.exists(queue.stream) == 0


@pytest.mark.asyncio
async def test_malformed_delayed_item_is_dropped(fake_redis):
    clock = FakeClock()
    queue = JobQueue("test-q", clock=clock)
    await fake_redis.zadd(queue.delayed_key, {"not json": clock.now - 1})

    assert await queue.promote_due() == 0
    assert await fake_redis.zcard(queue.delayed_key) == 0


@pytest.mark.asyncio
async def test_failed_list_keeps_last_n():
    queue = JobQueue("test-q")
    options = JobOptions(keep_failed=3)
    for idx in range(5):
        item = JobItem(id=f"job-{idx}", type="event-update-single", payload={}, options=options)
        await queue.record_failure(item, "boom")
    failed = await queue.failed(JobType.EVENT_UPDATE_SINGLE)
    assert [row["id"] for row in failed] == ["job-4", "job-3", "job-2"]
    assert failed[0]["error"] == "boom"


def test_default_options_per_type():
    queue_opts = JobItem(id="x", type="event-update-single", payload={}).options
    assert queue_opts == JobOptions()
    from eventsphere.jobs.types import options_for
    single = options_for("event-update-single")
    assert single.remove_on_complete and single.keep_failed == 100
    assert options_for("event-update").attempts == 1
    assert options_for("no-such-type") == JobOptions()
    assert JobOptions(backoff_seconds=2).backoff_for(3) == 8


def test_malformed_fields_raise_value_error():
    with pytest.raises(ValueError):
        JobItem.from_fields({"type": "welcome"})
    with pytest.raises(ValueError):
        JobItem.from_fields({"id": "1", "type": "welcome", "payload": "[1, 2]"})
    with pytest.raises(ValueError):
        JobItem.from_fields({"id": "1", "type": "welcome", "payload": "{not json"})
