"""Tests for the durable job store and its claim protocol"""

import asyncio
from datetime import timedelta

import pytest

from forum.core.exceptions import StoreConnectionError
from forum.infra.database import Database
from forum.jobs.models import JobState, utcnow
from forum.jobs.schemas import JobOutcome
from forum.jobs.store import JobStore


class TestClaim:
    @pytest.mark.asyncio
    async def test_empty_store(self, store):
        assert await store.claim_one() is None

    @pytest.mark.asyncio
    async def test_future_record_not_claimed(self, store, seed):
        await seed(delay=timedelta(hours=1))

        assert await store.claim_one() is None

    @pytest.mark.asyncio
    async def test_claim_marks_running(self, store, seed):
        record = await seed()
        now = utcnow()

        claimed = await store.claim_one(now)

        assert claimed.id == record.id
        assert claimed.running_at == now
        assert claimed.done_at is None

        stored = await store.get(record.id)
        assert stored.running_at == now
        assert stored.state_at(utcnow()) == JobState.RUNNING

    @pytest.mark.asyncio
    async def test_claimed_record_not_claimed_again(self, store, seed):
        await seed()

        assert await store.claim_one() is not None
        assert await store.claim_one() is None

    @pytest.mark.asyncio
    async def test_claims_oldest_scheduled_first(self, store, seed):
        later = await seed(delay=timedelta(seconds=-10))
        earlier = await seed(delay=timedelta(seconds=-60))

        first = await store.claim_one()
        second = await store.claim_one()

        assert [first.id, second.id] == [earlier.id, later.id]

    @pytest.mark.asyncio
    async def test_terminal_record_never_claimed(self, store, seed):
        record = await seed()
        await store.claim_one()
        await store.complete(record.id, JobOutcome.success())

        assert await store.claim_one() is None

    @pytest.mark.asyncio
    async def test_becomes_claimable_once_due(self, store, seed):
        record = await seed(delay=timedelta(minutes=5))

        assert await store.claim_one(utcnow()) is None

        claimed = await store.claim_one(utcnow() + timedelta(minutes=6))
        assert claimed.id == record.id

    @pytest.mark.asyncio
    async def test_concurrent_claims_are_disjoint(self, store, seed):
        """Every record goes to exactly one claimant."""
        records = [await seed() for _ in range(30)]

        async def claimant():
            claimed = []
            for _ in range(10):
                record = await store.claim_one()
                if record is not None:
                    claimed.append(record.id)
            return claimed

        results = await asyncio.gather(*(claimant() for _ in range(8)))
        claimed = [record_id for result in results for record_id in result]

        assert len(claimed) == len(records)
        assert set(claimed) == {record.id for record in records}

    @pytest.mark.asyncio
    async def test_concurrent_claims_fewer_attempts_than_records(self, store, seed):
        """Four claimants making five attempts each take exactly twenty of forty records."""
        records = [await seed() for _ in range(40)]

        async def claimant():
            return [(await store.claim_one()).id for _ in range(5)]

        results = await asyncio.gather(*(claimant() for _ in range(4)))
        claimed = [record_id for result in results for record_id in result]

        assert len(claimed) == 20
        assert len(set(claimed)) == 20
        assert set(claimed) <= {record.id for record in records}

        pending = await store.list_records(JobState.PENDING, limit=100)
        assert len(pending) == 20
        assert not {record.id for record in pending} & set(claimed)


class TestComplete:
    @pytest.mark.asyncio
    async def test_success(self, store, seed):
        record = await seed()
        claimed = await store.claim_one()

        applied = await store.complete(
            record.id, JobOutcome.success({"ok": True}), claimed_at=claimed.running_at
        )

        assert applied is True
        stored = await store.get(record.id)
        assert stored.done_at is not None
        assert stored.error is None
        assert stored.state_at(utcnow()) == JobState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_failure_records_error(self, store, seed):
        record = await seed()
        await store.claim_one()

        await store.complete(record.id, JobOutcome.failure("Recipient bounced"))

        stored = await store.get(record.id)
        assert stored.error == "Recipient bounced"
        assert stored.state_at(utcnow()) == JobState.FAILED

    @pytest.mark.asyncio
    async def test_failure_without_message(self, store, seed):
        record = await seed()
        await store.claim_one()

        await store.complete(record.id, JobOutcome(succeeded=False))

        assert (await store.get(record.id)).error == "Job failed"

    @pytest.mark.asyncio
    async def test_terminal_record_untouched(self, store, seed):
        record = await seed()
        await store.claim_one()
        await store.complete(record.id, JobOutcome.failure("first"))
        done_at = (await store.get(record.id)).done_at

        applied = await store.complete(record.id, JobOutcome.success())

        assert applied is False
        stored = await store.get(record.id)
        assert stored.error == "first"
        assert stored.done_at == done_at

    @pytest.mark.asyncio
    async def test_pending_record_untouched(self, store, seed):
        record = await seed()

        assert await store.complete(record.id, JobOutcome.success()) is False
        assert (await store.get(record.id)).done_at is None

    @pytest.mark.asyncio
    async def test_stale_claim_token_ignored(self, store, seed):
        """A worker whose claim was swept and reclaimed cannot finish the new run."""
        record = await seed(delay=timedelta(minutes=-2))
        first = await store.claim_one(utcnow() - timedelta(minutes=1))
        await store.sweep_stale()
        second = await store.claim_one()

        applied = await store.complete(
            record.id, JobOutcome.success(), claimed_at=first.running_at
        )

        assert applied is False
        stored = await store.get(record.id)
        assert stored.running_at == second.running_at
        assert stored.done_at is None


class TestReleaseForRetry:
    @pytest.mark.asyncio
    async def test_release_consumes_retry(self, store, seed):
        record = await seed()
        claimed = await store.claim_one()
        run_at = utcnow() + timedelta(seconds=30)

        applied = await store.release_for_retry(
            record.id, "Recipient bounced", run_at, claimed_at=claimed.running_at
        )

        assert applied is True
        stored = await store.get(record.id)
        assert stored.retries == 1
        assert stored.running_at is None
        assert stored.scheduled_at == run_at
        assert stored.error == "Recipient bounced"
        assert stored.state_at(utcnow()) == JobState.SCHEDULED

    @pytest.mark.asyncio
    async def test_release_requires_running(self, store, seed):
        record = await seed()

        assert await store.release_for_retry(record.id, "boom", utcnow()) is False
        assert (await store.get(record.id)).retries == 0


class TestSweep:
    @pytest.mark.asyncio
    async def test_nothing_stale(self, store, seed):
        await seed()
        await store.claim_one()

        result = await store.sweep_stale()

        assert result.total == 0

    @pytest.mark.asyncio
    async def test_release_stale_with_retries_left(self, store, seed):
        record = await seed(delay=timedelta(minutes=-1), timeout_msecs=1000, max_retries=2)
        await store.claim_one(utcnow() - timedelta(seconds=5))
        now = utcnow()

        result = await store.sweep_stale(now)

        assert result.released == [record.id]
        assert result.expired == []
        stored = await store.get(record.id)
        assert stored.running_at is None
        assert stored.retries == 1
        assert stored.scheduled_at == now
        assert stored.error == "Job timed out after 1000ms"
        assert await store.claim_one() is not None

    @pytest.mark.asyncio
    async def test_expire_stale_without_retries(self, store, seed):
        record = await seed(delay=timedelta(minutes=-1), timeout_msecs=1000, max_retries=0)
        await store.claim_one(utcnow() - timedelta(seconds=5))

        result = await store.sweep_stale()

        assert result.expired == [record.id]
        stored = await store.get(record.id)
        assert stored.state_at(utcnow()) == JobState.FAILED
        assert stored.error == "Job timed out after 1000ms"

    @pytest.mark.asyncio
    async def test_grace_period(self, store, seed):
        await seed(delay=timedelta(minutes=-1), timeout_msecs=1000)
        await store.claim_one(utcnow() - timedelta(seconds=5))

        result = await store.sweep_stale(grace_ms=60_000)

        assert result.total == 0


class TestInspection:
    @pytest.mark.asyncio
    async def test_list_records_by_state(self, store, seed):
        done = await seed()
        await store.claim_one()
        await store.complete(done.id, JobOutcome.success())
        pending = await seed()
        scheduled = await seed(delay=timedelta(hours=1))

        assert [r.id for r in await store.list_records(JobState.SUCCEEDED)] == [done.id]
        assert [r.id for r in await store.list_records(JobState.PENDING)] == [pending.id]
        assert [r.id for r in await store.list_records(JobState.SCHEDULED)] == [scheduled.id]
        assert await store.list_records(JobState.FAILED) == []

        everything = await store.list_records()
        assert [r.id for r in everything] == [scheduled.id, pending.id, done.id]

    @pytest.mark.asyncio
    async def test_list_records_limit(self, store, seed):
        for _ in range(5):
            await seed()

        assert len(await store.list_records(limit=3)) == 3

    @pytest.mark.asyncio
    async def test_stats(self, store, seed):
        succeeded = await seed()
        await store.claim_one()
        await store.complete(succeeded.id, JobOutcome.success())

        failed = await seed()
        await store.claim_one()
        await store.complete(failed.id, JobOutcome.failure("boom"))

        await seed(delay=timedelta(minutes=-1), timeout_msecs=1000)
        await store.claim_one(utcnow() - timedelta(seconds=5))

        await seed()
        await seed(delay=timedelta(hours=1))
        await seed("welcome_email", {"user_id": 1, "username": "a", "email": "a@b.c"})

        stats = await store.stats()

        assert stats.total == 6
        assert stats.succeeded == 1
        assert stats.failed == 1
        assert stats.running == 1
        assert stats.stale == 1
        assert stats.pending == 2
        assert stats.scheduled == 1
        assert stats.by_task == {"process_topic": 5, "welcome_email": 1}

    @pytest.mark.asyncio
    async def test_stats_empty(self, store):
        stats = await store.stats()

        assert stats.total == 0
        assert stats.by_task == {}


@pytest.mark.asyncio
async def test_unreachable_store(tmp_path, settings_factory):
    """Connection failures surface as StoreConnectionError."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'jobs.db'}"
    database = Database(settings_factory(url))
    store = JobStore(database)

    try:
        with pytest.raises(StoreConnectionError, match="Job store unavailable"):
            await store.claim_one()
    finally:
        await database.close()
