"""Tests for the job queue: admission control, state machine, retention."""
import asyncio
import contextlib
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from invoice_intake.core.exceptions import (
    ExtractionFailure,
    InvalidJobTransition,
    QueueFullError,
)
from invoice_intake.schemas.job import JobResult, JobStatus
from invoice_intake.schemas.record import CandidateRecord
from invoice_intake.schemas.validation import ValidationResult
from invoice_intake.services.job_queue import (
    CANCELLED_REASON,
    SHUTDOWN_REASON,
    Job,
    JobQueue,
)

OWNER = "user-1"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 4, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProcessor:
    """Stands in for JobPipeline.run; reports the real checkpoints."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.running = 0
        self.max_running = 0
        self.fail_names: set[str] = set()
        self.gate: asyncio.Event | None = None
        self.progress_seen: list[int] = []

    async def __call__(self, file_path: str, filename: str, report_progress) -> JobResult:
        self.calls.append(filename)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            report_progress(20)
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)
            if filename in self.fail_names:
                raise ExtractionFailure("LLM extraction failed: unreadable scan")
            for checkpoint in (50, 70, 85, 95):
                report_progress(checkpoint)
                await asyncio.sleep(0)
            return JobResult(
                filename=filename,
                record=CandidateRecord(invoice_number=filename),
                validation=ValidationResult(valid=True),
            )
        finally:
            self.running -= 1


@contextlib.asynccontextmanager
async def running(queue: JobQueue):
    await queue.start()
    try:
        yield queue
    finally:
        await queue.stop()


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(processor: FakeProcessor, clock: FakeClock) -> JobQueue:
    return JobQueue(
        processor,
        pool_size=3,
        retention_seconds=3600,
        cleanup_interval_seconds=0,
        max_queue_depth=0,
        clock=clock,
    )


def _upload(tmp_path: Path, name: str) -> str:
    path = tmp_path / name
    path.write_bytes(b"%PDF-1.4 test")
    return str(path)


async def _until(condition, attempts: int = 200) -> None:
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


# ── Submission ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_submit_returns_pending_job_without_processing(queue, processor, tmp_path) -> None:
    job_id = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)

    job = queue.get_job(job_id)
    assert job_id.startswith("job_")
    assert job.status == JobStatus.PENDING
    assert job.progress == 0
    assert job.result is None
    assert processor.calls == []


@pytest.mark.asyncio
async def test_submit_batch_returns_ids_in_order(queue, tmp_path) -> None:
    files = [(_upload(tmp_path, f"{n}.pdf"), f"{n}.pdf") for n in range(3)]

    job_ids = queue.submit_batch(files, OWNER)

    assert [queue.get_job(j).filename for j in job_ids] == ["0.pdf", "1.pdf", "2.pdf"]
    assert len(set(job_ids)) == 3


@pytest.mark.asyncio
async def test_queue_depth_cap(processor, clock, tmp_path) -> None:
    queue = JobQueue(processor, pool_size=1, max_queue_depth=2, clock=clock)
    queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)
    queue.submit(_upload(tmp_path, "b.pdf"), "b.pdf", OWNER)

    with pytest.raises(QueueFullError):
        queue.submit(_upload(tmp_path, "c.pdf"), "c.pdf", OWNER)


@pytest.mark.asyncio
async def test_jobs_are_listed_per_owner(queue, tmp_path) -> None:
    mine = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)
    queue.submit(_upload(tmp_path, "b.pdf"), "b.pdf", "someone-else")

    assert [j.id for j in queue.get_jobs_for(OWNER)] == [mine]


@pytest.mark.asyncio
async def test_default_clock_is_timezone_aware_utc(processor, tmp_path) -> None:
    queue = JobQueue(processor, pool_size=1, retention_seconds=3600, cleanup_interval_seconds=0)
    job_id = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)
    queue.cancel(job_id)

    job = queue.get_job(job_id)
    assert job.created_at.tzinfo == timezone.utc
    assert job.completed_at.tzinfo == timezone.utc
    assert queue.purge_expired() == 0


# ── Processing ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_pool_bounds_concurrent_processing(queue, processor, tmp_path) -> None:
    observed: list[int] = []
    original = processor.__call__

    async def sampling(file_path, filename, report_progress):
        observed.append(queue.stats().processing)
        return await original(file_path, filename, report_progress)

    queue.processor = sampling
    job_ids = [queue.submit(_upload(tmp_path, f"{n}.pdf"), f"{n}.pdf", OWNER) for n in range(50)]

    assert queue.stats().total == 50
    async with running(queue):
        await queue.join()

    stats = queue.stats()
    assert processor.max_running <= 3
    assert max(observed) <= 3
    assert stats.total == 50
    assert stats.completed == 50
    assert stats.processing == 0
    assert stats.active_workers == 0
    assert all(queue.get_job(j).progress == 100 for j in job_ids)


@pytest.mark.asyncio
async def test_jobs_start_in_submission_order(processor, clock, tmp_path) -> None:
    queue = JobQueue(processor, pool_size=1, cleanup_interval_seconds=0, clock=clock)
    names = [f"{n}.pdf" for n in range(5)]
    for name in names:
        queue.submit(_upload(tmp_path, name), name, OWNER)

    async with running(queue):
        await queue.join()

    assert processor.calls == names


@pytest.mark.asyncio
async def test_completed_job_carries_result(queue, clock, tmp_path) -> None:
    job_id = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)

    async with running(queue):
        job = await queue.wait(job_id, timeout=5)

    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    assert job.result.record.invoice_number == "a.pdf"
    assert job.error is None
    assert job.completed_at == clock.now
    assert job.attempts == 1


@pytest.mark.asyncio
async def test_progress_starts_at_dequeue_checkpoint(queue, processor, tmp_path) -> None:
    seen: list[int] = []
    original = processor.__call__

    async def recording(file_path, filename, report_progress):
        seen.append(queue.get_job(job_id).progress)
        return await original(file_path, filename, report_progress)

    queue.processor = recording
    job_id = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)

    async with running(queue):
        await queue.wait(job_id, timeout=5)

    assert seen == [10]


@pytest.mark.asyncio
async def test_failed_job_records_reason_and_deletes_upload(queue, processor, tmp_path) -> None:
    path = _upload(tmp_path, "bad.pdf")
    processor.fail_names.add("bad.pdf")
    job_id = queue.submit(path, "bad.pdf", OWNER)

    async with running(queue):
        job = await queue.wait(job_id, timeout=5)

    assert job.status == JobStatus.FAILED
    assert "unreadable scan" in job.error
    assert job.result is None
    assert not Path(path).exists()


@pytest.mark.asyncio
async def test_job_still_fails_when_upload_cannot_be_deleted(processor, clock, tmp_path) -> None:
    def undeletable(file_path: str) -> None:
        raise PermissionError(file_path)

    queue = JobQueue(
        processor, pool_size=1, cleanup_interval_seconds=0, clock=clock, delete_file=undeletable
    )
    processor.fail_names.add("bad.pdf")
    job_id = queue.submit(_upload(tmp_path, "bad.pdf"), "bad.pdf", OWNER)

    async with running(queue):
        job = await queue.wait(job_id, timeout=5)

    assert job.status == JobStatus.FAILED
    assert queue.stats().active_workers == 0


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_other_jobs(queue, processor, tmp_path) -> None:
    processor.fail_names.add("bad.pdf")
    bad = queue.submit(_upload(tmp_path, "bad.pdf"), "bad.pdf", OWNER)
    good = queue.submit(_upload(tmp_path, "good.pdf"), "good.pdf", OWNER)

    async with running(queue):
        await queue.join()

    assert queue.get_job(bad).status == JobStatus.FAILED
    assert queue.get_job(good).status == JobStatus.COMPLETED


# ── Operator actions ──────────────────────────────────────


@pytest.mark.asyncio
async def test_cancel_pending_job(queue, processor, tmp_path) -> None:
    path = _upload(tmp_path, "a.pdf")
    job_id = queue.submit(path, "a.pdf", OWNER)

    assert queue.cancel(job_id) is True

    job = queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == CANCELLED_REASON
    assert not Path(path).exists()

    async with running(queue):
        await queue.join()
    assert processor.calls == []


@pytest.mark.asyncio
async def test_cancel_processing_job_is_rejected(queue, processor, tmp_path) -> None:
    processor.gate = asyncio.Event()
    job_id = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)

    async with running(queue):
        await _until(lambda: queue.get_job(job_id).status == JobStatus.PROCESSING)
        assert queue.cancel(job_id) is False
        processor.gate.set()
        job = await queue.wait(job_id, timeout=5)

    assert job.status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_cancel_unknown_or_finished_job(queue, tmp_path) -> None:
    job_id = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)
    async with running(queue):
        await queue.wait(job_id, timeout=5)

    assert queue.cancel(job_id) is False
    assert queue.cancel("job_missing") is False


@pytest.mark.asyncio
async def test_retry_failed_job(queue, processor, tmp_path) -> None:
    processor.fail_names.add("a.pdf")
    job_id = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)

    async with running(queue):
        first = await queue.wait(job_id, timeout=5)
        assert first.status == JobStatus.FAILED

        processor.fail_names.clear()
        assert queue.retry(job_id) is True
        assert queue.get_job(job_id).status == JobStatus.PENDING
        assert queue.get_job(job_id).error is None

        job = await queue.wait(job_id, timeout=5)

    assert job.status == JobStatus.COMPLETED
    assert job.attempts == 2


@pytest.mark.asyncio
async def test_retry_only_applies_to_failed_jobs(queue, tmp_path) -> None:
    job_id = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)

    assert queue.retry(job_id) is False
    assert queue.retry("job_missing") is False


@pytest.mark.asyncio
async def test_stop_fails_in_flight_jobs(queue, processor, tmp_path) -> None:
    processor.gate = asyncio.Event()
    path = _upload(tmp_path, "a.pdf")
    job_id = queue.submit(path, "a.pdf", OWNER)

    await queue.start()
    await _until(lambda: queue.get_job(job_id).status == JobStatus.PROCESSING)
    await queue.stop()

    job = queue.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == SHUTDOWN_REASON
    assert not Path(path).exists()


@pytest.mark.asyncio
async def test_wait_times_out_for_unfinished_job(queue, tmp_path) -> None:
    job_id = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)

    with pytest.raises(asyncio.TimeoutError):
        await queue.wait(job_id, timeout=0.01)


@pytest.mark.asyncio
async def test_wait_for_unknown_job(queue) -> None:
    with pytest.raises(KeyError):
        await queue.wait("job_missing")


# ── Retention ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_terminal_jobs_purged_after_retention(queue, clock, tmp_path) -> None:
    done = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)
    async with running(queue):
        await queue.wait(done, timeout=5)
    waiting = queue.submit(_upload(tmp_path, "b.pdf"), "b.pdf", OWNER)

    clock.advance(3599)
    assert queue.purge_expired() == 0
    assert queue.stats().total == 2

    clock.advance(2)
    assert queue.purge_expired() == 1
    assert queue.get_job(done) is None
    # Non-terminal jobs are never purged
    assert queue.get_job(waiting).status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_retried_job_is_not_purged_by_stale_entry(queue, processor, clock, tmp_path) -> None:
    processor.fail_names.add("a.pdf")
    job_id = queue.submit(_upload(tmp_path, "a.pdf"), "a.pdf", OWNER)
    async with running(queue):
        await queue.wait(job_id, timeout=5)

    clock.advance(1800)
    queue.retry(job_id)
    clock.advance(1801)

    assert queue.purge_expired() == 0
    assert queue.get_job(job_id).status == JobStatus.PENDING


# ── State machine ─────────────────────────────────────────


def _job() -> Job:
    return Job(
        id="job_x",
        file_path="/tmp/x.pdf",
        filename="x.pdf",
        owner_id=OWNER,
        created_at=datetime(2024, 4, 1),
    )


def test_pending_job_cannot_complete() -> None:
    job = _job()
    result = JobResult(filename="x.pdf", record=CandidateRecord(), validation=ValidationResult(valid=True))

    with pytest.raises(InvalidJobTransition):
        job.complete(result, datetime(2024, 4, 1))


def test_completed_job_is_terminal() -> None:
    job = _job()
    job.start()
    job.complete(
        JobResult(filename="x.pdf", record=CandidateRecord(), validation=ValidationResult(valid=True)),
        datetime(2024, 4, 1),
    )

    with pytest.raises(InvalidJobTransition):
        job.fail("late failure", datetime(2024, 4, 1))
    with pytest.raises(InvalidJobTransition):
        job.reset()


def test_progress_never_decreases() -> None:
    job = _job()
    job.start()
    job.advance(50)

    with pytest.raises(InvalidJobTransition):
        job.advance(20)
    assert job.progress == 50


def test_invalid_transition_is_an_assertion() -> None:
    assert issubclass(InvalidJobTransition, AssertionError)
