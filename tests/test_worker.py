"""
tests/test_worker.py: job dispatch, handler failures and chunk processing.
"""

import pytest

from pledgeflow.errors import AllRowsInvalidError, NotFoundError, QueueDeliveryFailure
from pledgeflow.ingestion.chunk_processor import ChunkProcessor
from pledgeflow.ingestion.queue import PROCESS_CHUNK_JOB, RateLimiter
from pledgeflow.ingestion.uploads import submit_upload
from pledgeflow.ingestion.worker import ChunkJobHandler, QueueWorker, build_chunk_worker

from conftest import FakeClock, KICKSTARTER_CSV


def unlimited():
    return RateLimiter(max_jobs=1000, duration=1.0, clock=FakeClock())


class TestQueueWorker:

    def test_successful_job_is_completed(self, queue):
        queue.enqueue("echo", {"value": 42})
        seen = []
        worker = QueueWorker(queue, {"echo": lambda job: job.payload["value"]}, rate_limiter=unlimited())
        worker.on("completed", lambda job, result: seen.append(result))

        assert worker.run_until_idle() == 1
        assert seen == [42]
        assert queue.counts()["waiting"] == 0

    def test_unknown_job_name_fails_delivery(self, queue):
        queue.enqueue("mystery", {}, attempts=1)
        errors = []
        worker = QueueWorker(queue, {}, rate_limiter=unlimited())
        worker.on("failed", lambda job, error: errors.append(error))

        worker.run_until_idle()

        assert isinstance(errors[0], QueueDeliveryFailure)
        assert queue.counts()["failed"] == 1

    def test_handler_error_schedules_retry(self, queue):
        queue.enqueue("explode", {})

        def explode(job):
            raise RuntimeError("kaboom")

        worker = QueueWorker(queue, {"explode": explode}, rate_limiter=unlimited())
        worker.run_until_idle()

        assert queue.counts()["waiting"] == 1
        assert queue.get_job(1)["failed_reason"] == "kaboom"

    def test_listener_errors_do_not_break_settlement(self, queue):
        queue.enqueue("echo", {})
        worker = QueueWorker(queue, {"echo": lambda job: None}, rate_limiter=unlimited())

        def broken_listener(job, result):
            raise RuntimeError("listener")

        worker.on("completed", broken_listener)
        assert worker.run_until_idle() == 1
        assert queue.counts()["active"] == 0

    def test_unknown_event_is_rejected(self, queue):
        worker = QueueWorker(queue, {}, rate_limiter=unlimited())
        with pytest.raises(ValueError):
            worker.on("progress", print)

    def test_concurrency_defaults_from_environment(self, queue, monkeypatch):
        monkeypatch.setenv("QUEUE_CONCURRENCY", "7")
        worker = QueueWorker(queue, {}, rate_limiter=unlimited())
        assert worker.concurrency == 7

    def test_expired_failed_jobs_are_cleaned_before_claiming(self, queue, clock):
        queue.enqueue("explode", {}, attempts=1)
        queue.fail(queue.claim(), RuntimeError("kaboom"))
        clock.advance(8 * 24 * 3600)

        QueueWorker(queue, {}, rate_limiter=unlimited()).run_until_idle()

        assert queue.counts()["failed"] == 0

    def test_cleaning_waits_for_the_clean_interval(self, queue, clock):
        worker = QueueWorker(queue, {}, rate_limiter=unlimited(), clean_interval=3600)
        assert worker.clean_expired_jobs() == 0

        queue.enqueue("explode", {}, attempts=1)
        queue.fail(queue.claim(), RuntimeError("kaboom"))
        clock.advance(8 * 24 * 3600)

        assert worker.clean_expired_jobs() == 0
        assert queue.counts()["failed"] == 1

        worker.clean_interval = 0
        assert worker.clean_expired_jobs() == 1

    def test_clean_interval_from_environment(self, queue, monkeypatch):
        monkeypatch.setenv("QUEUE_CLEAN_INTERVAL_SECONDS", "120")
        worker = QueueWorker(queue, {}, rate_limiter=unlimited())
        assert worker.clean_interval == 120.0

    def test_start_twice_is_an_error(self, queue):
        worker = QueueWorker(queue, {}, rate_limiter=unlimited(), poll_interval=0.01)
        worker.start()
        try:
            with pytest.raises(RuntimeError):
                worker.start()
        finally:
            worker.close()


class TestChunkProcessor:

    def test_process_chunk_reports_result(self, db, queue, project_id):
        submit_upload(db, queue, project_id, KICKSTARTER_CSV)
        chunk_id = queue.claim().payload["chunkId"]

        result = ChunkProcessor(db).process_chunk(chunk_id)

        assert result["success"] is True
        assert result["platform"] == "KICKSTARTER"
        assert result["processed_rows"] == 1
        assert result["skipped"] is False

        again = ChunkProcessor(db).process_chunk(chunk_id)
        assert again["skipped"] is True

    def test_unknown_chunk_raises(self, db):
        with pytest.raises(NotFoundError):
            ChunkProcessor(db).process_chunk(404)

    def test_build_chunk_worker_processes_uploads(self, db, queue, project_id):
        submit_upload(db, queue, project_id, KICKSTARTER_CSV)
        worker = build_chunk_worker(db, queue, rate_limiter=unlimited())

        assert worker.run_until_idle() == 1
        assert db.execute_query("SELECT status FROM csv_uploads")[0]["status"] == "COMPLETED"


class BrokenCompletion:
    """Lifecycle stand-in whose completion check always errors."""

    def evaluate_completion(self, upload_id):
        raise RuntimeError("completion check unavailable")


class StubProcessor:

    def __init__(self, error=None):
        self.error = error

    def process_chunk(self, chunk_id, final_attempt=True):
        if self.error:
            raise self.error
        return {'success': True, 'chunk_id': chunk_id}


class TestChunkJobHandler:

    def claim_chunk_job(self, queue):
        queue.enqueue(PROCESS_CHUNK_JOB, {"chunkId": 7, "uploadId": 3, "projectId": 1})
        return queue.claim()

    def test_processing_error_survives_failed_completion_check(self, db, queue):
        handler = ChunkJobHandler(
            db,
            chunk_processor=StubProcessor(AllRowsInvalidError(["Row 2: backer_email: Invalid email address"])),
            lifecycle=BrokenCompletion(),
        )

        with pytest.raises(AllRowsInvalidError):
            handler(self.claim_chunk_job(queue))

    def test_result_survives_failed_completion_check(self, db, queue):
        handler = ChunkJobHandler(db, chunk_processor=StubProcessor(), lifecycle=BrokenCompletion())
        assert handler(self.claim_chunk_job(queue)) == {'success': True, 'chunk_id': 7}

    def test_worker_records_the_processing_error(self, db, queue):
        handler = ChunkJobHandler(
            db,
            chunk_processor=StubProcessor(AllRowsInvalidError(["Row 2: price: Must be a positive number"])),
            lifecycle=BrokenCompletion(),
        )
        queue.enqueue(PROCESS_CHUNK_JOB, {"chunkId": 7, "uploadId": 3, "projectId": 1})

        QueueWorker(queue, {PROCESS_CHUNK_JOB: handler}, rate_limiter=unlimited()).run_until_idle()

        assert queue.get_job(1)["failed_reason"].startswith("All rows failed validation")
