"""
Worker pool that drains the CSV processing queue.
"""

import os
import sys
import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

import structlog
from dotenv import load_dotenv

from pledgeflow.errors import QueueDeliveryFailure
from pledgeflow.ingestion.chunk_processor import ChunkProcessor
from pledgeflow.ingestion.lifecycle import UploadLifecycleStore
from pledgeflow.ingestion.queue import PROCESS_CHUNK_JOB, Job, JobQueue, RateLimiter
from pledgeflow.monitoring.logger_config import OperationLogger

load_dotenv()

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Any]


class ChunkJobHandler:
    """Runs one chunk job and evaluates its upload's completion afterwards."""

    def __init__(self, db, chunk_processor: ChunkProcessor = None, lifecycle: UploadLifecycleStore = None):
        self.lifecycle = lifecycle or UploadLifecycleStore(db)
        self.chunk_processor = chunk_processor or ChunkProcessor(db, lifecycle=self.lifecycle)

    def __call__(self, job: Job) -> Dict[str, Any]:
        chunk_id = job.payload['chunkId']
        upload_id = job.payload['uploadId']

        with OperationLogger('process_chunk', job_id=job.id, chunk_id=chunk_id, upload_id=upload_id):
            try:
                return self.chunk_processor.process_chunk(chunk_id, final_attempt=job.is_final_attempt)
            finally:
                self._report_completion(upload_id)

    def _report_completion(self, upload_id: int) -> None:
        # Runs while a processing error may be in flight; it must not replace it.
        try:
            completion = self.lifecycle.evaluate_completion(upload_id)
        except Exception as e:
            logger.error(f"Completion check for upload {upload_id} failed: {e}")
            return

        if completion:
            logger.info(
                f"Upload {upload_id} is {completion['status']}: "
                f"{completion['completed_chunks']} completed, {completion['failed_chunks']} failed chunks"
            )


class QueueWorker:
    """Consumes jobs with bounded concurrency and a start-rate limit."""

    def __init__(
        self,
        queue: JobQueue,
        handlers: Dict[str, JobHandler],
        concurrency: int = None,
        rate_limiter: RateLimiter = None,
        poll_interval: float = None,
        clean_interval: float = None
    ):
        self.queue = queue
        self.handlers = handlers
        self.concurrency = concurrency or int(os.getenv('QUEUE_CONCURRENCY', '5'))
        self.rate_limiter = rate_limiter or RateLimiter(
            max_jobs=int(os.getenv('QUEUE_RATE_LIMIT_MAX', '10')),
            duration=int(os.getenv('QUEUE_RATE_LIMIT_DURATION_MS', '1000')) / 1000.0,
        )
        self.poll_interval = poll_interval or float(os.getenv('QUEUE_POLL_INTERVAL_SECONDS', '1'))
        if clean_interval is None:
            clean_interval = float(os.getenv('QUEUE_CLEAN_INTERVAL_SECONDS', '3600'))
        self.clean_interval = clean_interval
        self._last_clean: Optional[float] = None

        self._slots = threading.BoundedSemaphore(self.concurrency)
        self._stop_event = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._dispatcher: Optional[threading.Thread] = None
        self._listeners: Dict[str, List[Callable]] = {'completed': [], 'failed': []}

        logger.info(f"Queue worker initialized for {queue.name} (concurrency: {self.concurrency})")

    def on(self, event: str, listener: Callable) -> None:
        """Register a listener for ``completed`` (job, result) or ``failed`` (job, error)."""
        if event not in self._listeners:
            raise ValueError(f"Unknown worker event: {event}")
        self._listeners[event].append(listener)

    def _emit(self, event: str, job: Job, value: Any) -> None:
        for listener in self._listeners[event]:
            try:
                listener(job, value)
            except Exception as e:
                logger.error(f"Worker {event} listener failed: {e}")

    def execute(self, job: Job) -> bool:
        """Run one claimed job and settle it on the queue. Returns True on success."""
        structlog.contextvars.bind_contextvars(job_id=job.id, job_name=job.name)
        try:
            handler = self.handlers.get(job.name)
            if handler is None:
                raise QueueDeliveryFailure(f"No handler registered for job {job.name}")

            result = handler(job)

        except Exception as e:
            failure = e if isinstance(e, QueueDeliveryFailure) else QueueDeliveryFailure(str(e))
            try:
                self.queue.fail(job, e)
            except Exception as settle_error:
                # Left active; the stall timeout hands it out again.
                logger.error(f"Failed to record failure of job {job.id}: {settle_error}")
            self._emit('failed', job, failure)
            return False

        else:
            self.queue.complete(job)
            self._emit('completed', job, result)
            return True

        finally:
            structlog.contextvars.unbind_contextvars('job_id', 'job_name')

    def clean_expired_jobs(self) -> int:
        """Drop failed jobs past their retention, at most once per clean interval."""
        now = time.monotonic()
        if self._last_clean is not None and now - self._last_clean < self.clean_interval:
            return 0
        self._last_clean = now

        try:
            return self.queue.clean('failed')
        except Exception as e:
            logger.error(f"Failed to clean expired jobs: {e}")
            return 0

    def _run_slot(self, job: Job) -> None:
        try:
            self.execute(job)
        except Exception as e:
            logger.error(f"Job {job.id} could not be settled: {e}")
        finally:
            self._slots.release()

    def _dispatch_loop(self) -> None:
        while not self._stop_event.is_set():
            self.clean_expired_jobs()

            if not self._slots.acquire(timeout=self.poll_interval):
                continue

            if not self.rate_limiter.acquire(self._stop_event):
                self._slots.release()
                break

            try:
                job = self.queue.claim()
            except Exception as e:
                logger.error(f"Failed to claim job: {e}")
                job = None

            if job is None:
                self._slots.release()
                self._stop_event.wait(self.poll_interval)
                continue

            self._executor.submit(self._run_slot, job)

    def start(self) -> None:
        """Start the dispatcher thread and the worker pool."""
        if self._dispatcher is not None:
            raise RuntimeError("Worker already started")

        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix='pledgeflow-worker')
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name='pledgeflow-dispatcher', daemon=True)
        self._dispatcher.start()
        logger.info(f"Queue worker started on {self.queue.name}")

    def close(self, wait: bool = True) -> None:
        """Stop claiming jobs; with ``wait`` lets running jobs finish."""
        self._stop_event.set()
        if self._dispatcher is not None:
            self._dispatcher.join()
            self._dispatcher = None
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        logger.info("Queue worker stopped")

    def run_until_idle(self, max_jobs: int = None) -> int:
        """Process due jobs one at a time in the calling thread until none are ready."""
        processed = 0
        self.clean_expired_jobs()
        while max_jobs is None or processed < max_jobs:
            self.rate_limiter.acquire()
            job = self.queue.claim()
            if job is None:
                break
            self.execute(job)
            processed += 1
        return processed


def build_chunk_worker(db, queue: JobQueue = None, **worker_options) -> QueueWorker:
    """Wire a queue worker with the chunk processing handler."""
    queue = queue or JobQueue(db)
    return QueueWorker(queue, {PROCESS_CHUNK_JOB: ChunkJobHandler(db)}, **worker_options)


def main():
    """Main entry point for the queue worker."""
    import argparse

    from pledgeflow.database.connection import create_database_manager
    from pledgeflow.monitoring.logger_config import setup_logging

    parser = argparse.ArgumentParser(description='Run the CSV processing worker')
    parser.add_argument('--once', action='store_true', help='Process ready jobs and exit')
    parser.add_argument('--health-check', action='store_true', help='Perform health check')
    parser.add_argument('--init-schema', action='store_true', help='Create tables before starting')
    parser.add_argument('--clean', action='store_true', help='Delete expired failed jobs and exit')

    args = parser.parse_args()

    setup_logging()
    db = create_database_manager()

    try:
        if args.health_check:
            healthy = db.health_check()
            sys.exit(0 if healthy else 1)

        if args.init_schema:
            db.initialize_schema()

        worker = build_chunk_worker(db)

        if args.clean:
            removed = worker.queue.clean('failed')
            print(f"Removed {removed} expired failed jobs")
            return

        if args.once:
            processed = worker.run_until_idle()
            print(f"Processed {processed} jobs")
            return

        worker.start()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Worker stopped by user")
        finally:
            worker.close()
    finally:
        db.close()


if __name__ == "__main__":
    main()
