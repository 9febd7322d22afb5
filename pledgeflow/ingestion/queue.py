"""
Durable job queue backed by the relational store.

Jobs are rows in the ``jobs`` table. Delivery is at-least-once: a job is
claimed by one worker, and a claim that is not settled within the stall
timeout is handed out again.
"""

import os
import time
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv

from pledgeflow.database.base import TransactionCursor, dump_json, load_json

load_dotenv()

logger = logging.getLogger(__name__)

CSV_PROCESSING_QUEUE = 'csv-processing'
PROCESS_CHUNK_JOB = 'process-chunk'

JOB_STATUSES = ('waiting', 'active', 'completed', 'failed')


@dataclass
class RetryPolicy:
    """Attempt count and exponential backoff applied to failed jobs."""

    attempts: int = 3
    backoff_delay: float = 2.0

    @classmethod
    def from_env(cls) -> 'RetryPolicy':
        return cls(
            attempts=int(os.getenv('JOB_ATTEMPTS', '3')),
            backoff_delay=int(os.getenv('JOB_BACKOFF_MS', '2000')) / 1000.0,
        )

    def delay_for(self, attempts_made: int, backoff_delay: float = None) -> float:
        """Delay before the next attempt: backoff * 2^(attempts_made - 1)."""
        base = self.backoff_delay if backoff_delay is None else backoff_delay
        return base * (2 ** max(attempts_made - 1, 0))


@dataclass
class Job:
    id: int
    name: str
    payload: Dict[str, Any]
    attempts: int
    attempts_made: int
    backoff_delay: float
    remove_on_complete: bool = True

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts_made >= self.attempts

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Job':
        return cls(
            id=row['id'],
            name=row['name'],
            payload=load_json(row['payload']),
            attempts=row['attempts'],
            attempts_made=row['attempts_made'],
            backoff_delay=float(row['backoff_delay']),
            remove_on_complete=bool(row['remove_on_complete']),
        )


class RateLimiter:
    """Token bucket limiting job starts to ``max_jobs`` per ``duration`` seconds."""

    def __init__(self, max_jobs: int = 10, duration: float = 1.0, clock: Callable[[], float] = time.monotonic):
        if max_jobs <= 0 or duration <= 0:
            raise ValueError("Rate limit requires positive max_jobs and duration")
        self.capacity = float(max_jobs)
        self.refill_rate = max_jobs / duration
        self.tokens = float(max_jobs)
        self.clock = clock
        self.updated_at = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self.clock()
        self.tokens = min(self.capacity, self.tokens + (now - self.updated_at) * self.refill_rate)
        self.updated_at = now

    def try_acquire(self) -> bool:
        """Take a token if one is available."""
        with self._lock:
            self._refill()
            if self.tokens >= 1:
                self.tokens -= 1
                return True
            return False

    def wait_time(self) -> float:
        """Seconds until the next token is available."""
        with self._lock:
            self._refill()
            if self.tokens >= 1:
                return 0.0
            return (1 - self.tokens) / self.refill_rate

    def acquire(self, stop_event: Optional[threading.Event] = None) -> bool:
        """Block until a token is taken; False if ``stop_event`` fires first."""
        while not self.try_acquire():
            delay = self.wait_time()
            if stop_event is not None:
                if stop_event.wait(delay):
                    return False
            else:
                time.sleep(delay)
        return True


class JobQueue:
    """Enqueue, claim and settle jobs for one named queue."""

    def __init__(
        self,
        db,
        name: str = None,
        retry_policy: RetryPolicy = None,
        stalled_timeout: float = None,
        clock: Callable[[], float] = time.time
    ):
        self.db = db
        self.name = name or os.getenv('QUEUE_NAME', CSV_PROCESSING_QUEUE)
        self.retry_policy = retry_policy or RetryPolicy.from_env()
        self.stalled_timeout = stalled_timeout or float(os.getenv('QUEUE_STALLED_TIMEOUT_SECONDS', '300'))
        self.clock = clock

    def enqueue(
        self,
        job_name: str,
        payload: Dict[str, Any],
        priority: int = 0,
        attempts: int = None,
        backoff_delay: float = None,
        remove_on_complete: bool = True,
        tx: TransactionCursor = None
    ) -> int:
        """Add a job; joins ``tx`` when given so it commits with the caller's writes."""
        query = """
            INSERT INTO jobs
            (queue_name, name, payload, status, priority, attempts, attempts_made,
             backoff_delay, remove_on_complete, available_at)
            VALUES (%s, %s, %s, 'waiting', %s, %s, 0, %s, %s, %s)
            RETURNING id
        """
        params = (
            self.name,
            job_name,
            dump_json(payload),
            priority,
            attempts or self.retry_policy.attempts,
            self.retry_policy.backoff_delay if backoff_delay is None else backoff_delay,
            remove_on_complete,
            self.clock(),
        )

        if tx is not None:
            job_id = tx.fetch_one(query, params)['id']
        else:
            job_id = self.db.execute_query(query, params)[0]['id']

        logger.info(f"Enqueued job {job_id} ({job_name}) on {self.name}")
        return job_id

    def claim(self) -> Optional[Job]:
        """Claim the next due job, or a stalled one; None when nothing is ready."""
        now = self.clock()
        stalled_before = now - self.stalled_timeout

        rows = self.db.execute_query(
            """
            UPDATE jobs
            SET status = 'active', locked_at = %s, attempts_made = attempts_made + 1
            WHERE id = (
                SELECT id FROM jobs
                WHERE queue_name = %s
                  AND ((status = 'waiting' AND available_at <= %s)
                       OR (status = 'active' AND locked_at < %s))
                ORDER BY priority, available_at, id
                LIMIT 1
            )
              AND (status = 'waiting' OR (status = 'active' AND locked_at < %s))
            RETURNING id, name, payload, attempts, attempts_made, backoff_delay, remove_on_complete
            """,
            (now, self.name, now, stalled_before, stalled_before)
        )
        if not rows:
            return None

        job = Job.from_row(rows[0])
        logger.debug(f"Claimed job {job.id} (attempt {job.attempts_made}/{job.attempts})")
        return job

    def complete(self, job: Job) -> None:
        """Acknowledge a job; completed jobs are discarded unless asked to keep them."""
        if job.remove_on_complete:
            self.db.execute_query("DELETE FROM jobs WHERE id = %s", (job.id,), fetch=False)
        else:
            self.db.execute_query(
                """
                UPDATE jobs
                SET status = 'completed', finished_at = %s, locked_at = NULL
                WHERE id = %s
                """,
                (self.clock(), job.id),
                fetch=False
            )
        logger.info(f"Job {job.id} completed")

    def fail(self, job: Job, error: BaseException) -> bool:
        """Record a failed attempt. Returns True when the job will be retried."""
        reason = str(error) or error.__class__.__name__

        if not job.is_final_attempt:
            delay = self.retry_policy.delay_for(job.attempts_made, job.backoff_delay)
            self.db.execute_query(
                """
                UPDATE jobs
                SET status = 'waiting', available_at = %s, locked_at = NULL, failed_reason = %s
                WHERE id = %s
                """,
                (self.clock() + delay, reason, job.id),
                fetch=False
            )
            logger.warning(f"Job {job.id} failed (attempt {job.attempts_made}/{job.attempts}), retrying in {delay:.1f}s: {reason}")
            return True

        self.db.execute_query(
            """
            UPDATE jobs
            SET status = 'failed', finished_at = %s, locked_at = NULL, failed_reason = %s
            WHERE id = %s
            """,
            (self.clock(), reason, job.id),
            fetch=False
        )
        logger.error(f"Job {job.id} failed permanently after {job.attempts_made} attempts: {reason}")
        return False

    def retry_failed(self, job_id: int, tx: TransactionCursor = None) -> bool:
        """Requeue a permanently failed job with a fresh attempt budget."""
        query = """
            UPDATE jobs
            SET status = 'waiting', attempts_made = 0, available_at = %s,
                finished_at = NULL, failed_reason = NULL
            WHERE id = %s AND status = 'failed'
        """
        params = (self.clock(), job_id)

        if tx is not None:
            updated = tx.execute(query, params)
        else:
            updated = self.db.execute_query(query, params, fetch=False)

        if updated:
            logger.info(f"Job {job_id} requeued after permanent failure")
        return bool(updated)

    def get_job(self, job_id: int) -> Optional[Dict[str, Any]]:
        results = self.db.execute_query(
            """
            SELECT id, name, payload, status, attempts, attempts_made,
                   available_at, failed_reason
            FROM jobs
            WHERE id = %s
            """,
            (job_id,)
        )
        if not results:
            return None
        job = results[0]
        job['payload'] = load_json(job['payload'])
        return job

    def counts(self) -> Dict[str, int]:
        """Number of jobs per status."""
        rows = self.db.execute_query(
            "SELECT status, COUNT(*) AS count FROM jobs WHERE queue_name = %s GROUP BY status",
            (self.name,)
        )
        counts = {status: 0 for status in JOB_STATUSES}
        counts.update({row['status']: row['count'] for row in rows})
        return counts

    def failed_jobs(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Retained failed jobs, most recent first."""
        rows = self.db.execute_query(
            """
            SELECT id, name, payload, attempts_made, failed_reason, finished_at
            FROM jobs
            WHERE queue_name = %s AND status = 'failed'
            ORDER BY finished_at DESC, id DESC
            LIMIT %s
            """,
            (self.name, limit)
        )
        for row in rows:
            row['payload'] = load_json(row['payload'])
        return rows

    def clean(self, status: str = 'failed', max_age: float = None) -> int:
        """Delete finished jobs in ``status`` older than ``max_age`` seconds."""
        if status not in ('completed', 'failed'):
            raise ValueError(f"Only finished jobs can be cleaned, not {status}")
        if max_age is None:
            max_age = float(os.getenv('FAILED_JOB_RETENTION_DAYS', '7')) * 24 * 3600

        deleted = self.db.execute_query(
            "DELETE FROM jobs WHERE queue_name = %s AND status = %s AND finished_at < %s",
            (self.name, status, self.clock() - max_age),
            fetch=False
        )
        if deleted:
            logger.info(f"Cleaned {deleted} {status} jobs from {self.name}")
        return deleted
