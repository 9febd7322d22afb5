"""
tests/conftest.py: shared pytest fixtures for the pipeline test suite.

Provides:
  db          SQLiteManager on a temporary file with the schema created
  db_ops      DatabaseOperations bound to ``db``
  project_id  a project owned by the ``test-shop.myshopify.com`` shop
  clock       manually advanced clock for queue timing
  queue       JobQueue on ``db`` driven by ``clock``
"""

import pytest

from pledgeflow.database.sqlite_connection import SQLiteManager
from pledgeflow.ingestion.database_operations import DatabaseOperations
from pledgeflow.ingestion.queue import JobQueue, RetryPolicy

SHOP = "test-shop.myshopify.com"

KICKSTARTER_CSV = (
    "Reward ID,Reward Title,Pledged Status,Backing Minimum,Shipping Country,Backer Name,Email\n"
    "1,TierA,paid,25,US,Jane Doe,jane@x.com\n"
)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db(tmp_path):
    manager = SQLiteManager(db_path=str(tmp_path / "pledgeflow.db"))
    manager.initialize_schema()
    yield manager
    manager.close()


@pytest.fixture
def db_ops(db) -> DatabaseOperations:
    return DatabaseOperations(db)


@pytest.fixture
def project_id(db_ops) -> int:
    return db_ops.create_project(SHOP, "Test Campaign")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(db, clock) -> JobQueue:
    return JobQueue(
        db,
        name="csv-processing-test",
        retry_policy=RetryPolicy(attempts=3, backoff_delay=2.0),
        stalled_timeout=60.0,
        clock=clock,
    )
