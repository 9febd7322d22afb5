"""
Health checks and pipeline statistics.
"""

import time
import logging
from typing import Dict, Any, Optional
from datetime import datetime

import psutil

from pledgeflow.ingestion.database_operations import DatabaseOperations
from pledgeflow.ingestion.queue import JobQueue

logger = logging.getLogger(__name__)

ENTITY_TABLES = ('backers', 'products', 'pledges', 'surveys', 'inventory')


class HealthChecker:
    """Reports on the store, the job queue and import progress."""

    def __init__(self, db, queue: JobQueue = None):
        self.db = db
        self.queue = queue or JobQueue(db)
        self.db_ops = DatabaseOperations(db)
        self.started_at = time.time()

    def check_database_health(self) -> Dict[str, Any]:
        """Check database connectivity and query latency."""
        start = time.perf_counter()

        try:
            if not self.db.health_check():
                return {
                    'status': 'unhealthy',
                    'backend': self.db.backend,
                    'error': 'Database connection failed',
                    'response_time_ms': int((time.perf_counter() - start) * 1000),
                    'timestamp': datetime.now().isoformat()
                }

            return {
                'status': 'healthy',
                'backend': self.db.backend,
                'response_time_ms': int((time.perf_counter() - start) * 1000),
                'timestamp': datetime.now().isoformat()
            }

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                'status': 'unhealthy',
                'backend': self.db.backend,
                'error': str(e),
                'response_time_ms': int((time.perf_counter() - start) * 1000),
                'timestamp': datetime.now().isoformat()
            }

    def check_queue_health(self) -> Dict[str, Any]:
        """Job counts per status; retained failures mark the queue degraded."""
        try:
            counts = self.queue.counts()
        except Exception as e:
            logger.error(f"Queue health check failed: {e}")
            return {'status': 'unhealthy', 'queue': self.queue.name, 'error': str(e)}

        return {
            'status': 'degraded' if counts['failed'] else 'healthy',
            'queue': self.queue.name,
            'jobs': counts,
            'recent_failures': [
                {'id': job['id'], 'reason': job['failed_reason']}
                for job in self.queue.failed_jobs(limit=5)
            ] if counts['failed'] else []
        }

    def get_pipeline_metrics(self) -> Dict[str, Any]:
        """Upload and chunk status counts plus entity row counts."""
        try:
            uploads = self.db.execute_query(
                "SELECT status, COUNT(*) AS count FROM csv_uploads GROUP BY status"
            )
            chunks = self.db.execute_query(
                "SELECT status, COUNT(*) AS count FROM csv_upload_chunks GROUP BY status"
            )

            return {
                'uploads': {row['status']: row['count'] for row in uploads},
                'chunks': {row['status']: row['count'] for row in chunks},
                'entities': {table: self.db_ops.count_rows(table) for table in ENTITY_TABLES},
            }

        except Exception as e:
            logger.error(f"Failed to get pipeline metrics: {e}")
            return {'error': str(e)}

    def _get_memory_usage(self) -> Optional[float]:
        """Resident memory of this process in MB."""
        try:
            return psutil.Process().memory_info().rss / 1024 / 1024
        except psutil.Error as e:
            logger.warning(f"Could not read memory usage: {e}")
            return None

    def comprehensive_health_check(self) -> Dict[str, Any]:
        """Check every component and attach pipeline metrics."""
        start = time.perf_counter()

        db_health = self.check_database_health()
        queue_health = self.check_queue_health() if db_health['status'] == 'healthy' else {
            'status': 'unhealthy', 'queue': self.queue.name, 'error': 'Database unavailable'
        }
        metrics = self.get_pipeline_metrics() if db_health['status'] == 'healthy' else {}

        statuses = {db_health['status'], queue_health['status']}
        if 'unhealthy' in statuses:
            overall = 'unhealthy'
        elif 'degraded' in statuses:
            overall = 'degraded'
        else:
            overall = 'healthy'

        return {
            'overall_status': overall,
            'response_time_ms': int((time.perf_counter() - start) * 1000),
            'timestamp': datetime.now().isoformat(),
            'components': {
                'database': db_health,
                'queue': queue_health
            },
            'metrics': metrics,
            'system': {
                'uptime_seconds': int(time.time() - self.started_at),
                'memory_usage_mb': self._get_memory_usage()
            }
        }


def main():
    """CLI for health checks."""
    import argparse
    import json
    import sys

    from pledgeflow.database.connection import create_database_manager

    parser = argparse.ArgumentParser(description='Health check utility')
    parser.add_argument('--component', choices=['database', 'queue', 'all'], default='all',
                        help='Component to check')
    parser.add_argument('--format', choices=['json', 'text'], default='text',
                        help='Output format')

    args = parser.parse_args()

    db = create_database_manager()
    health_checker = HealthChecker(db)

    try:
        if args.component == 'database':
            result = health_checker.check_database_health()
        elif args.component == 'queue':
            result = health_checker.check_queue_health()
        else:
            result = health_checker.comprehensive_health_check()
    finally:
        db.close()

    status = result.get('overall_status', result.get('status', 'unknown'))

    if args.format == 'json':
        print(json.dumps(result, indent=2, default=str))
    else:
        print(f"Health Status: {status}")
        print(f"Timestamp: {result.get('timestamp', datetime.now().isoformat())}")

        if 'response_time_ms' in result:
            print(f"Response Time: {result['response_time_ms']}ms")

        if 'error' in result:
            print(f"Error: {result['error']}")

        if 'jobs' in result:
            for job_status, count in result['jobs'].items():
                print(f"  {job_status}: {count}")

        for component, health in result.get('components', {}).items():
            print(f"\n{component.title()}:")
            print(f"  Status: {health.get('status', 'unknown')}")
            if 'error' in health:
                print(f"  Error: {health['error']}")

        if result.get('metrics'):
            print("\nUploads:")
            for upload_status, count in result['metrics'].get('uploads', {}).items():
                print(f"  {upload_status}: {count}")

    sys.exit(0 if status != 'unhealthy' else 1)


if __name__ == "__main__":
    main()
