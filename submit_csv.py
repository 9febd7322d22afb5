#!/usr/bin/env python3

"""
Submit a backer CSV export for a project and optionally wait for the result.
"""

import sys
import json
import time
import argparse
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from pledgeflow.database.connection import create_database_manager
from pledgeflow.ingestion.queue import JobQueue
from pledgeflow.ingestion.uploads import get_upload_status, submit_upload
from pledgeflow.monitoring.logger_config import setup_logging


def main():
    parser = argparse.ArgumentParser(description='Submit a backer CSV for processing')
    parser.add_argument('csv_file', help='Path to the Kickstarter or Indiegogo export')
    parser.add_argument('--project', '-p', type=int, required=True, help='Project id')
    parser.add_argument('--chunk-size', type=int, help='Rows per chunk (default CSV_CHUNK_SIZE)')
    parser.add_argument('--wait', action='store_true', help='Poll until the upload finishes')
    parser.add_argument('--timeout', type=float, default=300, help='Seconds to wait with --wait')
    args = parser.parse_args()

    setup_logging()
    db = create_database_manager()

    try:
        raw = Path(args.csv_file).read_bytes()
        result = submit_upload(db, JobQueue(db), args.project, raw, chunk_size=args.chunk_size)
        print(json.dumps(result, indent=2))

        if not result['success']:
            sys.exit(1)

        if args.wait:
            deadline = time.time() + args.timeout
            status = get_upload_status(db, result['uploadId'])
            while status['status'] not in ('COMPLETED', 'FAILED') and time.time() < deadline:
                print(f"Progress: {status['progress']}%")
                time.sleep(2)
                status = get_upload_status(db, result['uploadId'])
            print(json.dumps(status, indent=2, default=str))
            sys.exit(0 if status['status'] == 'COMPLETED' else 1)
    finally:
        db.close()


if __name__ == '__main__':
    main()
