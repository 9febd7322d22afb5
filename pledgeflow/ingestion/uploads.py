"""
Upload submission and status reporting.

``submit_upload`` is the synchronous half of an import: it parses and
structurally checks the CSV, stores it as chunks and enqueues one job per
chunk. Everything row-level happens later in the worker.
"""

import os
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from dotenv import load_dotenv

from pledgeflow.errors import ParseError
from pledgeflow.ingestion.csv_processor import parse_csv_text, validate_chunk
from pledgeflow.ingestion.database_operations import DatabaseOperations
from pledgeflow.ingestion.lifecycle import UploadLifecycleStore
from pledgeflow.ingestion.queue import PROCESS_CHUNK_JOB, JobQueue

load_dotenv()

logger = logging.getLogger(__name__)


def split_rows(rows: Sequence[Sequence[str]], chunk_size: int = 0) -> List[List[Sequence[str]]]:
    """Slice data rows into chunks; a size of 0 keeps them in one chunk."""
    if chunk_size <= 0 or len(rows) <= chunk_size:
        return [list(rows)]
    return [list(rows[start:start + chunk_size]) for start in range(0, len(rows), chunk_size)]


def _failure(error: str, errors: List[Dict[str, Any]] = None) -> Dict[str, Any]:
    result = {'success': False, 'error': error}
    if errors is not None:
        result['errors'] = errors
    return result


def submit_upload(
    db,
    queue: JobQueue,
    project_id: int,
    raw_text: Union[str, bytes],
    chunk_size: int = None
) -> Dict[str, Any]:
    """Accept a CSV for a project and schedule its processing.

    Returns ``{success: True, uploadId, totalRows, totalChunks, platform}``,
    or ``{success: False, error, errors?}`` when the file is rejected. A
    rejected file leaves no upload, chunk or job behind.
    """
    if chunk_size is None:
        chunk_size = int(os.getenv('CSV_CHUNK_SIZE', '0'))

    try:
        grid = parse_csv_text(raw_text)
    except ParseError as e:
        logger.warning(f"Rejected upload for project {project_id}: {e}")
        return _failure("CSV parsing failed", [{'line': 0, 'details': {'general': [str(e)]}}])

    validation = validate_chunk(grid)
    if not validation.is_valid:
        logger.warning(f"Rejected upload for project {project_id}: {len(validation.errors)} structural errors")
        return _failure("CSV validation failed", [error.to_dict() for error in validation.errors])

    db_ops = DatabaseOperations(db)
    if db_ops.get_project(project_id) is None:
        return _failure("Project not found")

    headers, rows = grid[0], grid[1:]
    row_chunks = split_rows(rows, chunk_size)
    lifecycle = UploadLifecycleStore(db)

    with db.transaction() as tx:
        created = lifecycle.create_upload(tx, project_id, headers, row_chunks)
        db_ops.set_project_platform(tx, project_id, validation.platform)

        for chunk_id in created['chunk_ids']:
            queue.enqueue(
                PROCESS_CHUNK_JOB,
                {'chunkId': chunk_id, 'uploadId': created['upload_id'], 'projectId': project_id},
                tx=tx
            )

    logger.info(
        f"Accepted upload {created['upload_id']} for project {project_id}: "
        f"{len(rows)} rows in {len(row_chunks)} chunks ({validation.platform.value})"
    )

    return {
        'success': True,
        'uploadId': created['upload_id'],
        'totalRows': len(rows),
        'totalChunks': len(row_chunks),
        'platform': validation.platform.value,
    }


def get_upload_status(db, upload_id: int) -> Optional[Dict[str, Any]]:
    """Upload status with progress percentage and per-chunk outcomes."""
    lifecycle = UploadLifecycleStore(db)
    upload = lifecycle.get_upload(upload_id)
    if upload is None:
        return None

    total = upload['total_chunks']
    progress = round(upload['processed_chunks'] / total * 100) if total else 0

    return {
        'uploadId': upload['id'],
        'projectId': upload['project_id'],
        'status': upload['status'],
        'totalChunks': total,
        'processedChunks': upload['processed_chunks'],
        'progress': progress,
        'createdAt': upload['created_at'],
        'completedAt': upload['completed_at'],
        'chunks': [
            {
                'id': chunk['id'],
                'chunkIndex': chunk['chunk_index'],
                'status': chunk['status'],
                'errors': chunk['errors'],
                'processedAt': chunk['processed_at'],
            }
            for chunk in lifecycle.list_chunks(upload_id)
        ],
    }


def retry_failed_chunk(db, queue: JobQueue, job_id: int) -> bool:
    """Requeue a permanently failed chunk job and reopen its upload.

    The chunk's settled FAILED outcome is withdrawn in the same transaction
    as the requeue, so the upload is finalized again from the retried result.
    Returns False when the job is unknown or not in the failed state.
    """
    job = queue.get_job(job_id)
    if job is None or job['status'] != 'failed':
        return False

    lifecycle = UploadLifecycleStore(db)
    with db.transaction() as tx:
        if not queue.retry_failed(job_id, tx=tx):
            return False
        if job['name'] == PROCESS_CHUNK_JOB:
            lifecycle.reopen_chunk(tx, job['payload']['chunkId'])

    logger.info(f"Retrying failed job {job_id} ({job['name']})")
    return True
