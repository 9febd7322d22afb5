"""
Persisted state machine for uploads and their chunks.

Upload: PENDING -> COMPLETED | FAILED, decided once every chunk settled.
Chunk:  PENDING -> PROCESSING -> COMPLETED | FAILED (FAILED -> PROCESSING on retry).
Requeueing a permanently failed chunk job reopens the upload to PENDING.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import pytz

from pledgeflow.database.base import TransactionCursor, dump_json, load_json
from pledgeflow.errors import NotFoundError
from pledgeflow.ingestion.models import UploadStatus

logger = logging.getLogger(__name__)

TERMINAL_UPLOAD_STATUSES = (UploadStatus.COMPLETED.value, UploadStatus.FAILED.value)


def utc_timestamp() -> str:
    """Current time as an ISO 8601 UTC string."""
    return datetime.now(pytz.UTC).isoformat()


class UploadLifecycleStore:
    """Owns upload and chunk status, counters and error payloads."""

    def __init__(self, db):
        self.db = db

    def create_upload(
        self,
        tx: TransactionCursor,
        project_id: int,
        headers: Sequence[str],
        row_chunks: Sequence[Sequence[Sequence[str]]]
    ) -> Dict[str, Any]:
        """Create an upload with one PENDING chunk per row slice.

        Runs inside the caller's transaction so jobs can be enqueued atomically.
        """
        upload = tx.fetch_one(
            """
            INSERT INTO csv_uploads (project_id, status, total_chunks, processed_chunks)
            VALUES (%s, %s, %s, 0)
            RETURNING id
            """,
            (project_id, UploadStatus.PENDING.value, len(row_chunks))
        )
        upload_id = upload['id']

        chunk_ids = []
        row_offset = 0
        for chunk_index, rows in enumerate(row_chunks):
            chunk = tx.fetch_one(
                """
                INSERT INTO csv_upload_chunks (upload_id, chunk_index, row_offset, status, data)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    upload_id,
                    chunk_index,
                    row_offset,
                    UploadStatus.PENDING.value,
                    dump_json({'headers': list(headers), 'rows': [list(row) for row in rows]})
                )
            )
            chunk_ids.append(chunk['id'])
            row_offset += len(rows)

        logger.info(f"Created upload {upload_id} for project {project_id} with {len(chunk_ids)} chunks")
        return {'upload_id': upload_id, 'chunk_ids': chunk_ids}

    def get_upload(self, upload_id: int) -> Optional[Dict[str, Any]]:
        results = self.db.execute_query(
            """
            SELECT id, project_id, status, total_chunks, processed_chunks,
                   created_at, updated_at, completed_at
            FROM csv_uploads
            WHERE id = %s
            """,
            (upload_id,)
        )
        return results[0] if results else None

    def get_chunk(self, chunk_id: int) -> Dict[str, Any]:
        """Fetch a chunk together with its upload's project and shop."""
        results = self.db.execute_query(
            """
            SELECT c.id, c.upload_id, c.chunk_index, c.row_offset, c.status,
                   c.data, c.errors, c.processed_at, c.settled_at,
                   u.project_id, p.shop
            FROM csv_upload_chunks c
            JOIN csv_uploads u ON u.id = c.upload_id
            JOIN projects p ON p.id = u.project_id
            WHERE c.id = %s
            """,
            (chunk_id,)
        )
        if not results:
            raise NotFoundError(f"Chunk {chunk_id} not found")

        chunk = results[0]
        chunk['data'] = load_json(chunk['data'])
        chunk['errors'] = load_json(chunk['errors'])
        return chunk

    def list_chunks(self, upload_id: int) -> List[Dict[str, Any]]:
        """Chunk summaries for an upload, without the row payload."""
        chunks = self.db.execute_query(
            """
            SELECT id, chunk_index, status, errors, processed_at
            FROM csv_upload_chunks
            WHERE upload_id = %s
            ORDER BY chunk_index
            """,
            (upload_id,)
        )
        for chunk in chunks:
            chunk['errors'] = load_json(chunk['errors'])
        return chunks

    def mark_chunk_processing(self, chunk_id: int) -> bool:
        """Move a PENDING or FAILED chunk to PROCESSING.

        Returns False when the chunk already completed, so a redelivered
        job can be acknowledged without reprocessing.
        """
        updated = self.db.execute_query(
            """
            UPDATE csv_upload_chunks
            SET status = %s, updated_at = CURRENT_TIMESTAMP
            WHERE id = %s AND status != %s
            """,
            (UploadStatus.PROCESSING.value, chunk_id, UploadStatus.COMPLETED.value),
            fetch=False
        )
        if updated:
            logger.info(f"Chunk {chunk_id} status set to PROCESSING")
        return bool(updated)

    def mark_chunk_completed(self, chunk_id: int, validation_errors: Sequence[str]) -> None:
        """Mark a chunk COMPLETED and count it towards its upload."""
        errors = {'validationErrors': list(validation_errors)} if validation_errors else None

        with self.db.transaction() as tx:
            tx.execute(
                """
                UPDATE csv_upload_chunks
                SET status = %s, errors = %s,
                    processed_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                """,
                (UploadStatus.COMPLETED.value, dump_json(errors), chunk_id)
            )
            self._settle_chunk(tx, chunk_id)

        logger.info(f"Chunk {chunk_id} completed with {len(validation_errors)} rejected rows")

    def mark_chunk_failed(self, chunk_id: int, message: str, settle: bool = False) -> None:
        """Mark a chunk FAILED with the error message and a timestamp.

        ``settle`` counts the chunk towards its upload; used once retries
        are exhausted so the upload can still reach a terminal state.
        """
        errors = {'error': message, 'timestamp': utc_timestamp()}

        with self.db.transaction() as tx:
            tx.execute(
                """
                UPDATE csv_upload_chunks
                SET status = %s, errors = %s,
                    processed_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s AND status != %s
                """,
                (UploadStatus.FAILED.value, dump_json(errors), chunk_id, UploadStatus.COMPLETED.value)
            )
            if settle:
                self._settle_chunk(tx, chunk_id)

        logger.warning(f"Chunk {chunk_id} failed: {message}")

    def _settle_chunk(self, tx: TransactionCursor, chunk_id: int) -> None:
        # Each chunk increments processed_chunks at most once.
        settled = tx.execute(
            """
            UPDATE csv_upload_chunks
            SET settled_at = CURRENT_TIMESTAMP
            WHERE id = %s AND settled_at IS NULL
            """,
            (chunk_id,)
        )
        if not settled:
            return

        tx.execute(
            """
            UPDATE csv_uploads
            SET processed_chunks = processed_chunks + 1, updated_at = CURRENT_TIMESTAMP
            WHERE id = (SELECT upload_id FROM csv_upload_chunks WHERE id = %s)
              AND processed_chunks < total_chunks
            """,
            (chunk_id,)
        )

    def evaluate_completion(self, upload_id: int) -> Optional[Dict[str, Any]]:
        """Finalize the upload once every chunk has settled.

        Safe to call after every chunk: returns None while chunks are
        outstanding, and only the first call that sees all chunks settled
        stamps the status and completed_at.
        """
        with self.db.transaction() as tx:
            upload = tx.fetch_one(
                "SELECT id, status, total_chunks, processed_chunks FROM csv_uploads WHERE id = %s",
                (upload_id,)
            )
            if upload is None:
                raise NotFoundError(f"Upload {upload_id} not found")

            if upload['processed_chunks'] < upload['total_chunks']:
                return None

            counts = tx.fetch_one(
                """
                SELECT
                    COUNT(CASE WHEN status = %s THEN 1 END) AS completed_chunks,
                    COUNT(CASE WHEN status = %s THEN 1 END) AS failed_chunks
                FROM csv_upload_chunks
                WHERE upload_id = %s
                """,
                (UploadStatus.COMPLETED.value, UploadStatus.FAILED.value, upload_id)
            )
            final_status = UploadStatus.FAILED if counts['failed_chunks'] else UploadStatus.COMPLETED

            finalized = tx.execute(
                """
                UPDATE csv_uploads
                SET status = %s, completed_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s AND status NOT IN (%s, %s)
                """,
                (final_status.value, upload_id, *TERMINAL_UPLOAD_STATUSES)
            )

        if finalized:
            logger.info(f"Upload {upload_id} finalized as {final_status.value}")
        else:
            final_status = UploadStatus(upload['status'])

        return {
            'upload_id': upload_id,
            'status': final_status.value,
            'completed_chunks': counts['completed_chunks'],
            'failed_chunks': counts['failed_chunks'],
        }

    def reopen_chunk(self, tx: TransactionCursor, chunk_id: int) -> bool:
        """Take a settled FAILED chunk back out of its upload's progress.

        Used when an operator requeues a permanently failed job: the chunk
        no longer counts as settled and the upload returns to PENDING, so
        the retried outcome decides the upload's status again.
        """
        reopened = tx.execute(
            """
            UPDATE csv_upload_chunks
            SET settled_at = NULL, updated_at = CURRENT_TIMESTAMP
            WHERE id = %s AND status = %s AND settled_at IS NOT NULL
            """,
            (chunk_id, UploadStatus.FAILED.value)
        )
        if not reopened:
            return False

        tx.execute(
            """
            UPDATE csv_uploads
            SET status = %s, completed_at = NULL,
                processed_chunks = processed_chunks - 1, updated_at = CURRENT_TIMESTAMP
            WHERE id = (SELECT upload_id FROM csv_upload_chunks WHERE id = %s)
              AND processed_chunks > 0
            """,
            (UploadStatus.PENDING.value, chunk_id)
        )
        logger.info(f"Chunk {chunk_id} reopened for retry")
        return True
