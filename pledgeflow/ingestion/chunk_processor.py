"""
Processing of one stored CSV chunk: validate, persist, record the outcome.
"""

import logging
from typing import Any, Dict

from pledgeflow.ingestion.csv_processor import CSVProcessor
from pledgeflow.ingestion.database_operations import DatabaseOperations
from pledgeflow.ingestion.lifecycle import UploadLifecycleStore

logger = logging.getLogger(__name__)


class ChunkProcessor:
    """Runs the row pipeline for a chunk and moves it through its lifecycle."""

    def __init__(self, db, lifecycle: UploadLifecycleStore = None, db_ops: DatabaseOperations = None):
        self.db = db
        self.lifecycle = lifecycle or UploadLifecycleStore(db)
        self.db_ops = db_ops or DatabaseOperations(db)
        self.csv_processor = CSVProcessor()

    def process_chunk(self, chunk_id: int, final_attempt: bool = True) -> Dict[str, Any]:
        """Process a chunk end to end.

        On failure the chunk is marked FAILED and the error re-raised so the
        queue can retry; ``final_attempt`` settles the failed chunk against
        its upload because no retry will follow.
        """
        chunk = self.lifecycle.get_chunk(chunk_id)

        if not self.lifecycle.mark_chunk_processing(chunk_id):
            logger.info(f"Chunk {chunk_id} already completed, skipping redelivered job")
            return {
                'success': True,
                'chunk_id': chunk_id,
                'upload_id': chunk['upload_id'],
                'processed_rows': 0,
                'validation_errors': [],
                'skipped': True,
            }

        try:
            data = chunk['data']
            platform, valid_rows, validation_errors = self.csv_processor.process_chunk_data(
                data['headers'],
                data['rows'],
                first_line=chunk['row_offset'] + 2,
            )

            processed_rows = self.db_ops.persist_rows(
                valid_rows,
                chunk['project_id'],
                platform,
                chunk['shop'],
            )

            self.lifecycle.mark_chunk_completed(chunk_id, validation_errors)

        except Exception as e:
            logger.error(f"Failed to process chunk {chunk_id}: {e}")
            self.lifecycle.mark_chunk_failed(chunk_id, str(e), settle=final_attempt)
            raise

        return {
            'success': True,
            'chunk_id': chunk_id,
            'upload_id': chunk['upload_id'],
            'platform': platform.value,
            'processed_rows': processed_rows,
            'validation_errors': validation_errors,
            'skipped': False,
        }
