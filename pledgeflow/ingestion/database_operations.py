"""
Database operations for backer imports with idempotency guarantees.

Every write is an upsert keyed by a unique constraint, so replaying a
chunk converges on the same rows instead of duplicating them.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from pledgeflow.database.base import TransactionCursor
from pledgeflow.errors import NotFoundError
from pledgeflow.ingestion.models import BackerRow, Platform

logger = logging.getLogger(__name__)


class DatabaseOperations:
    """Project lookups and the transactional fan-out of backer rows."""

    def __init__(self, db):
        self.db = db

    def create_project(self, shop: str, name: str, platform: Optional[Platform] = None) -> int:
        """Create a project record (project CRUD lives elsewhere; used by tools and tests)."""
        result = self.db.execute_query(
            """
            INSERT INTO projects (shop, name, platform)
            VALUES (%s, %s, %s)
            RETURNING id
            """,
            (shop, name, platform.value if platform else None)
        )
        project_id = result[0]['id']
        logger.info(f"Created project {project_id} for shop {shop}")
        return project_id

    def get_project(self, project_id: int) -> Optional[Dict[str, Any]]:
        """Fetch a project, or None when it does not exist."""
        results = self.db.execute_query(
            "SELECT id, shop, name, platform FROM projects WHERE id = %s",
            (project_id,)
        )
        return results[0] if results else None

    def set_project_platform(self, tx: TransactionCursor, project_id: int, platform: Platform) -> None:
        """Record the platform detected from the project's latest upload."""
        updated = tx.execute(
            """
            UPDATE projects
            SET platform = %s, updated_at = CURRENT_TIMESTAMP
            WHERE id = %s
            """,
            (platform.value, project_id)
        )
        if not updated:
            raise NotFoundError(f"Project {project_id} not found")

    def persist_rows(
        self,
        rows: Sequence[BackerRow],
        project_id: int,
        platform: Platform,
        shop: str
    ) -> int:
        """Upsert backers, products, pledges, surveys and inventory in one transaction.

        Returns the number of rows persisted as surveys. Any store error
        rolls the whole chunk back.
        """
        if not rows:
            return 0

        with self.db.transaction() as tx:
            backer_ids = self._upsert_backers(tx, rows, shop)
            product_ids = self._upsert_products(tx, rows, project_id)
            pledge_ids = self._upsert_pledges(tx, rows, project_id)

            processed_rows = 0
            for row in rows:
                backer_id = backer_ids.get(row.backer_email)
                pledge_ref = pledge_ids.get(row.reward_id)

                if not backer_id or not pledge_ref:
                    logger.warning(f"Skipping row for {row.backer_email}: missing backer or pledge ID")
                    continue

                survey_id = self._upsert_survey(tx, row, project_id, backer_id, pledge_ref, platform)

                if row.products:
                    self._replace_inventory(tx, survey_id, row, product_ids)

                processed_rows += 1

        logger.info(f"Persisted {processed_rows} surveys for project {project_id}")
        return processed_rows

    def _upsert_backers(self, tx: TransactionCursor, rows: Sequence[BackerRow], shop: str) -> Dict[str, int]:
        unique_backers: Dict[str, str] = {}
        for row in rows:
            unique_backers.setdefault(row.backer_email, row.backer_name)

        backer_ids = {}
        for email, name in unique_backers.items():
            result = tx.fetch_one(
                """
                INSERT INTO backers (shop, email, name)
                VALUES (%s, %s, %s)
                ON CONFLICT (shop, email)
                DO UPDATE SET
                    name = EXCLUDED.name,
                    updated_at = CURRENT_TIMESTAMP
                RETURNING id
                """,
                (shop, email, name)
            )
            backer_ids[email] = result['id']

        logger.debug(f"Upserted {len(backer_ids)} backers")
        return backer_ids

    def _upsert_products(self, tx: TransactionCursor, rows: Sequence[BackerRow], project_id: int) -> Dict[str, int]:
        names: List[str] = []
        for row in rows:
            for product in row.products:
                if product.name not in names:
                    names.append(product.name)

        product_ids = {}
        for name in names:
            # Products are insert-only; an existing row is looked up as-is.
            result = tx.fetch_one(
                """
                INSERT INTO products (project_id, name)
                VALUES (%s, %s)
                ON CONFLICT (project_id, name) DO NOTHING
                RETURNING id
                """,
                (project_id, name)
            )
            if result is None:
                result = tx.fetch_one(
                    "SELECT id FROM products WHERE project_id = %s AND name = %s",
                    (project_id, name)
                )
            product_ids[name] = result['id']

        logger.debug(f"Upserted {len(product_ids)} products")
        return product_ids

    def _upsert_pledges(self, tx: TransactionCursor, rows: Sequence[BackerRow], project_id: int) -> Dict[str, int]:
        unique_pledges: Dict[str, str] = {}
        for row in rows:
            unique_pledges.setdefault(row.reward_id, row.pledge_name)

        pledge_ids = {}
        for reward_id, name in unique_pledges.items():
            result = tx.fetch_one(
                """
                INSERT INTO pledges (project_id, pledge_id, name)
                VALUES (%s, %s, %s)
                ON CONFLICT (project_id, pledge_id)
                DO UPDATE SET
                    name = EXCLUDED.name,
                    updated_at = CURRENT_TIMESTAMP
                RETURNING id
                """,
                (project_id, reward_id, name)
            )
            pledge_ids[reward_id] = result['id']

        logger.debug(f"Upserted {len(pledge_ids)} pledges")
        return pledge_ids

    def _upsert_survey(
        self,
        tx: TransactionCursor,
        row: BackerRow,
        project_id: int,
        backer_id: int,
        pledge_ref: int,
        platform: Platform
    ) -> int:
        result = tx.fetch_one(
            """
            INSERT INTO surveys
            (project_id, backer_id, pledge_ref, platform, bonus_support, price, country, status)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (project_id, backer_id)
            DO UPDATE SET
                pledge_ref = EXCLUDED.pledge_ref,
                platform = EXCLUDED.platform,
                bonus_support = EXCLUDED.bonus_support,
                price = EXCLUDED.price,
                country = EXCLUDED.country,
                status = EXCLUDED.status,
                updated_at = CURRENT_TIMESTAMP
            RETURNING id
            """,
            (
                project_id,
                backer_id,
                pledge_ref,
                platform.value,
                row.bonus_support_amount,
                row.price_amount,
                row.country,
                row.status.value
            )
        )
        return result['id']

    def _replace_inventory(
        self,
        tx: TransactionCursor,
        survey_id: int,
        row: BackerRow,
        product_ids: Dict[str, int]
    ) -> None:
        tx.execute("DELETE FROM inventory WHERE survey_id = %s", (survey_id,))

        items = []
        for product in row.products:
            product_id = product_ids.get(product.name)
            if product_id is None:
                continue
            items.append((survey_id, product_id, int(product.qty)))

        tx.execute_many(
            """
            INSERT INTO inventory (survey_id, product_id, qty)
            VALUES (%s, %s, %s)
            ON CONFLICT (survey_id, product_id) DO NOTHING
            """,
            items
        )

    def count_rows(self, table: str) -> int:
        """Row count for one of the pipeline's entity tables."""
        if table not in ('backers', 'products', 'pledges', 'surveys', 'inventory'):
            raise ValueError(f"Unknown table: {table}")
        result = self.db.execute_query(f"SELECT COUNT(*) AS count FROM {table}")
        return result[0]['count']
