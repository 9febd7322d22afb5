"""
tests/test_database_operations.py: transactional upserts against SQLite.
"""

import pytest

from pledgeflow.errors import NotFoundError, StoreError
from pledgeflow.ingestion.models import BackerRow, Platform

from conftest import SHOP


def make_row(email="jane@x.com", reward_id="1", products=None, **overrides):
    values = {
        "reward_id": reward_id,
        "pledge_name": "TierA",
        "survey_status": "paid",
        "bonus_support": "0",
        "price": "25",
        "country": "US",
        "backer_name": "Jane Doe",
        "backer_email": email,
        "products": products or [],
    }
    values.update(overrides)
    return BackerRow(**values)


def table_counts(db_ops):
    return {table: db_ops.count_rows(table) for table in ("backers", "products", "pledges", "surveys", "inventory")}


class TestProjects:

    def test_create_and_get_project(self, db_ops):
        project_id = db_ops.create_project(SHOP, "Campaign", Platform.INDIEGOGO)
        project = db_ops.get_project(project_id)
        assert project["shop"] == SHOP
        assert project["platform"] == "INDIEGOGO"

    def test_get_unknown_project_returns_none(self, db_ops):
        assert db_ops.get_project(9999) is None

    def test_set_platform_on_unknown_project_raises(self, db, db_ops):
        with pytest.raises(NotFoundError):
            with db.transaction() as tx:
                db_ops.set_project_platform(tx, 9999, Platform.KICKSTARTER)


class TestPersistRows:

    def test_persists_single_backer(self, db, db_ops, project_id):
        persisted = db_ops.persist_rows([make_row()], project_id, Platform.KICKSTARTER, SHOP)

        assert persisted == 1
        assert table_counts(db_ops) == {"backers": 1, "products": 0, "pledges": 1, "surveys": 1, "inventory": 0}

        survey = db.execute_query("SELECT status, price, country, platform FROM surveys")[0]
        assert survey == {"status": "COLLECTED", "price": 25.0, "country": "US", "platform": "KICKSTARTER"}

        pledge = db.execute_query("SELECT pledge_id, name FROM pledges")[0]
        assert pledge == {"pledge_id": "1", "name": "TierA"}

    def test_empty_batch_is_a_no_op(self, db_ops, project_id):
        assert db_ops.persist_rows([], project_id, Platform.KICKSTARTER, SHOP) == 0
        assert db_ops.count_rows("surveys") == 0

    def test_replaying_a_batch_is_idempotent(self, db_ops, project_id):
        rows = [
            make_row("a@x.com", products=[{"name": "Pin", "qty": 2}]),
            make_row("b@x.com", reward_id="2", products=[{"name": "Pin", "qty": 1}, {"name": "Poster", "qty": 1}]),
        ]

        db_ops.persist_rows(rows, project_id, Platform.KICKSTARTER, SHOP)
        first = table_counts(db_ops)
        db_ops.persist_rows(rows, project_id, Platform.KICKSTARTER, SHOP)

        assert table_counts(db_ops) == first
        assert first == {"backers": 2, "products": 2, "pledges": 2, "surveys": 2, "inventory": 3}

    def test_reimport_replaces_inventory_and_survey_facts(self, db, db_ops, project_id):
        db_ops.persist_rows(
            [make_row(products=[{"name": "Pin", "qty": 2}, {"name": "Poster", "qty": 1}])],
            project_id, Platform.KICKSTARTER, SHOP
        )
        db_ops.persist_rows(
            [make_row(country="CA", survey_status="refunded", products=[{"name": "Dice", "qty": 4}])],
            project_id, Platform.KICKSTARTER, SHOP
        )

        inventory = db.execute_query(
            """
            SELECT p.name, i.qty
            FROM inventory i JOIN products p ON p.id = i.product_id
            """
        )
        assert inventory == [{"name": "Dice", "qty": 4}]

        survey = db.execute_query("SELECT status, country FROM surveys")[0]
        assert survey == {"status": "ERRORED", "country": "CA"}
        # Products are never deleted, only inventory is replaced
        assert db_ops.count_rows("products") == 3

    def test_duplicate_product_in_one_row_keeps_first_quantity(self, db, db_ops, project_id):
        db_ops.persist_rows(
            [make_row(products=[{"name": "Pin", "qty": 2}, {"name": "Pin", "qty": 5}])],
            project_id, Platform.KICKSTARTER, SHOP
        )
        assert db.execute_query("SELECT qty FROM inventory") == [{"qty": 2}]

    def test_backers_are_scoped_by_shop(self, db_ops, project_id):
        other_project = db_ops.create_project("other-shop.myshopify.com", "Other")

        db_ops.persist_rows([make_row()], project_id, Platform.KICKSTARTER, SHOP)
        db_ops.persist_rows([make_row()], other_project, Platform.KICKSTARTER, "other-shop.myshopify.com")

        assert db_ops.count_rows("backers") == 2
        assert db_ops.count_rows("pledges") == 2

    def test_backer_name_is_updated_on_conflict(self, db, db_ops, project_id):
        db_ops.persist_rows([make_row()], project_id, Platform.KICKSTARTER, SHOP)
        db_ops.persist_rows([make_row(backer_name="Jane Smith")], project_id, Platform.KICKSTARTER, SHOP)

        assert db.execute_query("SELECT name FROM backers") == [{"name": "Jane Smith"}]

    def test_store_error_rolls_back_the_whole_batch(self, db, db_ops, project_id, monkeypatch):
        db_ops.persist_rows([make_row("a@x.com", products=[{"name": "Pin", "qty": 1}])], project_id, Platform.KICKSTARTER, SHOP)
        before = table_counts(db_ops)

        def reject_survey(*args, **kwargs):
            raise StoreError("survey insert rejected")

        monkeypatch.setattr(db_ops, "_upsert_survey", reject_survey)
        rows = [
            make_row("b@x.com", reward_id="2", products=[{"name": "Poster", "qty": 1}]),
            make_row("c@x.com", reward_id="3", products=[{"name": "Dice", "qty": 2}]),
        ]

        with pytest.raises(StoreError):
            db_ops.persist_rows(rows, project_id, Platform.KICKSTARTER, SHOP)

        assert table_counts(db_ops) == before
        assert db.execute_query("SELECT email FROM backers") == [{"email": "a@x.com"}]

    def test_count_rows_rejects_unknown_table(self, db_ops):
        with pytest.raises(ValueError):
            db_ops.count_rows("jobs")
