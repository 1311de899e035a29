"""Tests for SqlDatabase against real sqlite files."""

from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError

from sheetbridge.adapters.base import SyncPolicy
from sheetbridge.adapters.sql import SqlDatabase, create_sql_engine
from sheetbridge.schema.models import Column, Schema, Table


@pytest.fixture
def db(tmp_path: Path) -> Iterator[SqlDatabase]:
    database = SqlDatabase(f"sqlite:///{tmp_path / 'shop.sqlite'}")
    yield database
    database.close()


def _count(db: SqlDatabase, table: str) -> int:
    return db.query(f'SELECT COUNT(*) AS n FROM "{table}"')[0]["n"]


class TestConnection:
    """Engine setup and raw SQL helpers."""

    def test_dialect_and_url(self, db: SqlDatabase) -> None:
        assert db.dialect.name == "sqlite"
        assert db.url.endswith("shop.sqlite")
        assert "SqlDatabase(" in repr(db)

    def test_test_connection(self, db: SqlDatabase) -> None:
        assert db.test_connection() is True

    def test_execute_and_query(self, db: SqlDatabase) -> None:
        db.execute("CREATE TABLE note (id INTEGER PRIMARY KEY, body TEXT)")
        db.execute("INSERT INTO note (id, body) VALUES (:id, :body)", {"id": 1, "body": "hi"})
        assert db.query("SELECT id, body FROM note") == [{"id": 1, "body": "hi"}]

    def test_existing_engine(self, tmp_path: Path) -> None:
        engine = create_sql_engine(f"sqlite:///{tmp_path / 'shared.sqlite'}", echo=False)
        database = SqlDatabase(engine)

        assert database.engine is engine
        assert database.test_connection()
        database.close()

    def test_context_manager(self, tmp_path: Path) -> None:
        with SqlDatabase(f"sqlite:///{tmp_path / 'ctx.sqlite'}") as database:
            assert database.test_connection()


class TestStructure:
    """apply_structure per policy."""

    def test_merge_creates_tables(self, db: SqlDatabase, billing_schema: Schema) -> None:
        statements = db.apply_structure(billing_schema)

        assert statements[0].startswith('CREATE TABLE "party"')
        assert sorted(db.structure().table_names) == ["invoice", "party"]

    def test_merge_twice_is_a_no_op(self, db: SqlDatabase, billing_schema: Schema) -> None:
        db.apply_structure(billing_schema)
        assert db.apply_structure(billing_schema) == []

    def test_merge_adds_column(self, db: SqlDatabase, billing_schema: Schema) -> None:
        db.apply_structure(billing_schema)
        billing_schema.tables["party"].add_column(Column(name="email", type="string"))

        assert db.apply_structure(billing_schema) == [
            'ALTER TABLE "party" ADD COLUMN "email" TEXT'
        ]
        assert db.structure(["party"]).tables["party"].has_column("email")

    def test_merge_drops_target_only_tables(self, db: SqlDatabase, billing_schema: Schema) -> None:
        db.execute("CREATE TABLE legacy (id INTEGER)")
        db.apply_structure(billing_schema)
        assert "legacy" not in db.structure().table_names

    def test_table_filter_leaves_other_tables(
        self, db: SqlDatabase, billing_schema: Schema
    ) -> None:
        db.execute("CREATE TABLE legacy (id INTEGER)")
        db.apply_structure(billing_schema, SyncPolicy.MERGE, tables=["party"])
        assert sorted(db.structure().table_names) == ["legacy", "party"]

    def test_plan_structure_does_not_apply(self, db: SqlDatabase, billing_schema: Schema) -> None:
        plan = db.plan_structure(billing_schema)
        assert plan.statement_count == 3
        assert db.structure().table_names == []


class TestData:
    """Row extraction and upserts."""

    def test_data_ordered_by_primary_key(
        self, db: SqlDatabase, billing_schema: Schema, billing_data: dict
    ) -> None:
        db.synchronize(billing_schema, billing_data)

        data = db.data()

        assert [row["id"] for row in data["party"]] == [1, 2]
        assert data["party"][1] == {"id": 2, "name": "Globex", "active": 0}
        assert data["invoice"] == [{"id": "INV-1", "customer_id": 1, "total": 31.98}]

    def test_apply_data_upserts(self, db: SqlDatabase, billing_schema: Schema) -> None:
        db.apply_structure(billing_schema)
        db.apply_data({"party": [{"id": 1, "name": "Acme"}]})

        written = db.apply_data({"party": [{"id": 1, "name": "Acme Corp"}, {"id": 3, "name": "Initech"}]})

        assert written == 2
        assert _count(db, "party") == 2
        assert db.query("SELECT name FROM party WHERE id = 1") == [{"name": "Acme Corp"}]

    def test_unknown_table_rows_are_skipped(self, db: SqlDatabase, billing_schema: Schema) -> None:
        db.apply_structure(billing_schema)
        assert db.apply_data({"ghost": [{"id": 1}]}) == 0

    def test_blank_cells_in_typed_columns_become_null(self, db: SqlDatabase) -> None:
        schema = Schema().add_table(
            Table(name="item")
            .add_column(Column(name="id", type="integer"))
            .add_column(Column(name="qty", type="integer"))
            .add_column(Column(name="label", type="string"))
            .add_column(Column(name="attrs", type="json"))
            .set_primary_key(["id"])
        )
        db.apply_structure(schema)

        db.apply_data({"item": [{"id": 1, "qty": " ", "label": "", "attrs": {"color": "red"}}]})

        assert db.query("SELECT qty, label, attrs FROM item") == [
            {"qty": None, "label": "", "attrs": '{"color": "red"}'}
        ]

    def test_large_batches_are_chunked(self, db: SqlDatabase) -> None:
        """More bind parameters than sqlite allows in one statement."""
        schema = Schema().add_table(
            Table(name="n")
            .add_column(Column(name="id", type="integer"))
            .add_column(Column(name="v", type="integer"))
            .set_primary_key(["id"])
        )
        rows = [{"id": i, "v": i * 2} for i in range(1200)]

        outcome = db.synchronize(schema, {"n": rows})

        assert outcome.rows_loaded == 1200
        assert _count(db, "n") == 1200

    def test_repeated_keys_collapse_to_last_row(self, db: SqlDatabase) -> None:
        schema = Schema().add_table(
            Table(name="t")
            .add_column(Column(name="id", type="integer"))
            .add_column(Column(name="code", type="string"))
            .set_primary_key(["id"])
        )

        outcome = db.synchronize(schema, {"t": [{"id": 1, "code": "a"}, {"id": 1, "code": "b"}]})

        assert outcome.rows_loaded == 1
        assert _count(db, "t") == 1
        assert db.query("SELECT code FROM t") == [{"code": "b"}]


class TestSynchronize:
    """Policies and atomicity."""

    def test_merge_twice_keeps_row_count(
        self, db: SqlDatabase, billing_schema: Schema, billing_data: dict
    ) -> None:
        first = db.synchronize(billing_schema, billing_data, SyncPolicy.MERGE)
        second = db.synchronize(billing_schema, billing_data, SyncPolicy.MERGE)

        assert first.rows_loaded == 3
        assert second.statements == []
        assert _count(db, "party") == 2
        assert _count(db, "invoice") == 1

    def test_merge_keeps_rows_absent_from_source(
        self, db: SqlDatabase, billing_schema: Schema, billing_data: dict
    ) -> None:
        db.synchronize(billing_schema, billing_data)
        db.execute("INSERT INTO party (id, name, active) VALUES (99, 'Local', 1)")

        db.synchronize(billing_schema, billing_data)

        assert _count(db, "party") == 3

    def test_replace_discards_target_rows(
        self, db: SqlDatabase, billing_schema: Schema, billing_data: dict
    ) -> None:
        db.synchronize(billing_schema, billing_data)
        db.execute("INSERT INTO party (id, name, active) VALUES (99, 'Local', 1)")

        outcome = db.synchronize(billing_schema, billing_data, SyncPolicy.REPLACE)

        assert outcome.statements[0] == 'DROP TABLE "invoice"'
        assert _count(db, "party") == 2

    def test_structure_only_loads_nothing(
        self, db: SqlDatabase, billing_schema: Schema, billing_data: dict
    ) -> None:
        db.synchronize(billing_schema, billing_data)

        outcome = db.synchronize(billing_schema, billing_data, SyncPolicy.STRUCTURE_ONLY)

        assert outcome.rows_loaded == 0
        assert _count(db, "party") == 0
        assert _count(db, "invoice") == 0

    def test_table_filter_limits_rows(
        self, db: SqlDatabase, billing_schema: Schema, billing_data: dict
    ) -> None:
        outcome = db.synchronize(billing_schema, billing_data, tables=["party"])

        assert outcome.rows_loaded == 2
        assert db.structure().table_names == ["party"]

    def test_failure_rolls_back_ddl_and_rows(
        self, db: SqlDatabase, billing_schema: Schema, billing_data: dict
    ) -> None:
        """A failing upsert leaves no tables behind."""
        billing_data["invoice"].append({"id": None, "customer_id": 2, "total": 1.0})

        with pytest.raises(IntegrityError):
            db.synchronize(billing_schema, billing_data)

        assert db.structure().table_names == []

    def test_failure_keeps_previous_state(
        self, db: SqlDatabase, billing_schema: Schema, billing_data: dict
    ) -> None:
        db.synchronize(billing_schema, billing_data)
        broken = {"party": [{"id": 5, "name": "New", "active": True}], "invoice": [{"id": None}]}

        with pytest.raises(IntegrityError):
            db.synchronize(billing_schema, broken, SyncPolicy.REPLACE)

        assert _count(db, "party") == 2
        assert _count(db, "invoice") == 1
