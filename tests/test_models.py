"""Tests for the schema model: builder API, normalization and reference checks."""

import pytest
from pydantic import ValidationError

from sheetbridge.schema.models import (
    Column,
    ForeignKey,
    Index,
    Schema,
    SchemaDiff,
    Table,
    TableDiff,
)


class TestColumnAndIndex:
    """Field normalization on construction."""

    def test_type_is_lower_cased(self) -> None:
        """Logical types are stored lower-case and stripped."""
        assert Column(name="a", type=" Integer ").type == "integer"

    def test_column_defaults(self) -> None:
        """Columns are nullable with no sizing unless told otherwise."""
        col = Column(name="a", type="string")
        assert col.nullable is True
        assert col.default is None
        assert (col.length, col.precision, col.scale) == (None, None, None)

    def test_index_flags_are_a_sorted_set(self) -> None:
        """Duplicate, blank and mixed-case flags collapse."""
        index = Index(name="ix", columns=["a"], flags=["FullText", "fulltext", " ", "Spatial"])
        assert index.flags == ["fulltext", "spatial"]


class TestForeignKey:
    """Referential actions, effective names and signatures."""

    def test_action_is_normalized(self) -> None:
        fk = ForeignKey(
            local_columns=["a"],
            foreign_table="t",
            foreign_columns=["id"],
            on_delete="set  null",
            on_update="cascade",
        )
        assert fk.on_delete == "SET NULL"
        assert fk.on_update == "CASCADE"

    def test_unknown_action_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown referential action"):
            ForeignKey(
                local_columns=["a"], foreign_table="t", foreign_columns=["id"], on_delete="EXPLODE"
            )

    def test_effective_name_of_unnamed_key(self) -> None:
        """Unnamed keys are addressed as fk_ + local columns."""
        fk = ForeignKey(
            local_columns=["tenant_id", "customer_id"],
            foreign_table="party",
            foreign_columns=["tenant_id", "id"],
        )
        assert fk.effective_name == "fk_tenant_id_customer_id"

    def test_effective_name_of_named_key(self) -> None:
        fk = ForeignKey(
            name="fk_customer", local_columns=["a"], foreign_table="t", foreign_columns=["id"]
        )
        assert fk.effective_name == "fk_customer"

    def test_signature_ignores_name_and_no_action(self) -> None:
        """NO ACTION and an unset action are the same key."""
        named = ForeignKey(
            name="x",
            local_columns=["a"],
            foreign_table="t",
            foreign_columns=["id"],
            on_delete="NO ACTION",
        )
        unnamed = ForeignKey(local_columns=["a"], foreign_table="t", foreign_columns=["id"])
        assert named.signature() == unnamed.signature()


class TestTable:
    """Add/get/remove operations overwrite by name."""

    def test_add_column_replaces_by_name(self) -> None:
        table = Table(name="t").add_column(Column(name="a", type="string"))
        table.add_column(Column(name="b", type="integer"))
        table.add_column(Column(name="a", type="text"))

        assert table.column_names == ["a", "b"]
        assert table.get_column("a").type == "text"

    def test_remove_column(self) -> None:
        table = Table(name="t").add_column(Column(name="a", type="string"))
        table.remove_column("a").remove_column("missing")
        assert not table.has_column("a")

    def test_primary_key(self) -> None:
        table = Table(name="t").set_primary_key(["tenant", "id"])
        assert table.is_primary_key("id")
        assert not table.is_primary_key("name")

    def test_named_foreign_key_replaces(self) -> None:
        table = Table(name="t")
        table.add_foreign_key(
            ForeignKey(name="fk", local_columns=["a"], foreign_table="x", foreign_columns=["id"])
        )
        table.add_foreign_key(
            ForeignKey(name="fk", local_columns=["a"], foreign_table="y", foreign_columns=["id"])
        )
        assert len(table.foreign_keys) == 1
        assert table.get_foreign_key("fk").foreign_table == "y"

    def test_identical_unnamed_foreign_key_not_duplicated(self) -> None:
        fk = ForeignKey(local_columns=["a"], foreign_table="x", foreign_columns=["id"])
        table = Table(name="t").add_foreign_key(fk).add_foreign_key(fk.model_copy())
        assert len(table.foreign_keys) == 1

    def test_foreign_tables_first_seen_order(self) -> None:
        table = Table(name="t")
        for target in ("b", "a", "b"):
            table.add_foreign_key(
                ForeignKey(
                    local_columns=[f"{target}_id"], foreign_table=target, foreign_columns=["id"]
                )
            )
        assert table.foreign_tables == ["b", "a"]

    def test_remove_foreign_key_by_effective_name(self) -> None:
        table = Table(name="t").add_foreign_key(
            ForeignKey(local_columns=["a"], foreign_table="x", foreign_columns=["id"])
        )
        table.remove_foreign_key("fk_a")
        assert table.foreign_keys == []

    def test_indexes(self) -> None:
        table = Table(name="t").add_index(Index(name="ix", columns=["a"]))
        assert table.has_index("ix")
        table.remove_index("ix")
        assert table.get_index("ix") is None

    def test_reference_errors(self) -> None:
        """Key, index and FK columns must exist on the table."""
        table = (
            Table(name="t")
            .add_column(Column(name="a", type="string"))
            .set_primary_key(["id"])
            .add_index(Index(name="ix", columns=["b"]))
            .add_foreign_key(
                ForeignKey(local_columns=["c"], foreign_table="x", foreign_columns=["id"])
            )
        )
        errors = table.reference_errors()
        assert len(errors) == 3
        assert "unknown column 'id'" in errors[0]


class TestSchema:
    """Schema-level lookups, subsets and validation."""

    def test_table_lookup(self, billing_schema: Schema) -> None:
        assert billing_schema.has_table("party")
        assert billing_schema.get_table("missing") is None
        assert billing_schema.table_names == ["invoice", "party"]

    def test_subset_is_a_deep_copy(self, billing_schema: Schema) -> None:
        subset = billing_schema.subset(["party"])
        subset.tables["party"].remove_column("name")

        assert subset.table_names == ["party"]
        assert billing_schema.tables["party"].has_column("name")

    def test_subset_none_keeps_everything(self, billing_schema: Schema) -> None:
        assert billing_schema.subset(None) == billing_schema

    def test_valid_schema_has_no_reference_errors(self, billing_schema: Schema) -> None:
        assert billing_schema.reference_errors() == []

    def test_unknown_foreign_column(self, billing_schema: Schema) -> None:
        billing_schema.tables["invoice"].foreign_keys[0].foreign_columns = ["code"]
        errors = billing_schema.reference_errors()
        assert errors == [
            "Foreign key 'fk_customer' on table 'invoice' references unknown column 'party.code'"
        ]

    def test_foreign_table_outside_schema_allowed(self, billing_schema: Schema) -> None:
        """A partial schema may reference tables it does not describe."""
        assert billing_schema.subset(["invoice"]).reference_errors() == []


class TestSchemaDiff:
    """Diff containers and reporting."""

    def test_empty_diff(self) -> None:
        diff = SchemaDiff()
        assert diff.is_empty
        assert diff.change_count == 0
        assert diff.format_report() == "Schemas match"

    def test_report_lists_changes(self) -> None:
        diff = SchemaDiff(
            created_tables=[Table(name="invoice")],
            dropped_tables=["legacy"],
            altered_tables=[
                TableDiff(name="party", added_columns=[Column(name="email", type="string")])
            ],
        )
        report = diff.format_report()

        assert diff.change_count == 3
        assert "+ invoice" in report
        assert "- legacy" in report
        assert "+ column email" in report

    def test_table_diff_empty(self) -> None:
        assert TableDiff(name="t").is_empty
        assert not TableDiff(name="t", primary_key=[]).is_empty
