"""Shared fixtures: a small billing schema (party <- invoice) and its rows."""

from pathlib import Path
from typing import Any

import pytest

from sheetbridge.schema.codec import encode_schema
from sheetbridge.schema.models import Column, ForeignKey, Index, Schema, Table
from sheetbridge.workbook import Workbook, save_workbook


def make_billing_schema() -> Schema:
    party = (
        Table(name="party")
        .add_column(Column(name="id", type="integer", nullable=False))
        .add_column(Column(name="name", type="string", length=100))
        .add_column(Column(name="active", type="boolean", default=True))
        .set_primary_key(["id"])
        .add_index(Index(name="idx_party_name", columns=["name"], unique=True))
    )
    invoice = (
        Table(name="invoice")
        .add_column(Column(name="id", type="string", length=20, nullable=False))
        .add_column(Column(name="customer_id", type="integer"))
        .add_column(Column(name="total", type="decimal", precision=10, scale=2))
        .set_primary_key(["id"])
        .add_foreign_key(
            ForeignKey(
                name="fk_customer",
                local_columns=["customer_id"],
                foreign_table="party",
                foreign_columns=["id"],
                on_delete="RESTRICT",
            )
        )
    )
    # referrer first, so ordering has work to do
    return Schema(name="billing").add_table(invoice).add_table(party)


@pytest.fixture
def billing_schema() -> Schema:
    return make_billing_schema()


@pytest.fixture
def billing_data() -> dict[str, list[dict[str, Any]]]:
    return {
        "party": [
            {"id": 1, "name": "Acme", "active": True},
            {"id": 2, "name": "Globex", "active": False},
        ],
        "invoice": [
            {"id": "INV-1", "customer_id": 1, "total": 31.98},
        ],
    }


@pytest.fixture
def billing_workbook(billing_schema: Schema, billing_data: dict) -> Workbook:
    """Workbook with the schema sheet and filled table sheets."""
    workbook = encode_schema(billing_schema)
    for name, rows in billing_data.items():
        workbook.get_sheet(name).set_records(rows)
    return workbook


@pytest.fixture
def billing_file(tmp_path: Path, billing_workbook: Workbook) -> Path:
    """The billing workbook saved as JSON."""
    path = tmp_path / "billing.json"
    save_workbook(billing_workbook, path)
    return path
