"""
Unit tests for the RecordBuilder (transactions and deals).
"""

from __future__ import annotations

import re

import pytest

from sheet_mapper.normalizer import ValueNormalizer
from sheet_mapper.record_builder import RecordBuilder, field_columns
from sheet_mapper.schema import IGNORE, ColumnMapping, DatasetKind, RawTable


def mapping(column: str, field: str) -> ColumnMapping:
    return ColumnMapping(column, field, 1.0)


@pytest.fixture
def builder() -> RecordBuilder:
    return RecordBuilder(ValueNormalizer())


# ======================================================================
# Helpers
# ======================================================================

class TestFieldColumns:
    def test_ignored_columns_left_out(self) -> None:
        cols = field_columns([mapping("Datum", "date"), mapping("Notiz", IGNORE)])
        assert cols == {"date": "Datum"}


# ======================================================================
# Transactions
# ======================================================================

class TestTransactions:
    MAPPINGS = [
        mapping("Datum", "date"),
        mapping("Betrag", "amount"),
        mapping("Empfänger", "name"),
        mapping("Verwendungszweck", "description"),
        mapping("Kategorie", "category"),
    ]

    def test_values_normalised(self, builder: RecordBuilder) -> None:
        t = RawTable.from_records(
            [m.original_column for m in self.MAPPINGS],
            [{
                "Datum": "15.03.2024", "Betrag": "-1.250,00", "Empfänger": "Vermieter",
                "Verwendungszweck": "Miete März", "Kategorie": "Miete",
            }],
        )
        data = builder.build_transactions(t, self.MAPPINGS)
        assert data.dataset_kind is DatasetKind.TRANSACTIONS
        tx = data.records[0]
        assert tx.date == "2024-03-15"
        assert tx.amount == pytest.approx(-1250.0)
        assert tx.name == "Vermieter"
        assert tx.description == "Miete März"
        assert tx.category == "Rent"
        assert re.fullmatch(r"tx_[0-9a-f]{12}", tx.id)

    def test_name_and_description_fill_each_other(self, builder: RecordBuilder) -> None:
        t = RawTable.from_records(
            ["Datum", "Betrag", "Empfänger", "Verwendungszweck"],
            [
                {"Datum": "2024-01-01", "Betrag": "10", "Empfänger": "Shop", "Verwendungszweck": None},
                {"Datum": "2024-01-02", "Betrag": "20", "Empfänger": None, "Verwendungszweck": "Abo"},
            ],
        )
        records = builder.build_transactions(t, self.MAPPINGS[:4]).records
        assert (records[0].name, records[0].description) == ("Shop", "Shop")
        assert (records[1].name, records[1].description) == ("Abo", "Abo")

    def test_missing_category_defaults(self, builder: RecordBuilder) -> None:
        t = RawTable.from_records(
            ["Datum", "Betrag"], [{"Datum": "2024-01-01", "Betrag": "5"}]
        )
        tx = builder.build_transactions(t, self.MAPPINGS[:2]).records[0]
        assert tx.category == "Other"

    def test_unknown_category_passes_through(self, builder: RecordBuilder) -> None:
        t = RawTable.from_records(
            ["Datum", "Betrag", "Kategorie"],
            [{"Datum": "2024-01-01", "Betrag": "5", "Kategorie": "Kaffeekasse"}],
        )
        maps = self.MAPPINGS[:2] + [self.MAPPINGS[4]]
        assert builder.build_transactions(t, maps).records[0].category == "Kaffeekasse"

    def test_bad_rows_dropped_and_counted(self, builder: RecordBuilder) -> None:
        t = RawTable.from_records(
            ["Datum", "Betrag"],
            [
                {"Datum": "2024-01-01", "Betrag": "5"},
                {"Datum": "not a date", "Betrag": "5"},
                {"Datum": "2024-01-03", "Betrag": "n/a"},
                {"Datum": None, "Betrag": None},
            ],
        )
        data = builder.build_transactions(t, self.MAPPINGS[:2])
        assert len(data.records) == 1
        assert data.dropped_rows == 3
        assert data.issues == ["3 row(s) dropped: missing or unparsable date or amount"]

    def test_existing_id_kept(self, builder: RecordBuilder) -> None:
        t = RawTable.from_records(
            ["ID", "Datum", "Betrag"],
            [{"ID": 4711.0, "Datum": "2024-01-01", "Betrag": 5}],
        )
        maps = [mapping("ID", "id")] + self.MAPPINGS[:2]
        assert builder.build_transactions(t, maps).records[0].id == "4711"


# ======================================================================
# Deals
# ======================================================================

class TestDeals:
    MAPPINGS = [
        mapping("Deal", "dealName"),
        mapping("Kunde", "clientName"),
        mapping("Phase", "phase"),
        mapping("Wert", "amount"),
        mapping("Abschluss", "closingDate"),
        mapping("Produkt", "product"),
    ]
    HEADERS = ["Deal", "Kunde", "Phase", "Wert", "Abschluss", "Produkt"]

    def test_values_normalised(self, builder: RecordBuilder) -> None:
        t = RawTable.from_records(self.HEADERS, [{
            "Deal": "Rollout", "Kunde": "ACME GmbH", "Phase": "Verhandlung",
            "Wert": "€ 12.500,00", "Abschluss": "30.06.2024", "Produkt": "Suite",
        }])
        deal = builder.build_deals(t, self.MAPPINGS).records[0]
        assert deal.deal_name == "Rollout"
        assert deal.client_name == "ACME GmbH"
        assert deal.phase == "Negotiation"
        assert deal.amount == pytest.approx(12500.0)
        assert deal.closing_date == "2024-06-30"
        assert deal.first_appointment is None
        assert deal.product == "Suite"
        assert re.fullmatch(r"deal_[0-9a-f]{12}", deal.id)

    def test_name_and_client_defaults(self, builder: RecordBuilder) -> None:
        t = RawTable.from_records(self.HEADERS, [
            {"Deal": None, "Kunde": "Beta AG", "Phase": None, "Wert": "100",
             "Abschluss": None, "Produkt": None},
            {"Deal": "Pilot", "Kunde": None, "Phase": "Sonstiges", "Wert": "200",
             "Abschluss": None, "Produkt": None},
        ])
        first, second = builder.build_deals(t, self.MAPPINGS).records
        assert first.deal_name == "Deal with Beta AG"
        assert first.phase == "Unknown"
        assert first.product is None
        assert second.client_name == "Unknown Client"
        assert second.phase == "Sonstiges"

    def test_rows_without_amount_or_identity_dropped(self, builder: RecordBuilder) -> None:
        t = RawTable.from_records(self.HEADERS, [
            {"Deal": "A", "Kunde": "X", "Phase": None, "Wert": None,
             "Abschluss": None, "Produkt": None},
            {"Deal": None, "Kunde": None, "Phase": "Deal", "Wert": "5",
             "Abschluss": None, "Produkt": None},
            {"Deal": "B", "Kunde": "Y", "Phase": "won", "Wert": "7",
             "Abschluss": None, "Produkt": None},
        ])
        data = builder.build_deals(t, self.MAPPINGS)
        assert [d.deal_name for d in data.records] == ["B"]
        assert data.records[0].phase == "Deal"
        assert data.dropped_rows == 2
        assert "amount or name/client" in data.issues[0]
