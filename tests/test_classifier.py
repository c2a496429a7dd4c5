"""
Unit tests for the DatasetClassifier decision pipeline.
"""

from __future__ import annotations

from typing import Optional

import pytest

from sheet_mapper.ai_assist import AIClassification, AssistRequest
from sheet_mapper.catalog import BUILTIN_CATALOGS
from sheet_mapper.classifier import DatasetClassifier
from sheet_mapper.column_matcher import ColumnMatcher
from sheet_mapper.config import ClassificationConfig, MatchingConfig
from sheet_mapper.errors import AIServiceUnavailable
from sheet_mapper.schema import IGNORE, ColumnMapping, DatasetKind, DataType, RawTable


class FailingAI:
    def __init__(self) -> None:
        self.calls = 0

    def classify(self, request: AssistRequest) -> AIClassification:
        self.calls += 1
        raise AIServiceUnavailable("timeout")

    def infer_schema(self, request: AssistRequest):  # noqa: ANN201
        raise AIServiceUnavailable("timeout")


class FixedAI:
    def __init__(self, answer: AIClassification) -> None:
        self.answer = answer
        self.request: Optional[AssistRequest] = None

    def classify(self, request: AssistRequest) -> AIClassification:
        self.request = request
        return self.answer

    def infer_schema(self, request: AssistRequest):  # noqa: ANN201
        raise AIServiceUnavailable("not used")


def make_classifier(ai=None) -> DatasetClassifier:  # noqa: ANN001
    return DatasetClassifier(
        ClassificationConfig(),
        BUILTIN_CATALOGS,
        ColumnMatcher(MatchingConfig()),
        ai,
    )


def table(headers, *rows, name="upload.csv") -> RawTable:  # noqa: ANN001
    return RawTable.from_records(
        list(headers), [dict(zip(headers, r)) for r in rows], file_name=name
    )


E2E_TABLE = table(
    ["Transaction ID", "Date", "Name", "Amount", "Category"],
    ["1", "01.03.2024", "Acme", "1.250,00", "Umsatz"],
)

ABBREVIATED = table(
    ["Amt", "Dt", "Notes"],
    ["10,00", "01.01.2024", "coffee"],
    ["12,50", "02.01.2024", "lunch"],
)


# ======================================================================
# Auto-map pass
# ======================================================================

class TestAutoMap:
    def test_transactions_auto_mapped(self) -> None:
        ai = FailingAI()
        result = make_classifier(ai).classify(E2E_TABLE)
        assert result.dataset_kind is DatasetKind.TRANSACTIONS
        assert result.auto_mapped
        assert not result.needs_manual_review
        assert result.method == "auto"
        assert result.confidence == 1.0
        assert ai.calls == 0

    def test_deals_take_priority(self) -> None:
        t = table(
            ["Deal Name", "Client", "Amount", "Stage"],
            ["Relaunch", "Acme", "5000", "won"],
        )
        result = make_classifier().classify(t)
        assert result.dataset_kind is DatasetKind.DEALS
        assert result.auto_mapped
        assert result.mapped_fields == {
            "dealName": "Deal Name",
            "clientName": "Client",
            "amount": "Amount",
            "phase": "Stage",
        }

    def test_auto_mapped_implies_required_and_confidence(self) -> None:
        tables = [
            E2E_TABLE,
            ABBREVIATED,
            table(["Kunde", "Info"], ["Acme", "x"]),
            table(["Monat", "Budget", "Kategorie"], ["Jan 2024", "100", "Rent"]),
        ]
        classifier = make_classifier()
        for t in tables:
            result = classifier.classify(t)
            if result.auto_mapped:
                required = BUILTIN_CATALOGS[result.dataset_kind].required_fields
                assert set(required) <= set(result.mapped_fields)
                assert result.confidence >= 0.9
                assert not result.needs_manual_review

    def test_business_insights(self) -> None:
        result = make_classifier().classify(E2E_TABLE)
        insights = result.business_insights
        assert insights["primaryAmount"] == "Amount"
        assert insights["dateFormat"] == "DD.MM.YYYY"
        assert insights["numberFormat"] == "de"
        assert insights["rowCount"] == 1

    def test_preview_is_bounded(self) -> None:
        rows = [["1", "01.03.2024", "Acme", "1,00", "Umsatz"]] * 25
        t = table(["Transaction ID", "Date", "Name", "Amount", "Category"], *rows)
        result = make_classifier().classify(t)
        assert len(result.preview) == 10


# ======================================================================
# AI Assist pass
# ======================================================================

class TestAIAssist:
    def test_ai_answer_used(self) -> None:
        ai = FixedAI(
            AIClassification(
                dataset_kind=DatasetKind.TRANSACTIONS,
                confidence=0.95,
                mappings=[
                    ColumnMapping("Amt", "amount", 0.95),
                    ColumnMapping("Dt", "date", 0.95),
                ],
                business_insights={"detectedLanguage": "de"},
            )
        )
        result = make_classifier(ai).classify(ABBREVIATED, business_context="bakery")
        assert result.method == "ai"
        assert result.dataset_kind is DatasetKind.TRANSACTIONS
        assert not result.needs_manual_review
        assert not result.auto_mapped
        assert [m.original_column for m in result.mappings] == ["Amt", "Dt", "Notes"]
        assert result.mappings[2].standard_field == IGNORE
        assert result.mappings[0].data_type is DataType.CURRENCY
        assert result.business_insights["detectedLanguage"] == "de"
        assert ai.request is not None
        assert ai.request.business_context == "bakery"
        assert len(ai.request.sample_rows) == 2

    def test_missing_required_field_penalised(self) -> None:
        ai = FixedAI(
            AIClassification(
                dataset_kind=DatasetKind.DEALS,
                confidence=0.9,
                mappings=[ColumnMapping("Notes", "dealName", 0.9)],
            )
        )
        result = make_classifier(ai).classify(ABBREVIATED)
        assert result.confidence == pytest.approx(0.63)
        assert result.needs_manual_review
        assert any("'amount'" in i for i in result.issues)
        assert any("'clientName'" in i for i in result.issues)

    def test_ai_mappings_are_repaired(self) -> None:
        ai = FixedAI(
            AIClassification(
                dataset_kind=DatasetKind.TRANSACTIONS,
                confidence=0.9,
                mappings=[
                    ColumnMapping("Ghost", "amount", 0.9),
                    ColumnMapping("Amt", "amount", 0.9),
                    ColumnMapping("Notes", "amount", 0.5),
                    ColumnMapping("Dt", "dealName", 0.9),
                ],
            )
        )
        result = make_classifier(ai).classify(ABBREVIATED)
        fields = [m.standard_field for m in result.mappings]
        assert fields == ["amount", IGNORE, IGNORE]
        assert any("Ghost" in i for i in result.issues)
        assert any("dealName" in i for i in result.issues)
        # date lost → penalty and review
        assert result.confidence == pytest.approx(0.63)
        assert result.needs_manual_review

    def test_empty_ai_mappings_fall_back(self) -> None:
        ai = FixedAI(AIClassification(DatasetKind.DEALS, 0.99, mappings=[]))
        result = make_classifier(ai).classify(table(["Kunde", "Info"], ["Acme", "x"]))
        assert result.method == "fallback"


# ======================================================================
# Keyword fallback
# ======================================================================

class TestFallback:
    def test_ai_failure_recovered(self) -> None:
        result = make_classifier(FailingAI()).classify(table(["Kunde", "Info"], ["Acme", "x"]))
        assert result.method == "fallback"
        assert result.dataset_kind is DatasetKind.DEALS
        assert result.mapped_fields == {"clientName": "Kunde"}
        assert result.mappings[0].confidence == pytest.approx(0.7)
        # 0.7 base, missing dealName/amount penalty once
        assert result.confidence == pytest.approx(0.49)
        assert result.needs_manual_review

    def test_month_columns_suggest_budget(self) -> None:
        t = table(["Category", "Jan", "Feb", "Mar"], ["Rent", "1", "2", "3"])
        result = make_classifier().classify(t)
        assert result.dataset_kind is DatasetKind.BUDGET
        assert result.confidence == pytest.approx(0.42)
        assert result.needs_manual_review

    def test_transaction_keywords(self) -> None:
        t = table(["Buchung", "Wert"], ["01.01.2024", "5"])
        result = make_classifier().classify(t)
        assert result.dataset_kind is DatasetKind.TRANSACTIONS
        assert result.method == "fallback"

    def test_unrecognised_is_generic(self) -> None:
        t = table(["Sensor", "Reading"], ["A-17", "3.5"])
        result = make_classifier(FailingAI()).classify(t)
        assert result.dataset_kind is DatasetKind.GENERIC
        assert result.confidence == pytest.approx(0.3)
        assert result.needs_manual_review
        assert all(m.standard_field == IGNORE for m in result.mappings)

    def test_confidence_in_unit_interval(self) -> None:
        classifier = make_classifier(FailingAI())
        for t in [E2E_TABLE, ABBREVIATED, table(["x"], ["1"])]:
            result = classifier.classify(t)
            assert 0.0 <= result.confidence <= 1.0
