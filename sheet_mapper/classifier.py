"""
Classification Orchestrator.

Decides which dataset kind an uploaded table is and how its columns map
onto that kind's catalog:

    auto-map pass (per kind, in priority order)
        → AI Assist (optional, bounded by a timeout)
        → keyword fallback (low confidence, always succeeds)
        → validation (required fields, duplicates, penalty)

Classification never raises.  The worst case is a low-confidence result
with ``needs_manual_review`` set, or ``DatasetKind.GENERIC`` which routes
the table to the generic ingestion fallback.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

from sheet_mapper.ai_assist import AIAssist, AssistRequest, DisabledAIAssist
from sheet_mapper.catalog import MONTH_NAMES, SchemaCatalog
from sheet_mapper.column_matcher import ColumnMatcher, MatchOutcome
from sheet_mapper.config import ClassificationConfig
from sheet_mapper.errors import AIServiceUnavailable
from sheet_mapper.logging_setup import get_logger
from sheet_mapper.normalizer import LabelNormalizer, is_blank
from sheet_mapper.schema import (
    IGNORE,
    ClassificationResult,
    ColumnMapping,
    DatasetKind,
    DataType,
    RawTable,
)
from sheet_mapper.validator import MappingValidator

logger = get_logger("classifier")

GENERIC_CONFIDENCE = 0.3

# Keyword fallback, checked in this order.  Patterns run against the
# normalised, space-joined header row.
_FALLBACK_RULES: tuple[tuple[DatasetKind, re.Pattern, float], ...] = (
    (
        DatasetKind.DEALS,
        re.compile(r"deal|client|kunde|phase|pipeline|opportunit|stage"),
        0.7,
    ),
    (
        DatasetKind.BUDGET,
        re.compile(r"budget|\bplan|\bmonth|\bmonat"),
        0.6,
    ),
    (
        DatasetKind.TRANSACTIONS,
        re.compile(r"amount|betrag|\bdate\b|datum|transaction|buchung|umsatz"),
        0.7,
    ),
)

_DATE_FORMATS: tuple[tuple[str, re.Pattern], ...] = (
    ("YYYY-MM-DD", re.compile(r"^\d{4}-\d{1,2}-\d{1,2}")),
    ("DD.MM.YYYY", re.compile(r"^\d{1,2}\.\d{1,2}\.\d{4}$")),
    ("MM/DD/YYYY", re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$")),
    ("serial", re.compile(r"^\d{5}(?:\.\d+)?$")),
)


class DatasetClassifier:
    """Turns a ``RawTable`` into a ``ClassificationResult``.

    Parameters
    ----------
    config:
        Thresholds, kind priority, sample sizes.
    catalogs:
        Catalog per canonical dataset kind.
    matcher:
        Header scorer shared by the auto-map and fallback passes.
    ai_assist:
        Optional remote collaborator; a disabled stand-in when omitted.
    """

    def __init__(
        self,
        config: ClassificationConfig,
        catalogs: Mapping[DatasetKind, SchemaCatalog],
        matcher: ColumnMatcher,
        ai_assist: Optional[AIAssist] = None,
    ) -> None:
        self._config = config
        self._catalogs = catalogs
        self._matcher = matcher
        self._ai = ai_assist or DisabledAIAssist()
        self._validator = MappingValidator(config, catalogs)
        self._labels = LabelNormalizer()

    @property
    def validator(self) -> MappingValidator:
        return self._validator

    def classify(
        self,
        table: RawTable,
        business_context: Optional[str] = None,
    ) -> ClassificationResult:
        """Run the full decision pipeline for one table."""
        headers = list(table.headers)

        for kind in self._config.kind_order:
            outcome = self._matcher.match(headers, self._catalogs[kind])
            logger.info(
                "Auto-map %s: avg=%.2f, missing=%s",
                kind.value, outcome.average_confidence, outcome.missing_required,
            )
            if (
                outcome.has_required_fields
                and outcome.average_confidence >= self._config.auto_map_threshold
            ):
                return self._auto_mapped(table, outcome)

        result = self._ai_pass(table, business_context)
        if result is None:
            result = self._fallback(table)

        result = self._validator.apply(result, headers)
        result.preview = table.sample(self._config.preview_rows)
        logger.info(
            "Classified %r as %s via %s (confidence=%.2f, review=%s)",
            table.file_name, result.dataset_kind.value, result.method,
            result.confidence, result.needs_manual_review,
        )
        return result

    # ------------------------------------------------------------------ #
    # Stages
    # ------------------------------------------------------------------ #

    def _auto_mapped(self, table: RawTable, outcome: MatchOutcome) -> ClassificationResult:
        logger.info(
            "Auto-mapped %r as %s (avg confidence %.2f)",
            table.file_name, outcome.kind.value, outcome.average_confidence,
        )
        return ClassificationResult(
            dataset_kind=outcome.kind,
            confidence=outcome.average_confidence,
            mappings=outcome.mappings,
            issues=list(outcome.issues),
            needs_manual_review=False,
            auto_mapped=True,
            method="auto",
            preview=table.sample(self._config.preview_rows),
            business_insights=self.describe(table, outcome.mappings),
        )

    def _ai_pass(
        self, table: RawTable, business_context: Optional[str]
    ) -> Optional[ClassificationResult]:
        request = AssistRequest(
            file_name=table.file_name,
            headers=list(table.headers),
            sample_rows=table.sample(self._config.ai_sample_size),
            business_context=business_context,
        )
        try:
            answer = self._ai.classify(request)
        except AIServiceUnavailable as exc:
            logger.warning("AI Assist unavailable (%s); using keyword fallback", exc)
            return None

        if not any(m.is_mapped for m in answer.mappings):
            logger.info("AI Assist returned no usable mappings; using keyword fallback")
            return None

        insights = self.describe(table, answer.mappings)
        insights.update(answer.business_insights)
        return ClassificationResult(
            dataset_kind=answer.dataset_kind,
            confidence=answer.confidence,
            mappings=answer.mappings,
            issues=list(answer.issues),
            method="ai",
            business_insights=insights,
        )

    def _fallback(self, table: RawTable) -> ClassificationResult:
        """Keyword heuristic over the header row.  Always returns a result."""
        labels = [self._labels.normalize_label(h) for h in table.headers]
        joined = " ".join(labels)
        tokens = {t for label in labels for t in self._labels.tokens(label)}

        for kind, pattern, confidence in _FALLBACK_RULES:
            hit = bool(pattern.search(joined))
            if kind is DatasetKind.BUDGET and not hit:
                hit = len(tokens & MONTH_NAMES.keys()) >= 2
            if not hit:
                continue
            outcome = self._matcher.match(
                table.headers,
                self._catalogs[kind],
                accept_threshold=self._config.fallback_accept_threshold,
                confidence_cap=self._config.fallback_mapping_cap,
            )
            logger.info("Keyword fallback picked %s (%.2f)", kind.value, confidence)
            return ClassificationResult(
                dataset_kind=kind,
                confidence=confidence,
                mappings=outcome.mappings,
                issues=list(outcome.issues),
                method="fallback",
                business_insights=self.describe(table, outcome.mappings),
            )

        logger.info("No dataset kind recognised for %r", table.file_name)
        return ClassificationResult(
            dataset_kind=DatasetKind.GENERIC,
            confidence=GENERIC_CONFIDENCE,
            mappings=[ColumnMapping(h, IGNORE, 0.0, DataType.TEXT) for h in table.headers],
            issues=["No canonical dataset kind matched the headers"],
            method="fallback",
            business_insights=self.describe(table, []),
        )

    # ------------------------------------------------------------------ #
    # Insights
    # ------------------------------------------------------------------ #

    def describe(self, table: RawTable, mappings: list[ColumnMapping]) -> dict[str, Any]:
        """Observed formatting conventions, for the review UI."""
        by_field = {m.standard_field: m.original_column for m in mappings if m.is_mapped}
        amount_col = by_field.get("amount") or by_field.get("budgetedAmount") or ""
        date_col = (
            by_field.get("date") or by_field.get("closingDate") or by_field.get("month") or ""
        )
        return {
            "rowCount": len(table.rows),
            "columnCount": len(table.headers),
            "primaryAmount": amount_col,
            "dateFormat": self._date_format(table, date_col),
            "numberFormat": self._number_format(table, amount_col),
        }

    def _samples(self, table: RawTable, header: str) -> list[str]:
        if not header:
            return []
        values = table.column(header, self._config.preview_rows)
        return [str(v).strip() for v in values if not is_blank(v)]

    def _date_format(self, table: RawTable, header: str) -> str:
        for value in self._samples(table, header):
            for name, pattern in _DATE_FORMATS:
                if pattern.match(value):
                    return name
        return "unknown"

    def _number_format(self, table: RawTable, header: str) -> str:
        for value in self._samples(table, header):
            comma, dot = value.rfind(","), value.rfind(".")
            if comma > dot >= 0:
                return "de"
            if dot > comma >= 0:
                return "en"
        return "unknown"
