"""
Validation Layer.

Checks a proposed column mapping list (from AI Assist, the keyword
fallback or a human reviewer) against the table it belongs to and the
catalog of its declared dataset kind.

Checks performed
----------------
1. **Known columns**: every mapping must name a header of the table.
2. **Known fields**: every target must be a field of the declared kind
   (or ``ignore``).
3. **Duplicate detection**: a field must not be claimed by two headers.
4. **Required fields**: the kind's mandatory fields must all be mapped.
"""

from __future__ import annotations

from typing import Iterable, List, Mapping, Sequence

from sheet_mapper.catalog import SchemaCatalog
from sheet_mapper.column_matcher import resolve_duplicates
from sheet_mapper.config import ClassificationConfig
from sheet_mapper.logging_setup import get_logger
from sheet_mapper.schema import (
    IGNORE,
    ClassificationResult,
    ColumnMapping,
    DatasetKind,
    DataType,
)

logger = get_logger("validator")


class ValidationReport:
    """Accumulates errors and warnings during a validation pass."""

    def __init__(self) -> None:
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.missing_required: list[str] = []

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    @property
    def messages(self) -> list[str]:
        return self.errors + self.warnings

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)
        logger.info("Validation ERROR: %s", msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)
        logger.info("Validation WARNING: %s", msg)


class MappingValidator:
    """Validates column mappings for one dataset kind.

    Parameters
    ----------
    config:
        Penalty and review thresholds.
    catalogs:
        Catalog per canonical dataset kind.
    """

    def __init__(
        self,
        config: ClassificationConfig,
        catalogs: Mapping[DatasetKind, SchemaCatalog],
    ) -> None:
        self._config = config
        self._catalogs = catalogs

    # ------------------------------------------------------------------ #
    # Lenient pass (machine-proposed mappings)
    # ------------------------------------------------------------------ #

    def sanitize(
        self,
        kind: DatasetKind,
        mappings: Iterable[ColumnMapping],
        headers: Sequence[str],
    ) -> tuple[List[ColumnMapping], ValidationReport]:
        """Repair a proposed mapping list instead of rejecting it.

        Unknown columns are dropped, unknown fields become ``ignore``,
        duplicate claims are resolved and headers without a mapping get an
        ``ignore`` entry, so the result has exactly one mapping per header
        in header order.
        """
        report = ValidationReport()
        catalog = self._catalogs.get(kind)
        by_column: dict[str, ColumnMapping] = {}

        for m in mappings:
            if m.original_column not in headers:
                report.add_warning(f"Mapping for unknown column {m.original_column!r} dropped")
                continue
            if m.original_column in by_column:
                report.add_warning(f"Column {m.original_column!r} mapped twice; first kept")
                continue
            if m.is_mapped and (catalog is None or catalog.get(m.standard_field) is None):
                report.add_warning(
                    f"{m.standard_field!r} is not a {kind.value} field; "
                    f"column {m.original_column!r} ignored"
                )
                m = ColumnMapping(m.original_column, IGNORE, 0.0, DataType.TEXT, m.reasoning)
            elif m.is_mapped:
                m.data_type = catalog.expected_type(m.standard_field)
            by_column[m.original_column] = m

        ordered = [
            by_column.get(h) or ColumnMapping(h, IGNORE, 0.0, DataType.TEXT)
            for h in headers
        ]
        for issue in resolve_duplicates(ordered):
            report.add_warning(issue)

        self._check_required(kind, ordered, report)
        return ordered, report

    def apply(
        self, result: ClassificationResult, headers: Sequence[str]
    ) -> ClassificationResult:
        """Sanitise *result* in place and apply the missing-field penalty.

        The penalty is applied once, however many fields are missing.
        ``needs_manual_review`` ends up true when confidence is below the
        review threshold or any required field is unmapped.
        """
        mappings, report = self.sanitize(result.dataset_kind, result.mappings, headers)
        result.mappings = mappings
        result.issues.extend(report.messages)

        if report.missing_required:
            result.confidence *= self._config.missing_field_penalty
            logger.info(
                "Missing required field(s) %s for %s; confidence → %.2f",
                report.missing_required, result.dataset_kind.value, result.confidence,
            )
        result.needs_manual_review = (
            result.confidence < self._config.review_threshold
            or bool(report.missing_required)
        )
        return result

    # ------------------------------------------------------------------ #
    # Strict pass (human resubmission)
    # ------------------------------------------------------------------ #

    def validate_resubmission(
        self,
        kind: DatasetKind,
        mappings: Iterable[ColumnMapping],
        headers: Sequence[str],
        require_fields: bool = True,
    ) -> ValidationReport:
        """Every inconsistency in a reviewer's mapping list is an error.

        *require_fields* is turned off for wide budget matrices, whose month
        and value live in the header row rather than in mapped columns.
        """
        report = ValidationReport()
        catalog = self._catalogs.get(kind)
        mappings = list(mappings)

        seen_columns: set[str] = set()
        claimed: dict[str, str] = {}
        for m in mappings:
            if m.original_column not in headers:
                report.add_error(f"Unknown column {m.original_column!r}")
            if m.original_column in seen_columns:
                report.add_error(f"Column {m.original_column!r} mapped more than once")
            seen_columns.add(m.original_column)
            if not m.is_mapped:
                continue
            if catalog is None or catalog.get(m.standard_field) is None:
                report.add_error(f"{m.standard_field!r} is not a {kind.value} field")
                continue
            if m.standard_field in claimed:
                report.add_error(
                    f"Duplicate mapping for {m.standard_field!r}: "
                    f"{claimed[m.standard_field]!r} and {m.original_column!r}"
                )
            else:
                claimed[m.standard_field] = m.original_column

        if require_fields:
            self._check_required(kind, mappings, report, as_error=True)
        return report

    def _check_required(
        self,
        kind: DatasetKind,
        mappings: Sequence[ColumnMapping],
        report: ValidationReport,
        as_error: bool = False,
    ) -> None:
        catalog = self._catalogs.get(kind)
        if catalog is None:
            return
        mapped = {m.standard_field for m in mappings if m.is_mapped}
        for req in catalog.required_fields:
            if req not in mapped:
                report.missing_required.append(req)
                msg = f"Required field missing: {req!r}"
                if as_error:
                    report.add_error(msg)
                else:
                    report.add_warning(msg)
