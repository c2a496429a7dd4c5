"""
Generic Ingestion Fallback.

Files that match no canonical dataset kind still get stored: a best-effort
column schema is inferred (number → date → boolean → text, first type that
fits a majority of sampled values wins) and every row is coerced against
it.  AI Assist may propose the schema instead; the heuristic is used for
anything it does not answer.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence

from sheet_mapper.ai_assist import AIAssist, AssistRequest, DisabledAIAssist
from sheet_mapper.config import GenericConfig
from sheet_mapper.errors import AIServiceUnavailable
from sheet_mapper.logging_setup import get_logger
from sheet_mapper.normalizer import LabelNormalizer, ValueNormalizer, is_blank
from sheet_mapper.schema import (
    DatasetKind,
    DataType,
    GenericColumn,
    GenericDataset,
    NormalizedData,
    RawTable,
)

logger = get_logger("generic")

# "01.03.2024" also survives amount parsing (dots as thousands separators).
_DATE_LIKE_RE = re.compile(r"^\d{1,4}[./-]\d{1,2}[./-]\d{1,4}$")
_SLUG_RE = re.compile(r"[^a-z0-9]+")

_TYPE_ORDER = (DataType.NUMBER, DataType.DATE, DataType.BOOLEAN)


def slugify(name: str) -> str:
    """Storage-safe key for a column name; empty when nothing survives."""
    folded = LabelNormalizer().normalize_label(name)
    return _SLUG_RE.sub("_", folded).strip("_")


class GenericIngestor:
    """Infers a schema for, and normalises, an unclassified table.

    Parameters
    ----------
    config:
        Sample size for type inference.
    ai_assist:
        Optional schema-inference collaborator.
    values:
        Value normaliser used for both inference and coercion.
    """

    def __init__(
        self,
        config: GenericConfig,
        ai_assist: Optional[AIAssist] = None,
        values: Optional[ValueNormalizer] = None,
    ) -> None:
        self._config = config
        self._ai = ai_assist or DisabledAIAssist()
        self._values = values or ValueNormalizer()

    # ------------------------------------------------------------------ #
    # Type inference
    # ------------------------------------------------------------------ #

    def infer_type(self, samples: Sequence[Any]) -> Optional[DataType]:
        """Tightest type fitting more than half of the non-empty *samples*.

        Returns ``None`` when every sample is empty.
        """
        non_empty = [v for v in samples if not is_blank(v)]
        if not non_empty:
            return None
        for dtype in _TYPE_ORDER:
            fits = sum(1 for v in non_empty if self._fits(v, dtype))
            if fits * 2 > len(non_empty):
                return dtype
        return DataType.TEXT

    def _fits(self, value: Any, dtype: DataType) -> bool:
        if dtype is DataType.NUMBER:
            if isinstance(value, str) and _DATE_LIKE_RE.match(value.strip()):
                return False
            return self._values.parse_amount(value) is not None
        if dtype is DataType.DATE:
            return self._values.parse_date(value) is not None
        return self._values.parse_boolean(value) is not None

    def infer_schema(self, table: RawTable) -> List[GenericColumn]:
        """Sampling heuristic, one column per header."""
        return self._build_columns(table, {})

    def _build_columns(
        self, table: RawTable, suggested: Dict[str, Optional[DataType]]
    ) -> List[GenericColumn]:
        columns: List[GenericColumn] = []
        used: set[str] = set()
        for index, header in enumerate(table.headers):
            key = slugify(header) or f"column_{index + 1}"
            base, n = key, 2
            while key in used:
                key, n = f"{base}_{n}", n + 1
            used.add(key)

            if header in suggested:
                dtype = suggested[header]
            else:
                dtype = self.infer_type(table.column(header, self._config.sample_rows))
            columns.append(GenericColumn(name=header, key=key, data_type=dtype))
        return columns

    # ------------------------------------------------------------------ #
    # Normalisation
    # ------------------------------------------------------------------ #

    def build(
        self,
        table: RawTable,
        use_ai: bool = True,
        business_context: Optional[str] = None,
    ) -> NormalizedData:
        """Infer the schema and coerce every row against it."""
        suggested: Dict[str, Optional[DataType]] = {}
        if use_ai:
            request = AssistRequest(
                file_name=table.file_name,
                headers=list(table.headers),
                sample_rows=table.sample(self._config.sample_rows),
                business_context=business_context,
            )
            try:
                suggested = self._ai.infer_schema(request)
            except AIServiceUnavailable as exc:
                logger.warning("AI schema inference unavailable (%s); using heuristic", exc)

        columns = self._build_columns(table, suggested)
        rows: List[Dict[str, Any]] = []
        dropped = 0
        for raw in table.rows:
            row = {
                col.key: (
                    self._values.coerce(raw.get(col.name), col.data_type)
                    if col.data_type is not None
                    else None
                )
                for col in columns
            }
            if all(v is None for v in row.values()):
                dropped += 1
                continue
            rows.append(row)

        issues: List[str] = []
        untyped = [c.name for c in columns if c.data_type is None]
        unnamed = [c.key for c in columns if not c.name.strip()]
        if untyped:
            issues.append(f"No type could be inferred for: {untyped}")
        if unnamed:
            issues.append(f"Unnamed column(s): {unnamed}")
        if not rows:
            issues.append("No row survived normalisation")
        if dropped:
            issues.append(f"{dropped} empty row(s) dropped")

        ready = not untyped and not unnamed and bool(rows)
        logger.info(
            "generic: %d column(s), %d row(s), ready_for_insert=%s",
            len(columns), len(rows), ready,
        )
        dataset = GenericDataset(columns=columns, rows=rows, ready_for_insert=ready, issues=issues)
        return NormalizedData(DatasetKind.GENERIC, dataset, dropped_rows=dropped, issues=list(issues))
