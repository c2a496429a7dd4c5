"""
Budget Matrix Reshaper.

Budget plans arrive either as a **wide** matrix (one category column, one
column per month) or as a **long** table (one row per month × category with
an explicit value column).  ``BudgetReshaper`` detects which from a sample
of the data and flattens both into ``(month, category, value)`` triples,
aggregated into a ``StandardBudget``.

Month keys are ``YYYY-MM`` whenever the month label parses as a date;
labels that do not parse are kept verbatim.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sheet_mapper.config import ReshapeConfig
from sheet_mapper.logging_setup import get_logger
from sheet_mapper.normalizer import LabelNormalizer, ValueNormalizer, is_blank
from sheet_mapper.record_builder import field_columns
from sheet_mapper.schema import (
    ColumnMapping,
    DatasetKind,
    NormalizedData,
    RawTable,
    StandardBudget,
)

logger = get_logger("reshaper")

WIDE = "wide"
LONG = "long"

# Row totals look numeric but are not months.
_TOTAL_LABELS = frozenset({"total", "summe", "gesamt", "sum", "jahr", "year", "ytd"})

# Header keywords for long tables whose columns were not mapped.
_LONG_KEYWORDS: Dict[str, tuple[str, ...]] = {
    "month": ("month", "monat", "period", "periode", "date", "datum"),
    "category": ("category", "kategorie", "cost center", "kostenstelle", "position", "item"),
    "budgetedAmount": ("value", "amount", "budget", "betrag", "wert", "plan", "soll"),
}


@dataclass
class BudgetShape:
    """Result of shape detection."""

    layout: str  # WIDE | LONG
    category_candidates: List[str] = field(default_factory=list)
    month_candidates: List[str] = field(default_factory=list)

    @property
    def is_wide(self) -> bool:
        return self.layout == WIDE


class BudgetReshaper:
    """Detects budget layout and flattens it.

    Parameters
    ----------
    config:
        Sample size and numeric-ratio thresholds.
    values:
        Value normaliser for amounts and month labels.
    """

    def __init__(
        self,
        config: ReshapeConfig,
        values: Optional[ValueNormalizer] = None,
    ) -> None:
        self._config = config
        self._values = values or ValueNormalizer()
        self._labels = LabelNormalizer()

    # ------------------------------------------------------------------ #
    # Shape detection
    # ------------------------------------------------------------------ #

    def detect_shape(
        self, table: RawTable, mappings: Sequence[ColumnMapping] = ()
    ) -> BudgetShape:
        """Classify *table* as wide or long.

        A column is a month candidate when at least ``numeric_ratio`` of its
        sampled non-empty values are numbers and it has at least
        ``min_numeric_values`` of them.  Any other non-empty column is a
        category candidate.  Exactly one category candidate plus two or more
        month candidates means wide.

        Mappings that already name a ``month`` and a ``budgetedAmount``
        column describe a long table.  A column mapped to ``month`` holds
        month labels, so it is never a month candidate itself.
        """
        mapped = {m.standard_field: m.original_column for m in mappings}
        if "month" in mapped and "budgetedAmount" in mapped:
            logger.info("Budget layout %s: month and value columns are mapped", LONG)
            return BudgetShape(LONG)

        month_column = mapped.get("month")
        categories: List[str] = []
        months: List[str] = []

        for header in table.headers:
            sample = table.column(header, self._config.sample_rows)
            non_empty = [v for v in sample if not is_blank(v)]
            if not non_empty:
                continue
            numeric = sum(1 for v in non_empty if self._values.parse_amount(v) is not None)
            is_numeric = (
                numeric >= self._config.min_numeric_values
                and numeric / len(non_empty) >= self._config.numeric_ratio
            )
            if not is_numeric:
                categories.append(header)
            elif header != month_column and (
                self._labels.normalize_label(header) not in _TOTAL_LABELS
            ):
                months.append(header)

        layout = WIDE if len(categories) == 1 and len(months) >= 2 else LONG
        logger.info(
            "Budget layout %s: category=%s, months=%d",
            layout, categories, len(months),
        )
        return BudgetShape(layout, categories, months)

    # ------------------------------------------------------------------ #
    # Flattening
    # ------------------------------------------------------------------ #

    def reshape(
        self, table: RawTable, mappings: Sequence[ColumnMapping] = ()
    ) -> NormalizedData:
        """Flatten *table* into a ``StandardBudget``."""
        shape = self.detect_shape(table, mappings)
        if shape.is_wide:
            triples, dropped, issues = self._wide(table, shape)
        else:
            triples, dropped, issues = self._long(table, mappings)

        budget = self._aggregate(triples)
        if dropped:
            issues.append(f"{dropped} row(s) dropped: missing or unparsable required value")
            logger.warning("budget: %d row(s) dropped", dropped)
        logger.info(
            "budget: %d triple(s), %d month(s), %d categor(ies)",
            len(triples), len(budget.months), len(budget.categories),
        )
        return NormalizedData(DatasetKind.BUDGET, budget, dropped_rows=dropped, issues=issues)

    def month_label(self, raw: object) -> Optional[str]:
        """``YYYY-MM`` when *raw* parses as a date, else the stripped text."""
        if is_blank(raw):
            return None
        return self._values.month_key(raw) or str(raw).strip()

    def _wide(
        self, table: RawTable, shape: BudgetShape
    ) -> tuple[List[tuple[str, str, float]], int, List[str]]:
        category_col = shape.category_candidates[0]
        month_keys = {h: self.month_label(h) for h in shape.month_candidates}
        unparsed = [h for h in shape.month_candidates if self._values.month_key(h) is None]
        issues = [f"Month header(s) kept verbatim: {unparsed}"] if unparsed else []

        triples: List[tuple[str, str, float]] = []
        dropped = 0
        for row in table.rows:
            category = row.get(category_col)
            if is_blank(category):
                dropped += 1
                continue
            for header, month in month_keys.items():
                value = row.get(header)
                if is_blank(value):
                    continue
                triples.append((month, str(category).strip(), self._values.coerce_amount(value)))
        return triples, dropped, issues

    def _long(
        self, table: RawTable, mappings: Sequence[ColumnMapping]
    ) -> tuple[List[tuple[str, str, float]], int, List[str]]:
        cols = field_columns(mappings)
        for name in ("month", "category", "budgetedAmount"):
            if name not in cols:
                guess = self._guess_column(table.headers, name, set(cols.values()))
                if guess:
                    cols[name] = guess

        missing = [n for n in ("month", "category", "budgetedAmount") if n not in cols]
        if missing:
            logger.warning("Long budget table lacks column(s) for %s", missing)
            return [], len(table.rows), [f"No column found for {missing}"]

        triples: List[tuple[str, str, float]] = []
        dropped = 0
        for row in table.rows:
            month = self.month_label(row.get(cols["month"]))
            category = row.get(cols["category"])
            if month is None or is_blank(category):
                dropped += 1
                continue
            value = self._values.parse_amount(row.get(cols["budgetedAmount"]))
            if value is None:
                dropped += 1
                continue
            triples.append((month, str(category).strip(), value))
        return triples, dropped, []

    def _guess_column(
        self, headers: Sequence[str], name: str, taken: set
    ) -> Optional[str]:
        for header in headers:
            if header in taken:
                continue
            label = self._labels.normalize_label(header)
            if any(k in label for k in _LONG_KEYWORDS[name]):
                return header
        return None

    @staticmethod
    def _aggregate(triples: List[tuple[str, str, float]]) -> StandardBudget:
        """Sum duplicate (month, category) pairs."""
        categories: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
        for month, category, value in triples:
            categories[category][month] += value
        months = sorted({month for month, _, _ in triples})
        return StandardBudget(
            months=months,
            categories={c: dict(by_month) for c, by_month in categories.items()},
        )
