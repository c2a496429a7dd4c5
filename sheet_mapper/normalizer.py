"""
Label and Value Normalization Layer.

``LabelNormalizer`` turns raw headers into a uniform representation so that
the column matcher compares clean strings:

1. Strip leading / trailing whitespace and lowercase
2. Fold German umlauts (``ä`` → ``ae``, ``ß`` → ``ss``)
3. Replace unicode dashes, underscores and slashes
4. Strip punctuation (except hyphens and ``&``)
5. Collapse runs of whitespace

``ValueNormalizer`` performs locale-aware coercion of cell values: dates
into ``YYYY-MM-DD``, currency strings into floats, booleans, and pipeline
phase / transaction category aliases into their canonical labels.  The
separator and field-order conventions are inferred from the punctuation of
each value, never from a fixed locale setting.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from typing import Any, Optional

from dateutil import parser as dateutil_parser

from sheet_mapper.catalog import (
    CATEGORY_ALIASES,
    DEAL_PHASES,
    MONTH_NAMES,
    PHASE_ALIASES,
    TRANSACTION_CATEGORIES,
)
from sheet_mapper.logging_setup import get_logger
from sheet_mapper.schema import DataType

logger = get_logger("normalizer")

# Spreadsheet serial day of 1970-01-01.
EXCEL_EPOCH_OFFSET = 25569
SECONDS_PER_DAY = 86400

# Numbers inside this open interval are read as spreadsheet serial dates
# (roughly 1968 – 2173).
_SERIAL_MIN = 25000
_SERIAL_MAX = 100000


def is_blank(value: Any) -> bool:
    """True for ``None``, empty / whitespace strings and float NaN."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


class LabelNormalizer:
    """Stateless label normaliser.  All methods are pure functions."""

    _FOLD = str.maketrans({"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"})

    # Characters to remove from labels (keep word chars, spaces, hyphens, &)
    _PUNCT_RE = re.compile(r"[^\w\s\-&]")

    # Collapse whitespace
    _MULTI_SPACE_RE = re.compile(r"\s+")

    _TOKEN_SPLIT_RE = re.compile(r"[\s\-]+")

    def normalize_label(self, raw: Any) -> str:
        """Return the comparable form of a raw header or alias value.

        Parameters
        ----------
        raw:
            The original column header (or category / phase cell value).

        Returns
        -------
        str
            Cleaned label ready for matching.
        """
        if raw is None:
            return ""
        text = str(raw).strip().lower().translate(self._FOLD)
        # Replace common unicode dashes with ASCII hyphen
        text = text.replace("–", "-").replace("—", "-")
        text = text.replace("_", " ").replace("/", " ")
        text = self._PUNCT_RE.sub("", text)
        text = self._MULTI_SPACE_RE.sub(" ", text).strip()

        logger.debug("normalize_label: %r → %r", raw, text)
        return text

    def tokens(self, label: str) -> list[str]:
        """Split an already-normalised label into word tokens."""
        return [t for t in self._TOKEN_SPLIT_RE.split(label) if t]


class ValueNormalizer:
    """Locale-aware cell value coercion.

    Parameters
    ----------
    today:
        Reference date used when a month name comes without a year.
        Defaults to the current date at call time.
    """

    _CURRENCY_RE = re.compile(r"[€$£¥₹]")
    _CURRENCY_CODE_RE = re.compile(r"\b(?:eur|usd|gbp|chf|inr|jpy)\b", re.IGNORECASE)
    _WHITESPACE_RE = re.compile(r"[\s']+")
    _PAREN_NEG_RE = re.compile(r"^\((.+)\)$")
    _NUMERIC_BODY_RE = re.compile(r"^[+-]?[\d.,]*\d[\d.,]*$")
    _PLAIN_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")

    _ISO_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T\s].*)?$")
    _GERMAN_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")
    _US_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
    _YEAR_MONTH_RE = re.compile(r"^(\d{4})[-/](\d{1,2})$")
    _MONTH_NAME_RE = re.compile(r"^([a-z]+)\.?(?:[\s\-/]+(\d{4}))?$")
    _HAS_DIGIT_RE = re.compile(r"\d")

    _TRUE = frozenset({"true", "yes", "y", "ja", "wahr", "x"})
    _FALSE = frozenset({"false", "no", "n", "nein", "falsch"})

    def __init__(self, today: Optional[date] = None) -> None:
        self._today = today
        self._labels = LabelNormalizer()
        # Canonical labels resolve to themselves in any casing.
        self._phases = {self._labels.normalize_label(p): p for p in DEAL_PHASES}
        self._phases.update(PHASE_ALIASES)
        self._categories = {
            self._labels.normalize_label(c): c for c in TRANSACTION_CATEGORIES
        }
        self._categories.update(CATEGORY_ALIASES)

    # ------------------------------------------------------------------ #
    # Dates
    # ------------------------------------------------------------------ #

    def parse_date(self, raw: Any) -> Optional[str]:
        """Parse *raw* into ``YYYY-MM-DD`` or return ``None``.

        The cascade, first success wins: spreadsheet serial number, ISO
        ``YYYY-MM-DD``, German ``DD.MM.YYYY``, US ``MM/DD/YYYY``, month name
        (optionally with a 4-digit year) or ``YYYY-MM``, generic parse.
        """
        if is_blank(raw) or isinstance(raw, bool):
            return None
        if isinstance(raw, datetime):
            return raw.date().isoformat()
        if isinstance(raw, date):
            return raw.isoformat()
        if isinstance(raw, (int, float)):
            return self._from_serial(float(raw))

        text = str(raw).strip()

        if self._PLAIN_NUMBER_RE.match(text):
            return self._from_serial(float(text))

        m = self._ISO_RE.match(text)
        if m:
            return self._build_date(m.group(1), m.group(2), m.group(3))

        m = self._GERMAN_RE.match(text)
        if m:
            return self._build_date(m.group(3), m.group(2), m.group(1))

        m = self._US_RE.match(text)
        if m:
            return self._build_date(m.group(3), m.group(1), m.group(2))

        result = self._from_month_name(text)
        if result is not None:
            return result

        return self._generic_parse(text)

    def month_key(self, raw: Any) -> Optional[str]:
        """``YYYY-MM`` for anything ``parse_date`` understands."""
        parsed = self.parse_date(raw)
        return parsed[:7] if parsed else None

    def _from_serial(self, serial: float) -> Optional[str]:
        if not math.isfinite(serial) or not _SERIAL_MIN < serial < _SERIAL_MAX:
            return None
        seconds = (serial - EXCEL_EPOCH_OFFSET) * SECONDS_PER_DAY
        return (datetime(1970, 1, 1) + timedelta(seconds=seconds)).date().isoformat()

    @staticmethod
    def _build_date(year: str, month: str, day: str) -> Optional[str]:
        try:
            return date(int(year), int(month), int(day)).isoformat()
        except ValueError:
            return None

    def _from_month_name(self, text: str) -> Optional[str]:
        m = self._YEAR_MONTH_RE.match(text)
        if m:
            return self._build_date(m.group(1), m.group(2), "1")

        folded = self._labels.normalize_label(text.replace(".", ". "))
        m = self._MONTH_NAME_RE.match(folded.replace(" - ", "-"))
        if not m or m.group(1) not in MONTH_NAMES:
            return None
        year = m.group(2) or str((self._today or date.today()).year)
        return self._build_date(year, str(MONTH_NAMES[m.group(1)]), "1")

    def _generic_parse(self, text: str) -> Optional[str]:
        # dateutil happily turns "5" into "this month, day 5"; only hand it
        # strings that look like a full date.
        if len(text) < 6 or not self._HAS_DIGIT_RE.search(text):
            return None
        today = self._today or date.today()
        try:
            parsed = dateutil_parser.parse(
                text, dayfirst=True, default=datetime(today.year, 1, 1)
            )
        except (ValueError, OverflowError, TypeError):
            logger.debug("parse_date: no rule matched %r", text)
            return None
        return parsed.date().isoformat()

    # ------------------------------------------------------------------ #
    # Numbers
    # ------------------------------------------------------------------ #

    def parse_amount(self, raw: Any) -> Optional[float]:
        """Parse a number or currency string; ``None`` when unparsable.

        Handles:
        * ``"1.234,56"`` (German) and ``"1,234.56"`` (US) grouping
        * a lone comma followed by exactly two digits as decimal separator
        * currency symbols / codes and embedded spaces: ``"€ 2 500"``
        * parenthetical and trailing-minus negatives: ``"(500)"``, ``"500-"``
        """
        if is_blank(raw) or isinstance(raw, bool):
            return None
        if isinstance(raw, (int, float)):
            value = float(raw)
            return value if math.isfinite(value) else None

        text = str(raw).strip().replace("−", "-")
        text = self._CURRENCY_RE.sub("", text)
        text = self._CURRENCY_CODE_RE.sub("", text)
        text = self._WHITESPACE_RE.sub("", text)

        negative = False
        m = self._PAREN_NEG_RE.match(text)
        if m:
            text, negative = m.group(1), True
        if text.endswith("-") and not text.startswith("-"):
            text, negative = text[:-1], True

        if not self._NUMERIC_BODY_RE.match(text):
            logger.debug("parse_amount: cannot parse %r", raw)
            return None

        text = self._resolve_separators(text)
        try:
            value = float(text)
        except ValueError:
            logger.debug("parse_amount: cannot parse %r", raw)
            return None
        if not math.isfinite(value):
            return None
        return -value if negative else value

    @staticmethod
    def _resolve_separators(text: str) -> str:
        has_comma = "," in text
        has_dot = "." in text
        if has_comma and has_dot:
            if text.rfind(",") > text.rfind("."):
                return text.replace(".", "").replace(",", ".")
            return text.replace(",", "")
        if has_comma:
            head, _, tail = text.rpartition(",")
            if text.count(",") == 1 and len(tail) == 2:
                return f"{head}.{tail}"
            return text.replace(",", "")
        if text.count(".") > 1:
            return text.replace(".", "")
        return text

    def coerce_amount(self, raw: Any) -> float:
        """Like ``parse_amount`` but unparsable values become ``0.0``."""
        value = self.parse_amount(raw)
        return 0.0 if value is None else value

    # ------------------------------------------------------------------ #
    # Booleans & aliases
    # ------------------------------------------------------------------ #

    def parse_boolean(self, raw: Any) -> Optional[bool]:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, (int, float)) and raw in (0, 1):
            return bool(raw)
        if is_blank(raw):
            return None
        text = str(raw).strip().lower()
        if text in self._TRUE:
            return True
        if text in self._FALSE:
            return False
        return None

    def canonical_phase(self, raw: Any) -> str:
        """Map a pipeline phase variant to its canonical label."""
        text = "" if is_blank(raw) else str(raw).strip()
        return self._phases.get(self._labels.normalize_label(text), text)

    def canonical_category(self, raw: Any) -> str:
        """Map a transaction category variant to its canonical label."""
        text = "" if is_blank(raw) else str(raw).strip()
        return self._categories.get(self._labels.normalize_label(text), text)

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    def coerce(self, raw: Any, data_type: DataType) -> Any:
        """Coerce *raw* to *data_type*; ``None`` marks a failed coercion."""
        if data_type in (DataType.NUMBER, DataType.CURRENCY):
            return self.parse_amount(raw)
        if data_type is DataType.DATE:
            return self.parse_date(raw)
        if data_type is DataType.BOOLEAN:
            return self.parse_boolean(raw)
        if is_blank(raw):
            return None
        if isinstance(raw, (datetime, date)):
            return self.parse_date(raw)
        return str(raw).strip()
