"""
Record Builder.

Assembles canonical ``StandardTransaction`` / ``StandardDeal`` records from
a raw table and its (possibly human-edited) column mappings.  Every cell
goes through ``ValueNormalizer``; rows whose *required* values cannot be
coerced are dropped and counted rather than failing the file.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional, Sequence

from sheet_mapper.catalog import UNKNOWN_PHASE
from sheet_mapper.logging_setup import get_logger
from sheet_mapper.normalizer import ValueNormalizer, is_blank
from sheet_mapper.schema import (
    ColumnMapping,
    DatasetKind,
    NormalizedData,
    RawTable,
    StandardDeal,
    StandardTransaction,
)

logger = get_logger("record_builder")

DEFAULT_CATEGORY = "Other"
UNKNOWN_CLIENT = "Unknown Client"


def field_columns(mappings: Sequence[ColumnMapping]) -> Dict[str, str]:
    """``{standard_field: original_column}`` for mapped columns."""
    return {m.standard_field: m.original_column for m in mappings if m.is_mapped}


def _text(value: Any) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class RecordBuilder:
    """Builds canonical records for the row-oriented dataset kinds."""

    def __init__(self, values: Optional[ValueNormalizer] = None) -> None:
        self._values = values or ValueNormalizer()

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #

    def build_transactions(
        self, table: RawTable, mappings: Sequence[ColumnMapping]
    ) -> NormalizedData:
        """One ``StandardTransaction`` per row with a valid date and amount."""
        cols = field_columns(mappings)
        records: List[StandardTransaction] = []
        dropped = 0

        def cell(row: Dict[str, Any], name: str) -> Any:
            col = cols.get(name)
            return row.get(col) if col else None

        for index, row in enumerate(table.rows):
            tx_date = self._values.parse_date(cell(row, "date"))
            amount = self._values.parse_amount(cell(row, "amount"))
            if tx_date is None or amount is None:
                dropped += 1
                logger.debug(
                    "Row %d dropped: date=%r amount=%r",
                    index, cell(row, "date"), cell(row, "amount"),
                )
                continue

            name = _text(cell(row, "name"))
            description = _text(cell(row, "description"))
            category = self._values.canonical_category(cell(row, "category"))
            records.append(
                StandardTransaction(
                    id=_text(cell(row, "id")) or _new_id("tx"),
                    date=tx_date,
                    name=name or description,
                    description=description or name,
                    amount=amount,
                    category=category or DEFAULT_CATEGORY,
                    reference=_text(cell(row, "reference")),
                )
            )

        return self._finish(DatasetKind.TRANSACTIONS, records, dropped, "date or amount")

    # ------------------------------------------------------------------ #
    # Deals
    # ------------------------------------------------------------------ #

    def build_deals(
        self, table: RawTable, mappings: Sequence[ColumnMapping]
    ) -> NormalizedData:
        """One ``StandardDeal`` per row with an amount and a name or client.

        A deal without a name is called ``"Deal with <client>"``; a deal
        without a client gets ``"Unknown Client"``.
        """
        cols = field_columns(mappings)
        records: List[StandardDeal] = []
        dropped = 0

        def cell(row: Dict[str, Any], name: str) -> Any:
            col = cols.get(name)
            return row.get(col) if col else None

        for index, row in enumerate(table.rows):
            amount = self._values.parse_amount(cell(row, "amount"))
            deal_name = _text(cell(row, "dealName"))
            client = _text(cell(row, "clientName"))
            if amount is None or not (deal_name or client):
                dropped += 1
                logger.debug("Row %d dropped: amount=%r name=%r client=%r",
                             index, cell(row, "amount"), deal_name, client)
                continue

            phase = self._values.canonical_phase(cell(row, "phase"))
            records.append(
                StandardDeal(
                    id=_text(cell(row, "id")) or _new_id("deal"),
                    deal_name=deal_name or f"Deal with {client}",
                    phase=phase or UNKNOWN_PHASE,
                    amount=amount,
                    client_name=client or UNKNOWN_CLIENT,
                    first_appointment=self._values.parse_date(cell(row, "firstAppointment")),
                    closing_date=self._values.parse_date(cell(row, "closingDate")),
                    product=_text(cell(row, "product")) or None,
                )
            )

        return self._finish(DatasetKind.DEALS, records, dropped, "amount or name/client")

    @staticmethod
    def _finish(
        kind: DatasetKind, records: list, dropped: int, reason: str
    ) -> NormalizedData:
        issues = []
        if dropped:
            issues.append(f"{dropped} row(s) dropped: missing or unparsable {reason}")
            logger.warning("%s: %d row(s) dropped (%s)", kind.value, dropped, reason)
        logger.info("%s: built %d record(s)", kind.value, len(records))
        return NormalizedData(kind, records, dropped_rows=dropped, issues=issues)
