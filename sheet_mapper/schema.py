"""
Canonical data model.

Defines the dataset kinds and value types the engine knows about, the raw
table the pipeline consumes, and the typed records it hands to storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class DatasetKind(str, Enum):
    """
    Every dataset kind a file can be classified as.

    ``GENERIC`` is the open-ended fallback for files no canonical kind fits.
    """

    TRANSACTIONS = "transactions"
    DEALS = "deals"
    BUDGET = "budget"
    GENERIC = "generic"

    @classmethod
    def from_label(cls, label: Any) -> "DatasetKind":
        """Lenient lookup that also accepts the aliases AI services use."""
        text = str(label or "").strip().lower()
        aliases = {
            "bank": cls.TRANSACTIONS,
            "transaction": cls.TRANSACTIONS,
            "crm": cls.DEALS,
            "deal": cls.DEALS,
            "pipeline": cls.DEALS,
            "budgets": cls.BUDGET,
            "unknown": cls.GENERIC,
            "": cls.GENERIC,
        }
        if text in aliases:
            return aliases[text]
        for kind in cls:
            if kind.value == text:
                return kind
        return cls.GENERIC


class DataType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    CURRENCY = "currency"
    BOOLEAN = "boolean"

    @classmethod
    def from_label(cls, label: Any) -> "DataType":
        text = str(label or "").strip().lower()
        if text in ("string", "str", "text", ""):
            return cls.TEXT
        if text in ("integer", "int", "float", "decimal"):
            return cls.NUMBER
        if text in ("datetime", "timestamp"):
            return cls.DATE
        if text in ("bool",):
            return cls.BOOLEAN
        for dtype in cls:
            if dtype.value == text:
                return dtype
        return cls.TEXT


# Sentinel standard field for columns that carry nothing canonical.
IGNORE = "ignore"


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawTable:
    """Headers plus rows, exactly as the reader produced them."""

    headers: tuple[str, ...]
    rows: tuple[dict[str, Any], ...]
    file_name: str = ""

    def __post_init__(self) -> None:
        if len(set(self.headers)) != len(self.headers):
            raise ValueError(f"Headers must be unique: {list(self.headers)!r}")

    @classmethod
    def from_records(
        cls,
        headers: list[str],
        rows: list[dict[str, Any]],
        file_name: str = "",
    ) -> "RawTable":
        return cls(
            headers=tuple(headers),
            rows=tuple(dict(r) for r in rows),
            file_name=file_name,
        )

    def column(self, header: str, limit: Optional[int] = None) -> list[Any]:
        rows = self.rows if limit is None else self.rows[:limit]
        return [r.get(header) for r in rows]

    def sample(self, n: int) -> list[dict[str, Any]]:
        return [dict(r) for r in self.rows[:n]]


# ---------------------------------------------------------------------------
# Catalog & mapping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SchemaField:
    """A canonical attribute of one dataset kind."""

    canonical_name: str
    synonyms: tuple[str, ...]
    expected_type: DataType = DataType.TEXT


@dataclass
class ColumnMapping:
    """A single raw header → canonical field decision."""

    original_column: str
    standard_field: str
    confidence: float  # 0.0 – 1.0
    data_type: DataType = DataType.TEXT
    reasoning: Optional[str] = None

    def __post_init__(self) -> None:
        self.confidence = min(1.0, max(0.0, float(self.confidence)))

    @property
    def is_mapped(self) -> bool:
        return self.standard_field != IGNORE

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "originalColumn": self.original_column,
            "standardField": self.standard_field,
            "confidence": round(self.confidence, 4),
            "dataType": self.data_type.value,
        }
        if self.reasoning:
            out["reasoning"] = self.reasoning
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ColumnMapping":
        """Inverse of ``to_dict``; also accepts snake_case keys."""
        def pick(*keys: str, default: Any = None) -> Any:
            for k in keys:
                if k in data and data[k] is not None:
                    return data[k]
            return default

        field_name = pick("standardField", "standard_field", default=IGNORE)
        if str(field_name).strip().lower() in ("", "unmapped", "none", IGNORE):
            field_name = IGNORE
        try:
            confidence = float(pick("confidence", default=0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        return cls(
            original_column=str(pick("originalColumn", "original_column", default="")),
            standard_field=str(field_name),
            confidence=confidence,
            data_type=DataType.from_label(pick("dataType", "data_type")),
            reasoning=pick("reasoning"),
        )


@dataclass
class ClassificationResult:
    """The engine's verdict on one uploaded file."""

    dataset_kind: DatasetKind
    confidence: float
    mappings: list[ColumnMapping] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    needs_manual_review: bool = True
    auto_mapped: bool = False
    method: str = "fallback"  # "auto" | "ai" | "fallback"
    preview: list[dict[str, Any]] = field(default_factory=list)
    business_insights: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.confidence = min(1.0, max(0.0, float(self.confidence)))

    @property
    def mapped_fields(self) -> dict[str, str]:
        """``{standard_field: original_column}`` for every non-ignored mapping."""
        return {
            m.standard_field: m.original_column for m in self.mappings if m.is_mapped
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "datasetKind": self.dataset_kind.value,
            "confidence": round(self.confidence, 4),
            "mappings": [m.to_dict() for m in self.mappings],
            "issues": list(self.issues),
            "needsManualReview": self.needs_manual_review,
            "autoMapped": self.auto_mapped,
            "method": self.method,
            "preview": self.preview,
            "businessInsights": self.business_insights,
        }


# ---------------------------------------------------------------------------
# Canonical output entities
# ---------------------------------------------------------------------------

@dataclass
class StandardTransaction:
    id: str
    date: str
    name: str
    description: str
    amount: float
    category: str
    reference: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "name": self.name,
            "description": self.description,
            "amount": self.amount,
            "category": self.category,
            "reference": self.reference,
        }


@dataclass
class StandardDeal:
    id: str
    deal_name: str
    phase: str
    amount: float
    client_name: str
    first_appointment: Optional[str] = None
    closing_date: Optional[str] = None
    product: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "dealName": self.deal_name,
            "phase": self.phase,
            "amount": self.amount,
            "clientName": self.client_name,
            "firstAppointment": self.first_appointment,
            "closingDate": self.closing_date,
            "product": self.product,
        }


@dataclass
class StandardBudget:
    months: list[str] = field(default_factory=list)
    categories: dict[str, dict[str, float]] = field(default_factory=dict)

    def to_rows(self) -> list[dict[str, Any]]:
        """Flatten back into ``(month, category, value)`` rows for storage."""
        return [
            {"month": month, "category": category, "value": value}
            for category, by_month in self.categories.items()
            for month, value in sorted(by_month.items())
        ]

    def to_dict(self) -> dict[str, Any]:
        return {"months": list(self.months), "categories": self.categories}


@dataclass(frozen=True)
class GenericColumn:
    name: str
    key: str
    data_type: Optional[DataType]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "key": self.key,
            "type": self.data_type.value if self.data_type else None,
        }


@dataclass
class GenericDataset:
    columns: list[GenericColumn] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    ready_for_insert: bool = False
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": [c.to_dict() for c in self.columns],
            "rows": self.rows,
            "readyForInsert": self.ready_for_insert,
            "issues": list(self.issues),
        }


Records = Union[
    list[StandardTransaction], list[StandardDeal], StandardBudget, GenericDataset
]


@dataclass
class NormalizedData:
    """Canonical records for one file plus what was lost on the way."""

    dataset_kind: DatasetKind
    records: Records
    dropped_rows: int = 0
    issues: list[str] = field(default_factory=list)

    def storage_rows(self) -> list[dict[str, Any]]:
        """Rows in the shape the storage collaborator expects."""
        if isinstance(self.records, StandardBudget):
            return self.records.to_rows()
        if isinstance(self.records, GenericDataset):
            return list(self.records.rows)
        return [r.to_dict() for r in self.records]

    @property
    def record_count(self) -> int:
        return len(self.storage_rows())

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.records, (StandardBudget, GenericDataset)):
            payload: Any = self.records.to_dict()
        else:
            payload = [r.to_dict() for r in self.records]
        return {
            "datasetKind": self.dataset_kind.value,
            "records": payload,
            "droppedRows": self.dropped_rows,
            "issues": list(self.issues),
        }
