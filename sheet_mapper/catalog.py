"""
Schema Catalog.

Static, per-dataset-kind tables of canonical fields with their synonym
keywords and expected value types, plus the alias tables the matcher and
the value normalizer consult (abbreviations, pipeline phases, transaction
categories, month names).

Conventions
-----------
* Every key and synonym is stored **normalised** (see
  ``LabelNormalizer.normalize_label``): lowercase, umlauts folded
  (``ä`` → ``ae``), punctuation other than ``-`` and ``&`` removed.
* Field order inside a catalog is significant: when two fields score
  identically for one header the field listed first wins.
* The built-in tables are read-only.  User-supplied synonyms produce a
  *new* ``SchemaCatalog`` via ``with_synonyms``.
"""

from __future__ import annotations

import json
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from sheet_mapper.logging_setup import get_logger
from sheet_mapper.schema import DatasetKind, DataType, SchemaField

logger = get_logger("catalog")


class SchemaCatalog:
    """The canonical fields of one dataset kind.

    Parameters
    ----------
    kind:
        Dataset kind this catalog describes.
    fields:
        Canonical fields in tie-break priority order.
    required:
        Canonical names that must be mapped for the kind to be usable.
    """

    def __init__(
        self,
        kind: DatasetKind,
        fields: Iterable[SchemaField],
        required: Iterable[str],
    ) -> None:
        self.kind = kind
        self._fields: tuple[SchemaField, ...] = tuple(fields)
        self._by_name = {f.canonical_name: f for f in self._fields}
        self.required_fields: tuple[str, ...] = tuple(required)

        unknown = [r for r in self.required_fields if r not in self._by_name]
        if unknown:
            raise ValueError(f"Required fields not in catalog: {unknown!r}")

    @property
    def fields(self) -> tuple[SchemaField, ...]:
        return self._fields

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.canonical_name for f in self._fields)

    def get(self, name: str) -> Optional[SchemaField]:
        return self._by_name.get(name)

    def expected_type(self, name: str) -> DataType:
        f = self._by_name.get(name)
        return f.expected_type if f else DataType.TEXT

    def with_synonyms(self, extra: Mapping[str, Iterable[str]]) -> "SchemaCatalog":
        """Return a copy with additional synonyms appended per field.

        Raises
        ------
        ValueError
            If a field name is not part of this catalog.
        """
        fields: List[SchemaField] = []
        for f in self._fields:
            added = tuple(s for s in extra.get(f.canonical_name, ()) if s not in f.synonyms)
            fields.append(
                SchemaField(f.canonical_name, f.synonyms + added, f.expected_type)
            )
        unknown = set(extra) - set(self._by_name)
        if unknown:
            raise ValueError(
                f"Unknown field(s) for {self.kind.value!r}: {sorted(unknown)!r}"
            )
        return SchemaCatalog(self.kind, fields, self.required_fields)

    def __repr__(self) -> str:
        return f"SchemaCatalog({self.kind.value!r}, fields={list(self.field_names)!r})"


def _field(name: str, dtype: DataType, *synonyms: str) -> SchemaField:
    return SchemaField(canonical_name=name, synonyms=tuple(synonyms), expected_type=dtype)


# ---------------------------------------------------------------------------
# Built-in catalogs
# ---------------------------------------------------------------------------

_TRANSACTIONS = SchemaCatalog(
    DatasetKind.TRANSACTIONS,
    fields=[
        _field("id", DataType.TEXT,
               "id", "transaction id", "transaktions-id", "transaktionsnummer",
               "transaction number", "buchungsnummer", "belegnummer"),
        _field("date", DataType.DATE,
               "date", "datum", "transaction date", "booking date", "buchungstag",
               "buchungsdatum", "wertstellung", "valuta", "posting date"),
        _field("name", DataType.TEXT,
               "name", "payee", "counterparty", "recipient", "merchant",
               "empfaenger", "zahlungsempfaenger", "auftraggeber", "beguenstigter",
               "gegenpartei", "absender"),
        _field("description", DataType.TEXT,
               "description", "beschreibung", "memo", "details", "buchungstext",
               "narrative"),
        _field("amount", DataType.CURRENCY,
               "amount", "betrag", "umsatz", "value", "total", "summe",
               "gesamtbetrag", "transaction amount"),
        _field("category", DataType.TEXT,
               "category", "kategorie", "type", "buchungsart", "art"),
        _field("reference", DataType.TEXT,
               "reference", "referenz", "verwendungszweck", "purpose",
               "reference number", "invoice", "rechnungsnummer"),
    ],
    required=["date", "amount"],
)

_DEALS = SchemaCatalog(
    DatasetKind.DEALS,
    fields=[
        _field("id", DataType.TEXT,
               "id", "deal id", "opportunity id"),
        _field("dealName", DataType.TEXT,
               "deal name", "deal", "opportunity", "opportunity name", "name",
               "project", "projekt", "auftrag", "titel", "title"),
        _field("phase", DataType.TEXT,
               "phase", "stage", "status", "deal stage", "deal phase",
               "pipeline stage", "sales stage", "stufe"),
        _field("amount", DataType.CURRENCY,
               "amount", "deal value", "deal amount", "value", "volume", "volumen",
               "betrag", "revenue", "auftragswert", "wert"),
        _field("clientName", DataType.TEXT,
               "client name", "client", "customer", "customer name", "kunde",
               "kundenname", "company", "firma", "unternehmen"),
        _field("firstAppointment", DataType.DATE,
               "first appointment", "erster termin", "first contact date",
               "appointment", "termin", "meeting date"),
        _field("closingDate", DataType.DATE,
               "closing date", "close date", "expected close", "abschlussdatum",
               "closed on"),
        _field("product", DataType.TEXT,
               "product", "produkt", "service", "leistung"),
    ],
    required=["dealName", "amount", "clientName"],
)

_BUDGET = SchemaCatalog(
    DatasetKind.BUDGET,
    fields=[
        _field("month", DataType.DATE,
               "month", "monat", "period", "periode", "zeitraum", "budget month"),
        _field("category", DataType.TEXT,
               "category", "kategorie", "budget category", "cost center",
               "kostenstelle", "line item", "position", "konto", "bereich"),
        _field("budgetedAmount", DataType.CURRENCY,
               "budgeted amount", "budget", "amount", "value", "planned", "plan",
               "planwert", "betrag", "wert", "soll"),
    ],
    required=["month", "budgetedAmount"],
)

BUILTIN_CATALOGS: Mapping[DatasetKind, SchemaCatalog] = MappingProxyType({
    DatasetKind.TRANSACTIONS: _TRANSACTIONS,
    DatasetKind.DEALS: _DEALS,
    DatasetKind.BUDGET: _BUDGET,
})


def load_catalogs(
    custom_path: Optional[Path] = None,
    normalize: Optional[Callable[[str], str]] = None,
) -> Mapping[DatasetKind, SchemaCatalog]:
    """Return the catalogs, optionally extended from a JSON file.

    The file has the shape ``{kind: {field: [synonym, ...]}}``.  Synonyms are
    run through *normalize* before being merged.
    """
    if custom_path is None:
        return BUILTIN_CATALOGS

    with open(custom_path, encoding="utf-8") as fh:
        data: Dict[str, Dict[str, List[str]]] = json.load(fh)

    norm = normalize or (lambda s: " ".join(s.lower().split()))
    merged = dict(BUILTIN_CATALOGS)
    for kind_label, per_field in data.items():
        kind = DatasetKind.from_label(kind_label)
        if kind not in merged:
            raise ValueError(f"Unknown dataset kind in {custom_path}: {kind_label!r}")
        cleaned = {f: [norm(s) for s in syns] for f, syns in per_field.items()}
        merged[kind] = merged[kind].with_synonyms(cleaned)
        logger.info(
            "Merged custom synonyms for %s: %d field(s) from %s",
            kind.value, len(cleaned), custom_path,
        )
    return MappingProxyType(merged)


# ---------------------------------------------------------------------------
# Alias tables
# ---------------------------------------------------------------------------

# Header token → expansion.  A header whose expanded form matches a synonym
# scores 0.7.
ABBREVIATIONS: Mapping[str, str] = MappingProxyType({
    "amt": "amount",
    "amnt": "amount",
    "cust": "client",
    "cli": "client",
    "clnt": "client",
    "desc": "description",
    "descr": "description",
    "dt": "date",
    "ref": "reference",
    "cat": "category",
    "categ": "category",
    "txn": "transaction",
    "trx": "transaction",
    "tx": "transaction",
    "nr": "number",
    "num": "number",
    "no": "number",
    "prod": "product",
    "mth": "month",
    "mon": "month",
    "val": "value",
    "opp": "opportunity",
    "oppty": "opportunity",
    "appt": "appointment",
    "bgt": "budget",
})

DEAL_PHASES: tuple[str, ...] = (
    "Lead Generation",
    "First Contact",
    "Need Qualification",
    "Negotiation",
    "Deal",
    "No Deal",
)

UNKNOWN_PHASE = "Unknown"

PHASE_ALIASES: Mapping[str, str] = MappingProxyType({
    "lead generation": "Lead Generation",
    "lead gen": "Lead Generation",
    "leadgen": "Lead Generation",
    "lead-gen": "Lead Generation",
    "lead-generation": "Lead Generation",
    "leadgeneration": "Lead Generation",
    "lead": "Lead Generation",
    "leadgenerierung": "Lead Generation",
    "kontaktaufnahme": "Lead Generation",
    "first contact": "First Contact",
    "erstkontakt": "First Contact",
    "erster kontakt": "First Contact",
    "contacted": "First Contact",
    "need qualification": "Need Qualification",
    "needs qualification": "Need Qualification",
    "qualification": "Need Qualification",
    "qualified": "Need Qualification",
    "qualifizierung": "Need Qualification",
    "bedarf": "Need Qualification",
    "bedarfsanalyse": "Need Qualification",
    "negotiation": "Negotiation",
    "verhandlung": "Negotiation",
    "verhandlungsphase": "Negotiation",
    "in verhandlung": "Negotiation",
    "deal": "Deal",
    "won": "Deal",
    "closed won": "Deal",
    "gewonnen": "Deal",
    "abgeschlossen": "Deal",
    "no deal": "No Deal",
    "kein deal": "No Deal",
    "lost": "No Deal",
    "closed lost": "No Deal",
    "verloren": "No Deal",
    "abgesagt": "No Deal",
})

TRANSACTION_CATEGORIES: tuple[str, ...] = (
    "Revenue", "Salaries", "Marketing", "Rent", "Software", "COGS", "Other",
)

CATEGORY_ALIASES: Mapping[str, str] = MappingProxyType({
    "revenue": "Revenue",
    "revenues": "Revenue",
    "sales": "Revenue",
    "income": "Revenue",
    "umsatz": "Revenue",
    "umsaetze": "Revenue",
    "einnahmen": "Revenue",
    "erloese": "Revenue",
    "salaries": "Salaries",
    "salary": "Salaries",
    "payroll": "Salaries",
    "wages": "Salaries",
    "gehalt": "Salaries",
    "gehaelter": "Salaries",
    "lohn": "Salaries",
    "loehne": "Salaries",
    "personal": "Salaries",
    "personalkosten": "Salaries",
    "marketing": "Marketing",
    "advertising": "Marketing",
    "werbung": "Marketing",
    "rent": "Rent",
    "miete": "Rent",
    "office rent": "Rent",
    "bueromiete": "Rent",
    "software": "Software",
    "saas": "Software",
    "lizenzen": "Software",
    "cogs": "COGS",
    "cost of goods sold": "COGS",
    "wareneinsatz": "COGS",
    "herstellungskosten": "COGS",
    "other": "Other",
    "misc": "Other",
    "miscellaneous": "Other",
    "sonstige": "Other",
    "sonstiges": "Other",
    "verschiedenes": "Other",
})

# Month name or abbreviation → month number (English and German).
MONTH_NAMES: Mapping[str, int] = MappingProxyType({
    "jan": 1, "january": 1, "januar": 1, "jaenner": 1,
    "feb": 2, "february": 2, "februar": 2,
    "mar": 3, "march": 3, "maer": 3, "maerz": 3, "mrz": 3,
    "apr": 4, "april": 4,
    "may": 5, "mai": 5,
    "jun": 6, "june": 6, "juni": 6,
    "jul": 7, "july": 7, "juli": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10, "okt": 10, "oktober": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12, "dez": 12, "dezember": 12,
})
