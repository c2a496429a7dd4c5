"""
Ingestion Pipeline.

The central entry point that wires together every layer:

    bytes  →  TableReader  →  DatasetClassifier  →  (human review)
           →  RecordBuilder / BudgetReshaper / GenericIngestor
           →  storage collaborator

Usage
-----
>>> from sheet_mapper.pipeline import IngestionPipeline
>>>
>>> pipe = IngestionPipeline()
>>> outcome = pipe.ingest(open("export.csv", "rb").read(), "export.csv", "user-1")
>>> outcome.status
'ok'

Each file is processed independently.  Only ``ParseError`` (unreadable
upload), ``MappingError`` (rejected review resubmission) and
``StorageInsertFailure`` ever reach the caller; everything else degrades to
a lower-confidence result that asks for manual review.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from sheet_mapper.ai_assist import AIAssist, build_ai_assist
from sheet_mapper.catalog import load_catalogs
from sheet_mapper.classifier import DatasetClassifier
from sheet_mapper.column_matcher import ColumnMatcher
from sheet_mapper.config import PipelineConfig
from sheet_mapper.errors import MappingError, SheetMapperError, StorageInsertFailure
from sheet_mapper.generic import GenericIngestor
from sheet_mapper.logging_setup import configure_logging, get_logger, upload_context
from sheet_mapper.normalizer import LabelNormalizer, ValueNormalizer
from sheet_mapper.record_builder import RecordBuilder
from sheet_mapper.reshaper import BudgetReshaper
from sheet_mapper.schema import (
    ClassificationResult,
    ColumnMapping,
    DatasetKind,
    GenericDataset,
    NormalizedData,
    RawTable,
)
from sheet_mapper.storage import InMemoryStorage, StorageCollaborator, StorageMode
from sheet_mapper.table_reader import TableReader

logger = get_logger("pipeline")

STATUS_OK = "ok"
STATUS_NEEDS_REVIEW = "needs_review"
STATUS_ERROR = "error"


@dataclass
class IngestionOutcome:
    """What happened to one uploaded file."""

    file_name: str
    status: str
    classification: Optional[ClassificationResult] = None
    data: Optional[NormalizedData] = None
    stored_rows: int = 0
    error: Optional[str] = None
    table: Optional[RawTable] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileName": self.file_name,
            "status": self.status,
            "classification": self.classification.to_dict() if self.classification else None,
            "data": self.data.to_dict() if self.data else None,
            "storedRows": self.stored_rows,
            "error": self.error,
        }


class IngestionPipeline:
    """Orchestrates reading, classification, normalisation and storage.

    Parameters
    ----------
    config:
        All tuneable knobs.
    ai_assist:
        AI Assist collaborator.  Built from ``config.ai`` when omitted
        (disabled unless an endpoint is configured).
    storage:
        Storage collaborator.  An ``InMemoryStorage`` when omitted.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        ai_assist: Optional[AIAssist] = None,
        storage: Optional[StorageCollaborator] = None,
    ) -> None:
        self._config = config or PipelineConfig()

        # Bootstrap logging before anything else
        configure_logging(level=self._config.log_level)

        labels = LabelNormalizer()
        values = ValueNormalizer()
        self._catalogs = load_catalogs(
            self._config.custom_synonym_path, normalize=labels.normalize_label
        )
        self._ai = ai_assist or build_ai_assist(self._config.ai)
        self._storage = storage or InMemoryStorage()

        # Construct layers
        self._reader = TableReader(self._config.reader)
        self._matcher = ColumnMatcher(self._config.matching, labels)
        self._classifier = DatasetClassifier(
            self._config.classification, self._catalogs, self._matcher, self._ai
        )
        self._builder = RecordBuilder(values)
        self._reshaper = BudgetReshaper(self._config.reshape, values)
        self._generic = GenericIngestor(self._config.generic, self._ai, values)

        # One handler per dataset kind.
        self._handlers: Dict[
            DatasetKind, Callable[[RawTable, Sequence[ColumnMapping]], NormalizedData]
        ] = {
            DatasetKind.TRANSACTIONS: self._builder.build_transactions,
            DatasetKind.DEALS: self._builder.build_deals,
            DatasetKind.BUDGET: self._reshaper.reshape,
            DatasetKind.GENERIC: lambda table, _mappings: self._generic.build(table),
        }

        logger.info(
            "Pipeline initialised — kinds=%s, accept=%.2f, auto_map=%.2f, ai=%s",
            [k.value for k in self._config.classification.kind_order],
            self._config.matching.accept_threshold,
            self._config.classification.auto_map_threshold,
            type(self._ai).__name__,
        )

    @property
    def storage(self) -> StorageCollaborator:
        return self._storage

    # ------------------------------------------------------------------ #
    # Individual stages
    # ------------------------------------------------------------------ #

    def read(self, content: bytes, file_name: str) -> RawTable:
        """Parse uploaded bytes.  Raises ``ParseError``."""
        return self._reader.read(content, file_name)

    def classify(
        self, table: RawTable, business_context: Optional[str] = None
    ) -> ClassificationResult:
        """Decide dataset kind and column mappings.  Never raises."""
        return self._classifier.classify(table, business_context)

    def normalize(
        self,
        table: RawTable,
        kind: DatasetKind,
        mappings: Sequence[ColumnMapping],
    ) -> NormalizedData:
        """Produce canonical records for *kind* from *table*."""
        return self._handlers[kind](table, mappings)

    def store(
        self,
        data: NormalizedData,
        user_id: str,
        mode: StorageMode = StorageMode.APPEND,
    ) -> int:
        """Hand canonical rows to the storage collaborator.

        Raises
        ------
        StorageInsertFailure
            Whatever the collaborator raised, wrapped if necessary.
        """
        rows = data.storage_rows()
        if not rows:
            logger.info("Nothing to store for %s", data.dataset_kind.value)
            return 0
        try:
            return self._storage.insert(data.dataset_kind, user_id, rows, mode)
        except StorageInsertFailure:
            raise
        except Exception as exc:
            logger.error("Storage insert for %s failed: %s", data.dataset_kind.value, exc)
            raise StorageInsertFailure(data.dataset_kind.value, str(exc)) from exc

    # ------------------------------------------------------------------ #
    # End-to-end entry points
    # ------------------------------------------------------------------ #

    def ingest(
        self,
        content: bytes,
        file_name: str,
        user_id: str,
        business_context: Optional[str] = None,
        mode: StorageMode = StorageMode.APPEND,
    ) -> IngestionOutcome:
        """Read, classify and, when confident enough, normalise and store.

        A result that needs manual review stops before normalisation and is
        returned with status ``needs_review``; resume it with ``resubmit``.
        """
        with upload_context(file_name):
            table = self.read(content, file_name)
            return self.ingest_table(table, user_id, business_context, mode)

    def ingest_path(
        self,
        path: Union[str, Path],
        user_id: str,
        business_context: Optional[str] = None,
        mode: StorageMode = StorageMode.APPEND,
    ) -> IngestionOutcome:
        """Ingest a file from disk."""
        table = self._reader.read_path(path)
        return self.ingest_table(table, user_id, business_context, mode)

    def ingest_dataframe(
        self,
        df: Any,
        user_id: str,
        file_name: str = "",
        business_context: Optional[str] = None,
        mode: StorageMode = StorageMode.APPEND,
    ) -> IngestionOutcome:
        """Ingest a pandas DataFrame."""
        table = self._reader.read_dataframe(df, file_name)
        return self.ingest_table(table, user_id, business_context, mode)

    def ingest_records(
        self,
        records: Sequence[Mapping[str, Any]],
        user_id: str,
        file_name: str = "",
        business_context: Optional[str] = None,
        mode: StorageMode = StorageMode.APPEND,
    ) -> IngestionOutcome:
        """Ingest already-parsed dict rows."""
        table = self._reader.read_records(records, file_name)
        return self.ingest_table(table, user_id, business_context, mode)

    def ingest_table(
        self,
        table: RawTable,
        user_id: str,
        business_context: Optional[str] = None,
        mode: StorageMode = StorageMode.APPEND,
    ) -> IngestionOutcome:
        """Classify an already-read table and continue as ``ingest`` does."""
        with upload_context(table.file_name):
            return self._ingest_table(table, user_id, business_context, mode)

    def _ingest_table(
        self,
        table: RawTable,
        user_id: str,
        business_context: Optional[str],
        mode: StorageMode,
    ) -> IngestionOutcome:
        file_name = table.file_name
        classification = self.classify(table, business_context)
        outcome = IngestionOutcome(
            file_name=file_name,
            status=STATUS_NEEDS_REVIEW,
            classification=classification,
            table=table,
        )

        if classification.dataset_kind is DatasetKind.GENERIC:
            data = self._generic.build(table, business_context=business_context)
            outcome.data = data
            if isinstance(data.records, GenericDataset) and data.records.ready_for_insert:
                outcome.stored_rows = self.store(data, user_id, mode)
                outcome.status = STATUS_OK
            return outcome

        if classification.needs_manual_review:
            logger.info(
                "%r needs manual review (%s, confidence=%.2f)",
                file_name, classification.dataset_kind.value, classification.confidence,
            )
            return outcome

        outcome.data = self.normalize(table, classification.dataset_kind, classification.mappings)
        outcome.stored_rows = self.store(outcome.data, user_id, mode)
        outcome.status = STATUS_OK
        logger.info(
            "Ingested %r — kind=%s, stored=%d, dropped=%d",
            file_name, classification.dataset_kind.value,
            outcome.stored_rows, outcome.data.dropped_rows,
        )
        return outcome

    def resubmit(
        self,
        table: RawTable,
        kind: DatasetKind,
        mappings: Sequence[ColumnMapping],
        user_id: str,
        mode: StorageMode = StorageMode.APPEND,
    ) -> IngestionOutcome:
        """Resume a reviewed file with the reviewer's mapping list.

        Raises
        ------
        MappingError
            If the mapping list does not fit the table or the kind.
        """
        require_fields = not (
            kind is DatasetKind.BUDGET
            and self._reshaper.detect_shape(table, mappings).is_wide
        )
        report = self._classifier.validator.validate_resubmission(
            kind, mappings, table.headers, require_fields=require_fields
        )
        if not report.is_valid:
            raise MappingError(report.errors)

        ordered = {m.original_column: m for m in mappings}
        classification = ClassificationResult(
            dataset_kind=kind,
            confidence=1.0,
            mappings=list(ordered.values()),
            needs_manual_review=False,
            method="manual",
        )
        with upload_context(table.file_name):
            data = self.normalize(table, kind, classification.mappings)
            stored = self.store(data, user_id, mode)
        logger.info("Resubmitted %r as %s — stored=%d", table.file_name, kind.value, stored)
        return IngestionOutcome(
            file_name=table.file_name,
            status=STATUS_OK,
            classification=classification,
            data=data,
            stored_rows=stored,
            table=table,
        )

    def ingest_many(
        self,
        files: Iterable[Tuple[str, bytes]],
        user_id: str,
        business_context: Optional[str] = None,
        mode: StorageMode = StorageMode.APPEND,
    ) -> List[IngestionOutcome]:
        """Ingest several files; one file's failure never aborts the others."""
        outcomes: List[IngestionOutcome] = []
        for file_name, content in files:
            try:
                outcomes.append(
                    self.ingest(content, file_name, user_id, business_context, mode)
                )
            except SheetMapperError as exc:
                logger.error("Ingestion of %r failed: %s", file_name, exc)
                outcomes.append(
                    IngestionOutcome(file_name=file_name, status=STATUS_ERROR, error=str(exc))
                )
        logger.info(
            "Batch complete — %d file(s): %s",
            len(outcomes), [o.status for o in outcomes],
        )
        return outcomes
