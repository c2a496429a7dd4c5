"""
Sheet Mapper — Spreadsheet Ingestion and Schema-Mapping Engine.

Reads arbitrary uploaded spreadsheets (bank exports, CRM exports, budget
plans, unknown tables) whose column names, language, number / date
conventions and orientation are unpredictable, and turns them into
canonical records ready for storage.

Every column mapping is confidence-scored.  Low-confidence results are
never stored silently; they are handed back for manual review.
"""

__version__ = "1.0.0"

from sheet_mapper.pipeline import IngestionOutcome, IngestionPipeline  # noqa: F401
