#!/usr/bin/env python3
"""
Example: Sheet Mapper Ingestion Demo.

Feeds four small uploads (German bank export, CRM export, wide budget
matrix, unrecognised table) through the pipeline and prints the auditable
outcome of each.

Run from the project root:
    python -m sheet_mapper.examples.run_example
"""

from __future__ import annotations

import json
import logging

from sheet_mapper.config import PipelineConfig
from sheet_mapper.pipeline import IngestionOutcome, IngestionPipeline
from sheet_mapper.schema import ColumnMapping


# ======================================================================
# Sample uploads
# ======================================================================

BANK_EXPORT = """\
Buchungstag;Empfänger;Verwendungszweck;Betrag;Kategorie
01.03.2024;Acme GmbH;Rechnung 2024-17;1.250,00;Umsatz
04.03.2024;Stadtwerke;Strom März;-89,90;Sonstige
05.03.2024;Hausverwaltung;Miete März;-1.800,00;Miete
"""

CRM_EXPORT = """\
Deal Name,Stage,Deal Value,Client,Close Date,Product
Website Relaunch,Verhandlung,"12,500.00",Acme Inc,2024-06-30,Consulting
Support Contract,won,4800,Globex,06/15/2024,Support
,Lead Gen,900,Initech,,
"""

BUDGET_MATRIX = """\
Category,Jan 2024,Feb 2024,Mar 2024,Apr 2024
Marketing,1000,1200,900,1100
Salaries,20000,20000,20500,20500
Rent,1800,1800,1800,1800
"""

UNKNOWN_TABLE = """\
Sensor,Reading,Checked,Recorded
A-17,3.5,yes,2024-01-02
B-02,4.1,no,2024-01-03
C-33,2.9,yes,2024-01-04
"""


# ======================================================================
# Helper
# ======================================================================

def print_section(title: str) -> None:
    width = 72
    print("\n" + "=" * width)
    print(f"  {title}")
    print("=" * width)


def print_outcome(outcome: IngestionOutcome) -> None:
    print(json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False, default=str))
    print(f"\n  Status      : {outcome.status}")
    print(f"  Stored rows : {outcome.stored_rows}")


# ======================================================================
# Main
# ======================================================================

def main() -> None:
    pipeline = IngestionPipeline(PipelineConfig(log_level=logging.WARNING))

    print_section("DEMO 1 — German bank export (auto-mapped)")
    print_outcome(pipeline.ingest(BANK_EXPORT.encode("utf-8"), "bank.csv", "demo-user"))

    print_section("DEMO 2 — CRM export")
    print_outcome(pipeline.ingest(CRM_EXPORT.encode("utf-8"), "crm.csv", "demo-user"))

    print_section("DEMO 3 — Wide budget matrix (review, then resubmit)")
    outcome = pipeline.ingest(BUDGET_MATRIX.encode("utf-8"), "budget.csv", "demo-user")
    print_outcome(outcome)
    if outcome.status == "needs_review" and outcome.table is not None:
        reviewed = [ColumnMapping("Category", "category", 1.0)] + [
            ColumnMapping(h, "ignore", 0.0) for h in outcome.table.headers[1:]
        ]
        print_outcome(
            pipeline.resubmit(outcome.table, outcome.classification.dataset_kind,
                              reviewed, "demo-user")
        )

    print_section("DEMO 4 — Unrecognised table (generic fallback)")
    print_outcome(pipeline.ingest(UNKNOWN_TABLE.encode("utf-8"), "sensors.csv", "demo-user"))


if __name__ == "__main__":
    main()
