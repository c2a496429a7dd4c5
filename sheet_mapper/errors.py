"""
Error taxonomy.

Only file-level parse failures, rejected review resubmissions and storage
failures ever reach the caller.  ``AIServiceUnavailable`` is raised inside
the AI Assist layer and always recovered by the classifier.
"""

from __future__ import annotations

from typing import Optional


class SheetMapperError(Exception):
    """Base class for every error raised by this package."""


class ParseError(SheetMapperError):
    """The uploaded file is unreadable or has no header / data rows."""

    def __init__(self, message: str, file_name: Optional[str] = None) -> None:
        self.file_name = file_name
        prefix = f"{file_name}: " if file_name else ""
        super().__init__(prefix + message)


class AIServiceUnavailable(SheetMapperError):
    """The AI Assist collaborator failed, timed out or answered garbage."""


class MappingError(SheetMapperError):
    """A resubmitted column mapping list is inconsistent with the table."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = problems
        super().__init__("Invalid column mapping: " + "; ".join(problems))


class StorageInsertFailure(SheetMapperError):
    """The storage collaborator rejected an insert."""

    def __init__(self, dataset_kind: str, message: str) -> None:
        self.dataset_kind = dataset_kind
        super().__init__(f"Insert into '{dataset_kind}' failed: {message}")
