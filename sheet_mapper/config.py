"""
Configuration module for Sheet Mapper.

All tuneable parameters — thresholds, sample sizes, endpoints — live here.
Nothing is hard-coded in business logic modules.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from sheet_mapper.schema import DatasetKind


@dataclass(frozen=True)
class MatchingConfig:
    """Controls the header → canonical field scoring."""

    # Minimum confidence (0.0–1.0) for a header mapping to be accepted.
    accept_threshold: float = 0.7

    # rapidfuzz ratio (0–100) at or above which a header is treated as a
    # misspelling of a synonym.  Such hits score like an abbreviation alias.
    typo_threshold: float = 90.0


@dataclass(frozen=True)
class ClassificationConfig:
    """Controls the dataset-kind decision pipeline."""

    # Candidate kinds, tried in this order by the deterministic pass.
    kind_order: tuple[DatasetKind, ...] = (
        DatasetKind.DEALS,
        DatasetKind.TRANSACTIONS,
        DatasetKind.BUDGET,
    )

    # Average confidence needed to skip both AI and human review.
    auto_map_threshold: float = 0.9

    # Below this confidence the AI / fallback result goes to manual review.
    review_threshold: float = 0.8

    # Confidence multiplier applied when mandatory fields are missing.
    missing_field_penalty: float = 0.7

    # The keyword fallback accepts weaker header matches but caps them.
    fallback_accept_threshold: float = 0.4
    fallback_mapping_cap: float = 0.7

    # Rows forwarded to AI Assist as a sample.
    ai_sample_size: int = 5

    # Rows kept on the result for the review UI.
    preview_rows: int = 10


@dataclass(frozen=True)
class ReshapeConfig:
    """Controls wide / long budget detection."""

    sample_rows: int = 10
    numeric_ratio: float = 0.7
    min_numeric_values: int = 3


@dataclass(frozen=True)
class GenericConfig:
    """Controls schema inference for unclassified files."""

    sample_rows: int = 20


@dataclass(frozen=True)
class AIAssistConfig:
    """Where and how to reach the optional AI Assist service."""

    classify_url: Optional[str] = None
    schema_url: Optional[str] = None
    api_key: Optional[str] = None

    # Seconds; the call is never allowed to block the pipeline indefinitely.
    timeout: float = 15.0

    @property
    def enabled(self) -> bool:
        return bool(self.classify_url)

    @classmethod
    def from_env(cls) -> "AIAssistConfig":
        """Build from ``SHEET_MAPPER_AI_*`` environment variables."""
        timeout = os.environ.get("SHEET_MAPPER_AI_TIMEOUT")
        return cls(
            classify_url=os.environ.get("SHEET_MAPPER_AI_URL") or None,
            schema_url=os.environ.get("SHEET_MAPPER_AI_SCHEMA_URL") or None,
            api_key=os.environ.get("SHEET_MAPPER_AI_KEY") or None,
            timeout=float(timeout) if timeout else 15.0,
        )


@dataclass(frozen=True)
class ReaderConfig:
    """Controls raw file reading."""

    max_bytes: int = 10 * 1024 * 1024
    delimiters: tuple[str, ...] = (",", ";", "\t", "|")


@dataclass(frozen=True)
class PipelineConfig:
    """Top-level configuration aggregating all sub-configs."""

    matching: MatchingConfig = field(default_factory=MatchingConfig)
    classification: ClassificationConfig = field(
        default_factory=ClassificationConfig
    )
    reshape: ReshapeConfig = field(default_factory=ReshapeConfig)
    generic: GenericConfig = field(default_factory=GenericConfig)
    ai: AIAssistConfig = field(default_factory=AIAssistConfig)
    reader: ReaderConfig = field(default_factory=ReaderConfig)

    # Logging level for the mapping audit trail
    log_level: int = logging.INFO

    # Optional path to a user-supplied synonym JSON file
    # (``{kind: {field: [synonym, ...]}}``) merged into the built-in catalog.
    custom_synonym_path: Optional[Path] = None
