"""
Column Matching Layer.

Scores every raw header against every synonym of every canonical field of
one ``SchemaCatalog`` and keeps the best field per header.  Scoring rules,
strongest first:

* exact equality of the normalised header and synonym → **1.0**
* substring containment in either direction → **0.9**
* word overlap (share of the synonym's words found inside header tokens)
  × **0.8**
* abbreviation alias (``"amt"`` → ``"amount"``) or a close misspelling
  caught by ``rapidfuzz`` → **0.7**

Results are confidence-gated: a header is mapped only when its best score
reaches ``accept_threshold``; everything else becomes ``ignore``.  When two
headers claim the same field the stronger one keeps it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from rapidfuzz import fuzz

from sheet_mapper.catalog import ABBREVIATIONS, SchemaCatalog
from sheet_mapper.config import MatchingConfig
from sheet_mapper.logging_setup import get_logger
from sheet_mapper.normalizer import LabelNormalizer
from sheet_mapper.schema import IGNORE, ColumnMapping, DatasetKind, DataType

logger = get_logger("column_matcher")

EXACT_SCORE = 1.0
CONTAINS_SCORE = 0.9
OVERLAP_WEIGHT = 0.8
ALIAS_SCORE = 0.7

# Needles this short only count when they are a whole token ("id" must not
# hit "paid").
_SHORT_NEEDLE = 3

# Shorter synonyms are too easy to "misspell" into each other.
_MIN_TYPO_LENGTH = 5


@dataclass
class MatchCandidate:
    """Best field found for one header."""

    canonical_name: str
    confidence: float
    rule: str  # "exact" | "contains" | "overlap" | "alias" | "typo"
    synonym: str


@dataclass
class MatchOutcome:
    """All header decisions for one dataset kind."""

    kind: DatasetKind
    mappings: List[ColumnMapping] = field(default_factory=list)
    average_confidence: float = 0.0
    missing_required: List[str] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)

    @property
    def has_required_fields(self) -> bool:
        return not self.missing_required

    @property
    def accepted(self) -> List[ColumnMapping]:
        return [m for m in self.mappings if m.is_mapped]


class ColumnMatcher:
    """Deterministic header → canonical field scorer.

    Parameters
    ----------
    config:
        Acceptance and misspelling thresholds.
    normalizer:
        Label normaliser applied to headers before scoring.  Catalog
        synonyms are expected to be normalised already.
    """

    def __init__(
        self,
        config: MatchingConfig,
        normalizer: Optional[LabelNormalizer] = None,
    ) -> None:
        self._config = config
        self._normalizer = normalizer or LabelNormalizer()

    # ------------------------------------------------------------------ #
    # Scoring
    # ------------------------------------------------------------------ #

    def score(self, header: str, synonym: str) -> tuple[float, str]:
        """Confidence that normalised *header* means normalised *synonym*.

        Returns
        -------
        tuple[float, str]
            ``(confidence, rule)``; ``(0.0, "none")`` when nothing applies.
        """
        if not header or not synonym:
            return 0.0, "none"
        if header == synonym:
            return EXACT_SCORE, "exact"

        header_tokens = self._normalizer.tokens(header)
        synonym_tokens = self._normalizer.tokens(synonym)

        if self._contains(header, synonym, header_tokens) or self._contains(
            synonym, header, synonym_tokens
        ):
            return CONTAINS_SCORE, "contains"

        best, rule = 0.0, "none"

        overlap = self._overlap(header_tokens, synonym_tokens) * OVERLAP_WEIGHT
        if overlap > best:
            best, rule = overlap, "overlap"

        if best < ALIAS_SCORE:
            expanded = " ".join(ABBREVIATIONS.get(t, t) for t in header_tokens)
            if expanded != header and (
                expanded == synonym
                or self._contains(expanded, synonym, self._normalizer.tokens(expanded))
            ):
                best, rule = ALIAS_SCORE, "alias"

        if (
            best < ALIAS_SCORE
            and len(synonym) >= _MIN_TYPO_LENGTH
            and fuzz.ratio(header, synonym) >= self._config.typo_threshold
        ):
            best, rule = ALIAS_SCORE, "typo"

        return best, rule

    @staticmethod
    def _contains(haystack: str, needle: str, haystack_tokens: list[str]) -> bool:
        if len(needle) <= _SHORT_NEEDLE:
            return needle in haystack_tokens
        return needle in haystack

    @staticmethod
    def _overlap(header_tokens: list[str], synonym_tokens: list[str]) -> float:
        if not synonym_tokens:
            return 0.0
        found = 0
        for word in synonym_tokens:
            if len(word) <= _SHORT_NEEDLE:
                hit = word in header_tokens
            else:
                hit = any(word in token for token in header_tokens)
            if hit:
                found += 1
        return found / len(synonym_tokens)

    def best_field(
        self, header: str, catalog: SchemaCatalog
    ) -> Optional[MatchCandidate]:
        """Highest-scoring field of *catalog* for a raw *header*.

        A later field replaces the current best only with a strictly higher
        score, so ties go to the field listed first in the catalog.
        """
        label = self._normalizer.normalize_label(header)
        best: Optional[MatchCandidate] = None
        for schema_field in catalog.fields:
            for synonym in schema_field.synonyms:
                confidence, rule = self.score(label, synonym)
                if confidence > 0 and (best is None or confidence > best.confidence):
                    best = MatchCandidate(
                        schema_field.canonical_name, confidence, rule, synonym
                    )
            if best is not None and best.confidence >= EXACT_SCORE:
                break
        return best

    # ------------------------------------------------------------------ #
    # Matching a whole header row
    # ------------------------------------------------------------------ #

    def match(
        self,
        headers: Iterable[str],
        catalog: SchemaCatalog,
        accept_threshold: Optional[float] = None,
        confidence_cap: Optional[float] = None,
    ) -> MatchOutcome:
        """Map every header onto *catalog*.

        Parameters
        ----------
        headers:
            Raw headers in file order.
        catalog:
            Target dataset kind.
        accept_threshold:
            Overrides ``MatchingConfig.accept_threshold`` (the keyword
            fallback accepts weaker matches).
        confidence_cap:
            Upper bound applied to every accepted confidence.

        Returns
        -------
        MatchOutcome
        """
        threshold = (
            self._config.accept_threshold if accept_threshold is None else accept_threshold
        )
        mappings: List[ColumnMapping] = []
        for header in headers:
            candidate = self.best_field(header, catalog)
            if candidate is None or candidate.confidence < threshold:
                mappings.append(
                    ColumnMapping(header, IGNORE, 0.0, DataType.TEXT, "no synonym match")
                )
                continue
            confidence = candidate.confidence
            if confidence_cap is not None:
                confidence = min(confidence, confidence_cap)
            mappings.append(
                ColumnMapping(
                    original_column=header,
                    standard_field=candidate.canonical_name,
                    confidence=confidence,
                    data_type=catalog.expected_type(candidate.canonical_name),
                    reasoning=f"{candidate.rule} match on {candidate.synonym!r}",
                )
            )
            logger.debug(
                "%s: %r → %s (%.2f, %s)",
                catalog.kind.value, header, candidate.canonical_name,
                confidence, candidate.rule,
            )

        issues = resolve_duplicates(mappings)
        accepted = [m for m in mappings if m.is_mapped]
        average = sum(m.confidence for m in accepted) / len(accepted) if accepted else 0.0
        mapped = {m.standard_field for m in accepted}
        missing = [f for f in catalog.required_fields if f not in mapped]

        return MatchOutcome(
            kind=catalog.kind,
            mappings=mappings,
            average_confidence=average,
            missing_required=missing,
            issues=issues,
        )


def resolve_duplicates(mappings: List[ColumnMapping]) -> List[str]:
    """Demote all but one claimant of each field to ``ignore`` in place.

    The highest confidence wins; on equal confidence the header that comes
    first keeps the field.  Returns one issue per demoted header.
    """
    winners: dict[str, ColumnMapping] = {}
    for m in mappings:
        if not m.is_mapped:
            continue
        current = winners.get(m.standard_field)
        if current is None or m.confidence > current.confidence:
            winners[m.standard_field] = m

    issues: List[str] = []
    for m in mappings:
        if m.is_mapped and winners[m.standard_field] is not m:
            kept = winners[m.standard_field].original_column
            issues.append(
                f"Column {m.original_column!r} also matched {m.standard_field!r}; "
                f"kept {kept!r}"
            )
            logger.warning(
                "Duplicate claim on %r: %r loses to %r",
                m.standard_field, m.original_column, kept,
            )
            m.standard_field = IGNORE
            m.confidence = 0.0
            m.data_type = DataType.TEXT
    return issues
