"""
AI Assist capability.

The optional remote service that suggests a dataset kind and column
mappings when the deterministic matcher is not confident enough, and a
column schema for files no canonical kind fits.

Every failure mode (no endpoint configured, transport error, timeout,
non-2xx status, undecodable or malformed payload) is raised as
``AIServiceUnavailable``.  Callers are expected to catch it and degrade to
the rule-based path; nothing here ever blocks longer than the configured
timeout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import requests

from sheet_mapper.config import AIAssistConfig
from sheet_mapper.errors import AIServiceUnavailable
from sheet_mapper.logging_setup import get_logger
from sheet_mapper.schema import ColumnMapping, DatasetKind, DataType

logger = get_logger("ai_assist")


# ---------------------------------------------------------------------------
# Request / response shapes
# ---------------------------------------------------------------------------

@dataclass
class AssistRequest:
    """What the service gets to see of one file."""

    file_name: str
    headers: list[str]
    sample_rows: list[dict[str, Any]]
    business_context: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "fileName": self.file_name,
            "headers": list(self.headers),
            "sampleRows": [_jsonable_row(r) for r in self.sample_rows],
        }
        if self.business_context:
            payload["businessContext"] = self.business_context
        return payload


@dataclass
class AIClassification:
    """Parsed ``classify`` answer."""

    dataset_kind: DatasetKind
    confidence: float
    mappings: list[ColumnMapping] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    business_insights: dict[str, Any] = field(default_factory=dict)


def _jsonable_row(row: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in row.items():
        if value is None or isinstance(value, (str, int, float, bool)):
            out[key] = value
        else:
            out[key] = str(value)
    return out


def _parse_confidence(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise AIServiceUnavailable(f"Non-numeric confidence: {raw!r}") from exc
    # Some models answer in percent.
    if 1.0 < value <= 100.0:
        value /= 100.0
    return min(1.0, max(0.0, value))


def parse_classification(payload: Any) -> AIClassification:
    """Turn a raw ``classify`` response body into an ``AIClassification``.

    Raises
    ------
    AIServiceUnavailable
        If the payload is not an object or its fields have the wrong shape.
    """
    if not isinstance(payload, dict):
        raise AIServiceUnavailable("Response body is not a JSON object")

    raw_mappings = payload.get("columnMappings", payload.get("mappings")) or []
    if not isinstance(raw_mappings, list):
        raise AIServiceUnavailable("columnMappings is not a list")

    mappings: list[ColumnMapping] = []
    for item in raw_mappings:
        if not isinstance(item, dict) or not item.get("originalColumn"):
            logger.debug("Skipping malformed AI mapping entry: %r", item)
            continue
        mappings.append(ColumnMapping.from_dict(item))

    issues = payload.get("issues") or []
    if not isinstance(issues, list):
        issues = [str(issues)]
    insights = payload.get("businessInsights") or {}
    if not isinstance(insights, dict):
        insights = {"summary": str(insights)}

    return AIClassification(
        dataset_kind=DatasetKind.from_label(payload.get("fileType")),
        confidence=_parse_confidence(payload.get("confidence", 0.0)),
        mappings=mappings,
        issues=[str(i) for i in issues],
        business_insights=insights,
    )


def parse_schema(payload: Any) -> dict[str, Optional[DataType]]:
    """Turn a raw ``infer_schema`` response into ``{column: type}``."""
    if not isinstance(payload, dict):
        raise AIServiceUnavailable("Response body is not a JSON object")
    columns = payload.get("schema", payload.get("columns"))
    if not isinstance(columns, list) or not columns:
        raise AIServiceUnavailable("Schema response has no columns")

    schema: dict[str, Optional[DataType]] = {}
    for col in columns:
        if not isinstance(col, dict) or not col.get("name"):
            raise AIServiceUnavailable(f"Malformed schema column: {col!r}")
        raw_type = col.get("type", col.get("dataType"))
        schema[str(col["name"])] = DataType.from_label(raw_type) if raw_type else None
    return schema


# ---------------------------------------------------------------------------
# Capability
# ---------------------------------------------------------------------------

class AIAssist(Protocol):
    """What the classifier and the generic fallback need from the service."""

    def classify(self, request: AssistRequest) -> AIClassification: ...

    def infer_schema(self, request: AssistRequest) -> dict[str, Optional[DataType]]: ...


class DisabledAIAssist:
    """Stand-in used when no endpoint is configured."""

    def classify(self, request: AssistRequest) -> AIClassification:
        raise AIServiceUnavailable("AI Assist is not configured")

    def infer_schema(self, request: AssistRequest) -> dict[str, Optional[DataType]]:
        raise AIServiceUnavailable("AI Assist is not configured")


class HttpAIAssist:
    """AI Assist over JSON/HTTP.

    Parameters
    ----------
    config:
        Endpoints, key and timeout.
    session:
        Optional ``requests.Session`` (or anything with a compatible
        ``post``), mainly for connection reuse and tests.
    """

    def __init__(
        self,
        config: AIAssistConfig,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()

    def classify(self, request: AssistRequest) -> AIClassification:
        body = self._post(self._config.classify_url, request.to_payload())
        result = parse_classification(body)
        logger.info(
            "AI Assist classified %r as %s (%.2f, %d mapping(s))",
            request.file_name, result.dataset_kind.value,
            result.confidence, len(result.mappings),
        )
        return result

    def infer_schema(self, request: AssistRequest) -> dict[str, Optional[DataType]]:
        url = self._config.schema_url or self._config.classify_url
        return parse_schema(self._post(url, request.to_payload()))

    def _post(self, url: Optional[str], payload: dict[str, Any]) -> Any:
        if not url:
            raise AIServiceUnavailable("AI Assist is not configured")
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        try:
            response = self._session.post(
                url, json=payload, headers=headers, timeout=self._config.timeout
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("AI Assist request to %s failed: %s", url, exc)
            raise AIServiceUnavailable(str(exc)) from exc
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("AI Assist returned undecodable body from %s", url)
            raise AIServiceUnavailable("Undecodable response body") from exc


def build_ai_assist(config: AIAssistConfig) -> AIAssist:
    """``HttpAIAssist`` when an endpoint is configured, otherwise disabled."""
    if config.enabled:
        return HttpAIAssist(config)
    return DisabledAIAssist()
