"""
Unit tests for the AI Assist client and response parsing.
"""

from __future__ import annotations

from typing import Any, List, Optional

import pytest
import requests

from sheet_mapper.ai_assist import (
    AssistRequest,
    DisabledAIAssist,
    HttpAIAssist,
    build_ai_assist,
    parse_classification,
    parse_schema,
)
from sheet_mapper.config import AIAssistConfig
from sheet_mapper.errors import AIServiceUnavailable
from sheet_mapper.schema import IGNORE, DatasetKind, DataType


class FakeResponse:
    def __init__(self, body: Any = None, status: int = 200, bad_json: bool = False) -> None:
        self._body = body
        self.status_code = status
        self._bad_json = bad_json

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self) -> Any:
        if self._bad_json:
            raise ValueError("Expecting value")
        return self._body


class FakeSession:
    def __init__(self, response: Optional[FakeResponse] = None, exc: Optional[Exception] = None) -> None:
        self.response = response
        self.exc = exc
        self.calls: List[dict] = []

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        if self.exc is not None:
            raise self.exc
        return self.response


CONFIG = AIAssistConfig(
    classify_url="https://ai.example.test/classify",
    schema_url="https://ai.example.test/schema",
    api_key="secret",
    timeout=3.0,
)

REQUEST = AssistRequest(
    file_name="deals.csv",
    headers=["Deal", "Wert"],
    sample_rows=[{"Deal": "A", "Wert": 5}],
    business_context="B2B software",
)

GOOD_BODY = {
    "fileType": "crm",
    "confidence": 0.85,
    "columnMappings": [
        {"originalColumn": "Deal", "standardField": "dealName", "confidence": 0.9},
        {"originalColumn": "Wert", "standardField": "amount", "confidence": 0.8,
         "dataType": "currency", "reasoning": "monetary"},
        {"standardField": "phase"},
        "garbage",
    ],
    "issues": ["no client column"],
    "businessInsights": {"summary": "pipeline"},
}


# ======================================================================
# Response parsing
# ======================================================================

class TestParseClassification:
    def test_good_body(self) -> None:
        result = parse_classification(GOOD_BODY)
        assert result.dataset_kind is DatasetKind.DEALS
        assert result.confidence == pytest.approx(0.85)
        assert [m.original_column for m in result.mappings] == ["Deal", "Wert"]
        assert result.mappings[1].data_type is DataType.CURRENCY
        assert result.mappings[1].reasoning == "monetary"
        assert result.issues == ["no client column"]
        assert result.business_insights == {"summary": "pipeline"}

    def test_percent_confidence(self) -> None:
        assert parse_classification({"fileType": "bank", "confidence": 92}).confidence == pytest.approx(0.92)

    def test_unmapped_aliases_become_ignore(self) -> None:
        body = {"fileType": "bank", "confidence": 0.5,
                "columnMappings": [{"originalColumn": "X", "standardField": "unmapped"}]}
        assert parse_classification(body).mappings[0].standard_field == IGNORE

    @pytest.mark.parametrize(
        "body",
        [
            ["not", "an", "object"],
            {"fileType": "bank", "confidence": "high"},
            {"fileType": "bank", "confidence": 0.5, "columnMappings": "Deal"},
        ],
    )
    def test_malformed(self, body: Any) -> None:
        with pytest.raises(AIServiceUnavailable):
            parse_classification(body)


class TestParseSchema:
    def test_columns(self) -> None:
        schema = parse_schema({"schema": [
            {"name": "Reading", "type": "float"},
            {"name": "Note", "type": None},
        ]})
        assert schema == {"Reading": DataType.NUMBER, "Note": None}

    def test_columns_key_accepted(self) -> None:
        assert parse_schema({"columns": [{"name": "A", "dataType": "bool"}]}) == {"A": DataType.BOOLEAN}

    @pytest.mark.parametrize("body", [None, {}, {"schema": []}, {"schema": [{"type": "text"}]}])
    def test_malformed(self, body: Any) -> None:
        with pytest.raises(AIServiceUnavailable):
            parse_schema(body)


# ======================================================================
# HTTP client
# ======================================================================

class TestHttpAIAssist:
    def test_classify_posts_payload(self) -> None:
        session = FakeSession(FakeResponse(GOOD_BODY))
        result = HttpAIAssist(CONFIG, session).classify(REQUEST)

        assert result.dataset_kind is DatasetKind.DEALS
        call = session.calls[0]
        assert call["url"] == CONFIG.classify_url
        assert call["timeout"] == 3.0
        assert call["headers"]["Authorization"] == "Bearer secret"
        assert call["json"] == {
            "fileName": "deals.csv",
            "headers": ["Deal", "Wert"],
            "sampleRows": [{"Deal": "A", "Wert": 5}],
            "businessContext": "B2B software",
        }

    def test_schema_uses_schema_url(self) -> None:
        session = FakeSession(FakeResponse({"schema": [{"name": "Wert", "type": "number"}]}))
        schema = HttpAIAssist(CONFIG, session).infer_schema(REQUEST)
        assert schema == {"Wert": DataType.NUMBER}
        assert session.calls[0]["url"] == CONFIG.schema_url

    def test_no_key_no_auth_header(self) -> None:
        session = FakeSession(FakeResponse(GOOD_BODY))
        HttpAIAssist(AIAssistConfig(classify_url="https://x.test"), session).classify(REQUEST)
        assert "Authorization" not in session.calls[0]["headers"]

    @pytest.mark.parametrize(
        "session",
        [
            FakeSession(FakeResponse(GOOD_BODY, status=503)),
            FakeSession(exc=requests.Timeout("read timed out")),
            FakeSession(exc=requests.ConnectionError("refused")),
            FakeSession(FakeResponse(bad_json=True)),
        ],
    )
    def test_failures_become_unavailable(self, session: FakeSession) -> None:
        with pytest.raises(AIServiceUnavailable):
            HttpAIAssist(CONFIG, session).classify(REQUEST)

    def test_unconfigured_endpoint(self) -> None:
        session = FakeSession(FakeResponse(GOOD_BODY))
        with pytest.raises(AIServiceUnavailable):
            HttpAIAssist(AIAssistConfig(), session).classify(REQUEST)
        assert session.calls == []


class TestBuild:
    def test_disabled_without_url(self) -> None:
        ai = build_ai_assist(AIAssistConfig())
        assert isinstance(ai, DisabledAIAssist)
        with pytest.raises(AIServiceUnavailable):
            ai.classify(REQUEST)
        with pytest.raises(AIServiceUnavailable):
            ai.infer_schema(REQUEST)

    def test_http_with_url(self) -> None:
        assert isinstance(build_ai_assist(CONFIG), HttpAIAssist)

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SHEET_MAPPER_AI_URL", "https://env.test/classify")
        monkeypatch.setenv("SHEET_MAPPER_AI_TIMEOUT", "7.5")
        monkeypatch.delenv("SHEET_MAPPER_AI_KEY", raising=False)
        config = AIAssistConfig.from_env()
        assert config.enabled
        assert config.timeout == 7.5
        assert config.api_key is None
