"""Unit tests for analysis providers.

Outbound HTTP is served by httpx.MockTransport; the OpenAI SDK client is
replaced with a MagicMock.
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from services.analysis.base import AnalysisProviderError
from services.analysis.openai_provider import OpenAIAnalysisProvider
from services.analysis.schema import AnalysisRequest
from services.analysis.siliconflow_provider import SiliconFlowAnalysisProvider
from services.shared.config import Settings

ANALYSIS = {
    "compliance_score": 72,
    "risk_level": "medium",
    "iva_validation": {"is_valid": True, "errors": [], "warnings": ["rate check"]},
    "recoverable_tax": None,
    "issues": [{"code": "MISSING_NIF", "severity": "critical", "message": "NIF missing"}],
    "confidence_score": 0.8,
}


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _provider(settings: Settings, handler) -> SiliconFlowAnalysisProvider:  # type: ignore[no-untyped-def]
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return SiliconFlowAnalysisProvider(settings, client=client)


@pytest.fixture
def request_model() -> AnalysisRequest:
    return AnalysisRequest(invoice_text="FT 1/2024 Total 123.00 IVA 23%", country_code="PT")


class TestSiliconFlowProvider:
    """Test the baseline HTTP provider."""

    def test_successful_analysis(self, settings: Settings, request_model: AnalysisRequest) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=_completion(json.dumps(ANALYSIS)))

        result = _provider(settings, handler).analyze_invoice(request_model)

        assert result.compliance_score == 72
        assert result.critical_issues[0].code == "MISSING_NIF"
        assert len(captured) == 1

        sent = captured[0]
        assert str(sent.url) == settings.siliconflow_api_url
        assert sent.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(sent.content)
        assert body["model"] == "deepseek-ai/DeepSeek-V2.5"
        assert body["temperature"] == 0.3
        assert body["max_tokens"] == 2000
        assert body["response_format"] == {"type": "json_object"}
        assert body["messages"][0]["role"] == "system"
        assert "Portuguese" in body["messages"][0]["content"]
        assert "FT 1/2024" in body["messages"][1]["content"]

    def test_retries_after_server_error(
        self, settings: Settings, request_model: AnalysisRequest
    ) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(503, json={"error": "busy"})
            return httpx.Response(200, json=_completion(json.dumps(ANALYSIS)))

        result = _provider(settings, handler).analyze_invoice(request_model)

        assert calls["n"] == 2
        assert result.compliance_score == 72

    def test_three_timeouts_raise_provider_error(
        self, settings: Settings, request_model: AnalysisRequest
    ) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(AnalysisProviderError) as exc_info:
            _provider(settings, handler).analyze_invoice(request_model)

        assert calls["n"] == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.provider == "siliconflow"

    def test_backoff_doubles_between_attempts(
        self, settings: Settings, request_model: AnalysisRequest
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        provider = _provider(settings.model_copy(update={"ai_backoff_base_seconds": 1}), handler)

        with patch("tenacity.nap.time.sleep") as sleep:
            with pytest.raises(AnalysisProviderError):
                provider.analyze_invoice(request_model)

        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]

    def test_empty_content_is_a_failed_attempt(
        self, settings: Settings, request_model: AnalysisRequest
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_completion(""))

        with pytest.raises(AnalysisProviderError):
            _provider(settings, handler).analyze_invoice(request_model)

    def test_malformed_envelope_is_a_failed_attempt(
        self, settings: Settings, request_model: AnalysisRequest
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"unexpected": True})

        with pytest.raises(AnalysisProviderError):
            _provider(settings, handler).analyze_invoice(request_model)

    def test_unparseable_content_degrades_to_default(
        self, settings: Settings, request_model: AnalysisRequest
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_completion("not json at all"))

        result = _provider(settings, handler).analyze_invoice(request_model)

        assert result.compliance_score == 50
        assert result.issues[0].code == "PARSE_ERROR"

    def test_availability_follows_api_key(self) -> None:
        assert SiliconFlowAnalysisProvider(Settings(_env_file=None)).is_available() is False
        assert (
            SiliconFlowAnalysisProvider(
                Settings(_env_file=None, siliconflow_api_key="k")
            ).is_available()
            is True
        )


class TestOpenAIProvider:
    """Test the OpenAI SDK provider."""

    @staticmethod
    def _mock_client(content: str | None) -> MagicMock:
        client = MagicMock()
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content=content))]
        client.chat.completions.create.return_value = response
        return client

    def test_successful_analysis(self, settings: Settings, request_model: AnalysisRequest) -> None:
        client = self._mock_client(json.dumps(ANALYSIS))
        provider = OpenAIAnalysisProvider(settings, client=client)

        result = provider.analyze_invoice(request_model)

        assert result.compliance_score == 72
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.3

    def test_empty_content_retried_then_fails(
        self, settings: Settings, request_model: AnalysisRequest
    ) -> None:
        client = self._mock_client(None)
        provider = OpenAIAnalysisProvider(settings, client=client)

        with pytest.raises(AnalysisProviderError):
            provider.analyze_invoice(request_model)

        assert client.chat.completions.create.call_count == 3

    def test_missing_api_key_fails(self, request_model: AnalysisRequest) -> None:
        settings = Settings(_env_file=None, openai_api_key="", ai_backoff_base_seconds=0)
        provider = OpenAIAnalysisProvider(settings)

        assert provider.is_available() is False
        with pytest.raises(AnalysisProviderError, match="OpenAI API key not configured"):
            provider.analyze_invoice(request_model)

    def test_provenance(self, settings: Settings) -> None:
        provider = OpenAIAnalysisProvider(settings, client=MagicMock())

        assert provider.provider_name == "openai"
        assert provider.model_name == settings.openai_model
