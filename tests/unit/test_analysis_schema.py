"""Unit tests for analysis response normalization and prompts.

Tests cover:
- Clamping and defaults of AnalysisResult fields
- Parse failures degrading to the manual-review result
- Markdown fence tolerance
- Jurisdiction-specific system prompts
"""

import json

from services.analysis.prompts import build_system_prompt, build_user_prompt
from services.analysis.schema import (
    PARSE_ERROR_CODE,
    AnalysisRequest,
    AnalysisResult,
    parse_analysis_content,
)


def test_empty_object_gets_defaults() -> None:
    result = parse_analysis_content("{}")

    assert result.compliance_score == 0
    assert result.risk_level == "medium"
    assert result.iva_validation.is_valid is True
    assert result.iva_validation.errors == []
    assert result.recoverable_tax is None
    assert result.issues == []
    assert result.confidence_score == 0.5


def test_scores_are_clamped() -> None:
    result = AnalysisResult.model_validate(
        {"compliance_score": 140, "confidence_score": -3, "risk_level": "HIGH"}
    )

    assert result.compliance_score == 100
    assert result.confidence_score == 0
    assert result.risk_level == "high"


def test_non_numeric_score_uses_default() -> None:
    result = AnalysisResult.model_validate({"compliance_score": "n/a", "confidence_score": None})

    assert result.compliance_score == 0
    assert result.confidence_score == 0.5


def test_unknown_risk_level_defaults_to_medium() -> None:
    result = AnalysisResult.model_validate({"risk_level": "catastrophic"})

    assert result.risk_level == "medium"


def test_invalid_severity_coerced_to_info() -> None:
    result = AnalysisResult.model_validate(
        {"issues": [{"code": "X", "severity": "urgent", "message": "m"}]}
    )

    assert result.issues[0].severity == "info"


def test_non_object_issues_dropped() -> None:
    result = AnalysisResult.model_validate(
        {"issues": ["oops", 3, None, {"code": "NIF", "severity": "critical", "message": "bad"}]}
    )

    assert len(result.issues) == 1
    assert result.issues[0].code == "NIF"


def test_critical_and_warning_partitions_keep_order() -> None:
    result = AnalysisResult.model_validate(
        {
            "issues": [
                {"code": "W1", "severity": "warning"},
                {"code": "C1", "severity": "critical"},
                {"code": "I1", "severity": "info"},
                {"code": "C2", "severity": "critical"},
            ]
        }
    )

    assert [i.code for i in result.critical_issues] == ["C1", "C2"]
    assert [i.code for i in result.warning_issues] == ["W1"]


def test_recoverable_tax_parsed() -> None:
    result = parse_analysis_content(
        json.dumps({"recoverable_tax": {"amount": "23.5", "confidence": 2, "reason": "deductible"}})
    )

    assert result.recoverable_tax is not None
    assert result.recoverable_tax.amount == 23.5
    assert result.recoverable_tax.confidence == 1.0


def test_code_fenced_json_is_accepted() -> None:
    content = '```json\n{"compliance_score": 88, "risk_level": "low"}\n```'

    result = parse_analysis_content(content)

    assert result.compliance_score == 88
    assert result.risk_level == "low"


def test_invalid_json_yields_parse_failure_result() -> None:
    result = parse_analysis_content("I could not analyze this invoice, sorry.")

    assert result.compliance_score == 50
    assert result.risk_level == "medium"
    assert result.iva_validation.is_valid is False
    assert result.iva_validation.errors == ["Failed to parse AI analysis"]
    assert result.confidence_score == 0
    assert len(result.issues) == 1
    issue = result.issues[0]
    assert issue.code == PARSE_ERROR_CODE
    assert issue.severity == "warning"
    assert issue.suggested_action == "Please review manually"


def test_json_array_yields_parse_failure_result() -> None:
    result = parse_analysis_content("[1, 2, 3]")

    assert result.issues[0].code == PARSE_ERROR_CODE


class TestPrompts:
    """Test prompt construction."""

    def test_portugal_prompt(self) -> None:
        prompt = build_system_prompt("PT")

        assert "Portuguese" in prompt
        assert "23%" in prompt
        assert "Respond ONLY with valid JSON" in prompt

    def test_spain_prompt(self) -> None:
        prompt = build_system_prompt("es")

        assert "Spanish" in prompt
        assert "21%" in prompt

    def test_unknown_jurisdiction_gets_generic_prompt(self) -> None:
        prompt = build_system_prompt("FR")

        assert "Portuguese" not in prompt
        assert "Spanish" not in prompt
        assert '"compliance_score"' in prompt

    def test_user_prompt_embeds_request(self) -> None:
        prompt = build_user_prompt(
            AnalysisRequest(
                invoice_text="FATURA FT 2024/1",
                document_type="xml",
                country_code="PT",
                regime_iva="simplificado",
            )
        )

        assert "DOCUMENT TYPE: xml" in prompt
        assert "COUNTRY: PT" in prompt
        assert "TAX REGIME: simplificado" in prompt
        assert "FATURA FT 2024/1" in prompt
