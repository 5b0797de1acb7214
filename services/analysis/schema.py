"""Compliance analysis models and provider-response normalization.

Providers are asked for one JSON object; whatever comes back is coerced into
``AnalysisResult`` so downstream alerting always receives a complete record.
"""

import json
import logging
import re
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

RiskLevel = Literal["low", "medium", "high", "critical"]
Severity = Literal["info", "warning", "critical"]

RISK_LEVELS: tuple[str, ...] = ("low", "medium", "high", "critical")
SEVERITIES: tuple[str, ...] = ("info", "warning", "critical")

PARSE_ERROR_CODE = "PARSE_ERROR"


def _as_float(value: Any, default: float, low: float, high: float) -> float:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(low, min(high, number))


class Issue(BaseModel):
    """Single finding reported by the analysis."""

    code: str = "UNSPECIFIED"
    severity: Severity = "info"
    message: str = ""
    suggested_action: str | None = None
    field: str | None = None

    @field_validator("code", mode="before")
    @classmethod
    def _code(cls, value: Any) -> str:
        return str(value).strip() if value not in (None, "") else "UNSPECIFIED"

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, value: Any) -> str:
        severity = str(value).lower().strip() if value is not None else ""
        return severity if severity in SEVERITIES else "info"

    @field_validator("message", mode="before")
    @classmethod
    def _message(cls, value: Any) -> str:
        return "" if value is None else str(value)


class IvaValidation(BaseModel):
    """VAT (IVA) validation summary."""

    is_valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @field_validator("is_valid", mode="before")
    @classmethod
    def _is_valid(cls, value: Any) -> bool:
        return True if value is None else bool(value)

    @field_validator("errors", "warnings", mode="before")
    @classmethod
    def _messages(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item is not None]


class RecoverableTax(BaseModel):
    """Estimate of tax the client may recover."""

    amount: float = 0.0
    confidence: float = Field(default=0.0, ge=0, le=1)
    reason: str = ""

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> float:
        return _as_float(value, 0.0, float("-inf"), float("inf"))

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> float:
        return _as_float(value, 0.0, 0.0, 1.0)

    @field_validator("reason", mode="before")
    @classmethod
    def _reason(cls, value: Any) -> str:
        return "" if value is None else str(value)


class AnalysisResult(BaseModel):
    """Normalized compliance analysis.

    Attributes:
        compliance_score: 0-100, higher is more compliant
        risk_level: Coarse risk classification
        iva_validation: VAT validity with error and warning lists
        recoverable_tax: Optional recoverable tax estimate
        issues: Findings in the order the provider reported them
        confidence_score: Provider confidence, 0-1
    """

    compliance_score: float = Field(default=0.0, ge=0, le=100)
    risk_level: RiskLevel = "medium"
    iva_validation: IvaValidation = Field(default_factory=IvaValidation)
    recoverable_tax: RecoverableTax | None = None
    issues: list[Issue] = Field(default_factory=list)
    confidence_score: float = Field(default=0.5, ge=0, le=1)

    @field_validator("compliance_score", mode="before")
    @classmethod
    def _score(cls, value: Any) -> float:
        return _as_float(value, 0.0, 0.0, 100.0)

    @field_validator("risk_level", mode="before")
    @classmethod
    def _risk(cls, value: Any) -> str:
        risk = str(value).lower().strip() if value is not None else ""
        return risk if risk in RISK_LEVELS else "medium"

    @field_validator("iva_validation", mode="before")
    @classmethod
    def _iva(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @field_validator("recoverable_tax", mode="before")
    @classmethod
    def _recoverable(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @field_validator("issues", mode="before")
    @classmethod
    def _issues(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> float:
        return _as_float(value, 0.5, 0.0, 1.0)

    def issues_with_severity(self, severity: str) -> list[Issue]:
        return [issue for issue in self.issues if issue.severity == severity]

    @property
    def critical_issues(self) -> list[Issue]:
        return self.issues_with_severity("critical")

    @property
    def warning_issues(self) -> list[Issue]:
        return self.issues_with_severity("warning")


def parse_failure_result() -> AnalysisResult:
    """Safe default used when the provider reply cannot be parsed."""
    return AnalysisResult(
        compliance_score=50,
        risk_level="medium",
        iva_validation=IvaValidation(
            is_valid=False,
            errors=["Failed to parse AI analysis"],
            warnings=[],
        ),
        recoverable_tax=None,
        issues=[
            Issue(
                code=PARSE_ERROR_CODE,
                severity="warning",
                message="Could not parse AI analysis results",
                suggested_action="Please review manually",
            )
        ],
        confidence_score=0,
    )


def _strip_code_fence(content: str) -> str:
    match = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
    return match.group(1).strip() if match else content.strip()


def parse_analysis_content(content: str) -> AnalysisResult:
    """Parse a provider reply into an ``AnalysisResult``.

    Never raises: unparseable content yields ``parse_failure_result()``.

    Args:
        content: Raw completion text expected to hold a JSON object

    Returns:
        Normalized analysis
    """
    try:
        parsed = json.loads(_strip_code_fence(content))
        if not isinstance(parsed, dict):
            raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
        return AnalysisResult.model_validate(parsed)
    except (ValueError, TypeError, ValidationError) as e:
        # json.JSONDecodeError is a ValueError
        logger.warning(f"Failed to parse AI analysis response: {e}")
        return parse_failure_result()


class AnalysisRequest(BaseModel):
    """Inputs the provider needs to analyze one invoice."""

    invoice_text: str = ""
    document_type: Literal["pdf", "xml"] = "pdf"
    country_code: str = "PT"
    regime_iva: str = "geral"
