"""Abstract base class for compliance analysis providers.

Enables switching between AI backends while keeping one request/response
contract. Each concrete provider implements a single completion attempt;
retry with exponential backoff and response normalization live here.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

import logging
from abc import ABC, abstractmethod

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from services.analysis.prompts import build_system_prompt, build_user_prompt
from services.analysis.schema import AnalysisRequest, AnalysisResult, parse_analysis_content
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class AnalysisProviderError(Exception):
    """Provider could not produce a completion after all attempts."""

    def __init__(self, provider: str, attempts: int, cause: BaseException) -> None:
        super().__init__(f"{provider} failed after {attempts} attempt(s): {cause}")
        self.provider = provider
        self.attempts = attempts


class EmptyCompletionError(Exception):
    """Provider replied without any completion content."""


class AnalysisProvider(ABC):
    """Abstract base class for invoice compliance analysis providers.

    Example implementations:
    - SiliconFlowAnalysisProvider: OpenAI-compatible HTTP endpoint (baseline)
    - OpenAIAnalysisProvider: OpenAI API via the official SDK
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier recorded as analysis provenance."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier recorded as analysis provenance."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if credentials for this provider are configured."""

    @abstractmethod
    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        """Run one completion attempt.

        Args:
            system_prompt: Jurisdiction-specific instruction
            user_prompt: Instruction embedding the invoice text

        Returns:
            Completion content (expected to be a JSON object)

        Raises:
            Exception: Any failure; the attempt is retried
        """

    def close(self) -> None:
        """Release network resources held by the provider."""

    def analyze_invoice(self, request: AnalysisRequest) -> AnalysisResult:
        """Analyze an invoice for tax compliance.

        Args:
            request: Invoice text and tenant jurisdiction

        Returns:
            Normalized analysis; unparseable replies degrade to a default result

        Raises:
            AnalysisProviderError: If every attempt failed
        """
        system_prompt = build_system_prompt(request.country_code)
        user_prompt = build_user_prompt(request)
        content = self._complete_with_retry(system_prompt, user_prompt)
        return parse_analysis_content(content)

    def _complete_with_retry(self, system_prompt: str, user_prompt: str) -> str:
        """Call ``_complete`` with bounded retries and exponential backoff.

        Waits base, 2*base, 4*base ... seconds between attempts.
        """
        attempts = self.settings.ai_max_retries
        retrying = Retrying(
            retry=retry_if_exception_type(Exception),
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self.settings.ai_backoff_base_seconds, min=0),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            content: str = retrying(self._complete, system_prompt, user_prompt)
        except Exception as e:
            logger.error(f"Provider {self.provider_name} exhausted {attempts} attempt(s): {e}")
            raise AnalysisProviderError(self.provider_name, attempts, e) from e
        return content
