"""OpenAI analysis provider.

Uses the OpenAI SDK with JSON mode for structured compliance output.
The SDK's own retries are disabled; attempts are governed by the shared
backoff policy in ``AnalysisProvider``.
"""

from typing import Any

from openai import OpenAI

from services.analysis.base import AnalysisProvider, EmptyCompletionError
from services.shared.config import Settings


class OpenAIAnalysisProvider(AnalysisProvider):
    """OpenAI-based provider (GPT-4o-mini by default).

    Requires APP_OPENAI_API_KEY.
    """

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        """Initialize OpenAI provider.

        Args:
            settings: Application settings
            client: Optional preconfigured OpenAI client
        """
        super().__init__(settings)
        self._client: Any | None = client

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def model_name(self) -> str:
        return self.settings.openai_model

    def is_available(self) -> bool:
        return bool(self.settings.openai_api_key)

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.is_available():
                raise ValueError(
                    "OpenAI API key not configured. Set APP_OPENAI_API_KEY environment variable."
                )
            self._client = OpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.ai_timeout_seconds,
                max_retries=0,
            )
        return self._client

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        response = self._get_client().chat.completions.create(
            model=self.model_name,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.settings.ai_temperature,
            max_tokens=self.settings.ai_max_tokens,
            response_format={"type": "json_object"},
        )
        if not response.choices:
            raise EmptyCompletionError("No choices in OpenAI response")
        content = response.choices[0].message.content
        if not content:
            raise EmptyCompletionError("Empty response from OpenAI")
        return str(content)

    def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            self._client.close()
