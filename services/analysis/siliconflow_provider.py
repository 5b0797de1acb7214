"""SiliconFlow analysis provider (baseline).

Calls SiliconFlow's OpenAI-compatible chat completions endpoint over HTTP and
asks for a JSON-only reply.

See: https://docs.siliconflow.cn/
"""

import logging
from typing import Any

import httpx

from services.analysis.base import AnalysisProvider, EmptyCompletionError
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class SiliconFlowAnalysisProvider(AnalysisProvider):
    """Baseline provider backed by SiliconFlow-hosted models."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize SiliconFlow provider.

        Args:
            settings: Application settings
            client: Optional preconfigured HTTP client
        """
        super().__init__(settings)
        self._url = settings.siliconflow_api_url
        self._model = settings.siliconflow_model
        self._client = client or httpx.Client(timeout=settings.ai_timeout_seconds)

    @property
    def provider_name(self) -> str:
        return "siliconflow"

    @property
    def model_name(self) -> str:
        return self._model

    def is_available(self) -> bool:
        return bool(self.settings.siliconflow_api_key)

    def _complete(self, system_prompt: str, user_prompt: str) -> str:
        response = self._client.post(
            self._url,
            json=self._build_payload(system_prompt, user_prompt),
            headers={
                "Authorization": f"Bearer {self.settings.siliconflow_api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.settings.ai_timeout_seconds,
        )
        response.raise_for_status()

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmptyCompletionError(f"Malformed response from SiliconFlow: {e}") from e
        if not content:
            raise EmptyCompletionError("Empty response from SiliconFlow")
        return str(content)

    def _build_payload(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        return {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.settings.ai_temperature,
            "max_tokens": self.settings.ai_max_tokens,
            "response_format": {"type": "json_object"},
        }

    def close(self) -> None:
        self._client.close()
