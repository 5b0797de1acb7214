"""Factory for analysis providers selected by name.

The registry is a fixed table: firms pick a provider by name and anything
unknown falls back to the baseline provider instead of failing.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging
import threading

from services.analysis.base import AnalysisProvider
from services.analysis.openai_provider import OpenAIAnalysisProvider
from services.analysis.siliconflow_provider import SiliconFlowAnalysisProvider
from services.shared.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "siliconflow"


class ProviderRegistry:
    """Mapping of provider names to implementation classes."""

    _providers: dict[str, type[AnalysisProvider]] = {
        "siliconflow": SiliconFlowAnalysisProvider,
        "openai": OpenAIAnalysisProvider,
    }

    @classmethod
    def resolve_name(cls, name: str | None) -> str:
        """Normalize a requested provider name, falling back to the baseline.

        Args:
            name: Requested provider (may be None or unknown)

        Returns:
            A registered provider name
        """
        if not name:
            return DEFAULT_PROVIDER
        key = name.strip().lower()
        if key not in cls._providers:
            available = ", ".join(cls._providers.keys())
            logger.warning(
                f"Unknown analysis provider '{name}', using '{DEFAULT_PROVIDER}'. "
                f"Available providers: {available}"
            )
            return DEFAULT_PROVIDER
        return key

    @classmethod
    def get_provider_class(cls, name: str | None) -> type[AnalysisProvider]:
        return cls._providers[cls.resolve_name(name)]

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers.keys())


def create_analysis_provider(settings: Settings, name: str | None = None) -> AnalysisProvider:
    """Create a provider by name (defaults to settings.ai_provider).

    Args:
        settings: Application settings
        name: Provider requested by the firm, if any

    Returns:
        Provider instance
    """
    provider_name = ProviderRegistry.resolve_name(name or settings.ai_provider)
    provider = ProviderRegistry.get_provider_class(provider_name)(settings)

    if not provider.is_available():
        logger.warning(
            f"Analysis provider '{provider_name}' is not fully available. "
            f"Check configuration (e.g., API keys)."
        )

    logger.info(f"Created analysis provider: {provider_name}")
    return provider


class AnalysisProviderPool:
    """Lazily creates one provider instance per name and reuses it.

    Safe to share between the worker threads that run analyses.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._providers: dict[str, AnalysisProvider] = {}
        self._lock = threading.Lock()

    def get(self, name: str | None) -> AnalysisProvider:
        key = ProviderRegistry.resolve_name(name or self.settings.ai_provider)
        with self._lock:
            if key not in self._providers:
                self._providers[key] = create_analysis_provider(self.settings, key)
            return self._providers[key]

    def close(self) -> None:
        with self._lock:
            for provider in self._providers.values():
                provider.close()
            self._providers.clear()
