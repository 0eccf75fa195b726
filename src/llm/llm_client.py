import logging
from typing import Optional

from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from llm.providers.base import LLMProvider
from talk2task.config import Settings
from talk2task.errors import UpstreamError

logger = logging.getLogger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and exc.retryable


def build_provider(settings: Settings) -> LLMProvider:
    """Pick the concrete completion provider named by LLM_PROVIDER."""
    if settings.llm_provider == "mock":
        from llm.providers.mock_provider import MockProvider

        return MockProvider()
    if settings.llm_provider == "openai":
        from llm.providers.openai_provider import OpenAIProvider

        return OpenAIProvider(settings)
    raise RuntimeError(f"Unknown LLM_PROVIDER: {settings.llm_provider}")


class LLMClient:
    """Thin wrapper over a provider.

    One attempt per call unless `max_attempts` is raised; extra attempts only
    happen for rate limits, provider 5xx and transport failures.
    """

    def __init__(
        self,
        provider: Optional[LLMProvider] = None,
        max_attempts: int = 1,
        backoff_max_s: float = 8.0,
    ):
        self.provider = provider
        self.max_attempts = max(1, max_attempts)
        self.backoff_max_s = backoff_max_s

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMClient":
        return cls(provider=build_provider(settings), max_attempts=settings.llm_max_attempts)

    def complete(self, system: str, user: str) -> str:
        if self.provider is None:
            raise RuntimeError("LLMClient has no provider configured")

        if self.max_attempts == 1:
            return self.provider.generate(system=system, user=user)

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=self.backoff_max_s),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"Retrying {getattr(self.provider, 'name', 'provider')} completion call (attempt {attempt.retry_state.attempt_number}/{self.max_attempts})"
                    )
                return self.provider.generate(system=system, user=user)
