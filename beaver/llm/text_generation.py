"""Text-generation port and provider selection."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderError(Exception):
    """Raised when a text-generation or image-analysis backend fails."""
    pass


class TextGenerator(ABC):
    """Capability port for hosted language models."""

    timeout: float = 30.0

    @abstractmethod
    async def generate_text(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        user_message: str
    ) -> str:
        """
        Generate a reply.

        Args:
            system_prompt: Role instructions
            history: Prior turns as {"role": "user"|"assistant", "content": ...}
            user_message: Latest user turn

        Returns:
            Generated text

        Raises:
            ProviderError: On network, quota or timeout failure
        """
        pass

    @abstractmethod
    async def analyze_image(self, image_bytes: bytes, mime_type: str) -> str:
        """
        Describe an image.

        Raises:
            ProviderError: On network, quota or timeout failure
        """
        pass

    async def _bounded(self, call: Awaitable[T], what: str) -> T:
        """Await a provider call under the port timeout."""
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"{what} timed out after {self.timeout}s")
            raise ProviderError(f"{what} timed out after {self.timeout}s") from e


IMAGE_ANALYSIS_PROMPT = (
    "Describe this image for a software planner. Focus on layout, UI components, "
    "features it implies and any visible text."
)


def create_text_generator(settings: Any, **kwargs: Any) -> Optional[TextGenerator]:
    """
    Build the configured text generator.

    Returns None when the selected provider has no credentials, so agents can
    run in their deterministic mode.
    """
    provider = settings.llm_provider.lower()

    if provider == "gemini":
        if not settings.gemini_api_key:
            logger.warning("GEMINI_API_KEY not set; running without text generation")
            return None
        from beaver.llm.gemini_client import GeminiClient
        return GeminiClient(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            timeout=settings.port_timeout,
            **kwargs
        )

    if provider == "openrouter":
        if not settings.openrouter_api_key:
            logger.warning("OPENROUTER_API_KEY not set; running without text generation")
            return None
        from beaver.llm.openrouter_client import OpenRouterClient
        return OpenRouterClient(
            api_key=settings.openrouter_api_key,
            model=settings.openrouter_model,
            timeout=settings.port_timeout,
            **kwargs
        )

    if provider == "bedrock":
        from beaver.llm.bedrock_client import BedrockClient
        return BedrockClient(
            profile=settings.aws_profile,
            region=settings.aws_region,
            model_id=settings.bedrock_model_id,
            timeout=settings.port_timeout,
            **kwargs
        )

    raise ValueError(f"Unknown llm_provider: {settings.llm_provider}")
