"""OpenRouter client (OpenAI-compatible chat completions)."""

import base64
import logging
from typing import Any, Optional

import httpx

from beaver.llm.text_generation import IMAGE_ANALYSIS_PROMPT, ProviderError, TextGenerator

logger = logging.getLogger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"


class OpenRouterClient(TextGenerator):
    """OpenRouter adapter for the text-generation port."""

    def __init__(
        self,
        api_key: str,
        model: str = "anthropic/claude-3.5-sonnet",
        timeout: float = 30.0,
        url: str = OPENROUTER_URL,
        max_tokens: int = 4000,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.url = url
        self.max_tokens = max_tokens
        self.transport = transport

        logger.info(f"Initialized OpenRouter client: model={self.model}")

    async def generate_text(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        user_message: str
    ) -> str:
        messages = [{"role": "system", "content": system_prompt}]
        for turn in history:
            messages.append({
                "role": "user" if turn.get("role") == "user" else "assistant",
                "content": turn.get("content", "")
            })
        messages.append({"role": "user", "content": user_message})

        data = await self._bounded(self._post(messages), "OpenRouter completion")
        return self._extract_text(data)

    async def analyze_image(self, image_bytes: bytes, mime_type: str) -> str:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": IMAGE_ANALYSIS_PROMPT},
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
            ]
        }]
        data = await self._bounded(self._post(messages), "OpenRouter image analysis")
        return self._extract_text(data)

    async def _post(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        body = {
            "model": self.model,
            "messages": messages,
            "temperature": 0.7,
            "max_tokens": self.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(self.url, json=body, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            logger.error(f"OpenRouter API call failed: {e}")
            raise ProviderError(f"OpenRouter API call failed: {e}") from e
        except ValueError as e:
            logger.error(f"OpenRouter returned a non-JSON body: {e}")
            raise ProviderError(f"OpenRouter returned a non-JSON body: {e}") from e

    @staticmethod
    def _extract_text(data: Any) -> str:
        try:
            choices = data.get("choices") or []
            if not choices:
                raise ProviderError("OpenRouter returned no choices")
            return choices[0].get("message", {}).get("content") or ""
        except (AttributeError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"OpenRouter returned an unexpected response shape: {e}") from e
