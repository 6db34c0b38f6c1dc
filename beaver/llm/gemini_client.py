"""Google Gemini client (generateContent REST API)."""

import base64
import logging
from typing import Any, Optional

import httpx

from beaver.llm.text_generation import IMAGE_ANALYSIS_PROMPT, ProviderError, TextGenerator

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiClient(TextGenerator):
    """Gemini adapter for the text-generation port."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        timeout: float = 30.0,
        base_url: str = GEMINI_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize Gemini client.

        Args:
            api_key: Gemini API key
            model: Model name
            timeout: Seconds allowed per call
            base_url: API root
            transport: Optional httpx transport (tests)
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self.transport = transport

        logger.info(f"Initialized Gemini client: model={self.model}")

    async def generate_text(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        user_message: str
    ) -> str:
        contents = [{"role": "user", "parts": [{"text": system_prompt}]}]
        for turn in history:
            contents.append({
                "role": "user" if turn.get("role") == "user" else "model",
                "parts": [{"text": turn.get("content", "")}]
            })
        contents.append({"role": "user", "parts": [{"text": user_message}]})

        body = {
            "contents": contents,
            "generationConfig": {
                "temperature": 0.7,
                "topK": 40,
                "topP": 0.95,
                "maxOutputTokens": 2048,
            }
        }
        data = await self._bounded(self._post(body), "Gemini generateContent")
        return self._extract_text(data)

    async def analyze_image(self, image_bytes: bytes, mime_type: str) -> str:
        body = {
            "contents": [{
                "role": "user",
                "parts": [
                    {"text": IMAGE_ANALYSIS_PROMPT},
                    {"inline_data": {
                        "mime_type": mime_type,
                        "data": base64.b64encode(image_bytes).decode("ascii"),
                    }},
                ]
            }]
        }
        data = await self._bounded(self._post(body), "Gemini image analysis")
        return self._extract_text(data)

    async def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(url, params={"key": self.api_key}, json=body)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            logger.error(f"Gemini API call failed: {e}")
            raise ProviderError(f"Gemini API call failed: {e}") from e
        except ValueError as e:
            logger.error(f"Gemini returned a non-JSON body: {e}")
            raise ProviderError(f"Gemini returned a non-JSON body: {e}") from e

    @staticmethod
    def _extract_text(data: Any) -> str:
        try:
            candidates = data.get("candidates") or []
            if not candidates:
                raise ProviderError("Gemini returned no candidates")
            parts = candidates[0].get("content", {}).get("parts", [])
            return "".join(part.get("text", "") for part in parts)
        except (AttributeError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Gemini returned an unexpected response shape: {e}") from e
