"""AWS Bedrock client wrapper for Anthropic models."""

import asyncio
import base64
import json
import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from beaver.llm.text_generation import IMAGE_ANALYSIS_PROMPT, ProviderError, TextGenerator

logger = logging.getLogger(__name__)


class BedrockConfig(BaseModel):
    """Bedrock configuration."""
    profile: str = "default"
    region: str = "eu-west-1"
    model_id: str = "eu.anthropic.claude-sonnet-4-5-20250929-v1:0"
    max_tokens: int = 4000
    temperature: float = 0.7


class BedrockResponse(BaseModel):
    """Response from Bedrock API."""
    content: str
    stop_reason: str
    usage: dict[str, Any]
    model: str


class BedrockClient(TextGenerator):
    """Bedrock adapter for the text-generation port."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        model_id: Optional[str] = None,
        timeout: float = 30.0,
        client: Any = None
    ):
        """
        Initialize Bedrock client.

        Args:
            profile: AWS profile name
            region: AWS region
            model_id: Model ID or inference profile
            timeout: Seconds allowed per call
            client: Pre-built bedrock-runtime client (skips session creation)
        """
        self.config = BedrockConfig(
            profile=profile or "default",
            region=region or "eu-west-1",
            model_id=model_id or "eu.anthropic.claude-sonnet-4-5-20250929-v1:0"
        )
        self.timeout = timeout

        if client is None:
            session = boto3.Session(
                profile_name=self.config.profile,
                region_name=self.config.region
            )

            # Configure retry strategy
            retry_config = Config(
                region_name=self.config.region,
                retries={
                    'max_attempts': 3,
                    'mode': 'adaptive'
                }
            )

            client = session.client(
                service_name='bedrock-runtime',
                config=retry_config
            )
        self.client = client

        logger.info(
            f"Initialized Bedrock client: profile={self.config.profile}, "
            f"region={self.config.region}, model={self.config.model_id}"
        )

    def invoke_model(
        self,
        messages: list[dict[str, Any]],
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> BedrockResponse:
        """
        Invoke the model with a message list (blocking).

        Args:
            messages: Anthropic-format messages
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature

        Returns:
            BedrockResponse with content and metadata

        Raises:
            BedrockInvocationError: If API call fails
        """
        request_body = {
            "anthropic_version": "bedrock-2023-05-31",
            "messages": messages,
            "max_tokens": max_tokens or self.config.max_tokens,
            "temperature": temperature if temperature is not None else self.config.temperature
        }
        if system_prompt:
            request_body["system"] = system_prompt

        logger.debug(
            f"Invoking model: {self.config.model_id} "
            f"(messages={len(messages)}, max_tokens={request_body['max_tokens']})"
        )

        try:
            response = self.client.invoke_model(
                modelId=self.config.model_id,
                body=json.dumps(request_body),
                contentType='application/json',
                accept='application/json'
            )
            response_body = json.loads(response['body'].read())
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Bedrock invocation failed: {e}")
            raise BedrockInvocationError(f"Failed to invoke model: {e}") from e
        except ValueError as e:
            logger.error(f"Bedrock returned a non-JSON body: {e}")
            raise BedrockInvocationError(f"Bedrock returned a non-JSON body: {e}") from e

        content = ""
        for block in response_body.get("content") or []:
            if block.get("type") == "text":
                content += block.get("text", "")

        logger.info(
            f"Model invocation successful: "
            f"stop_reason={response_body.get('stop_reason')}, "
            f"input_tokens={response_body.get('usage', {}).get('input_tokens')}, "
            f"output_tokens={response_body.get('usage', {}).get('output_tokens')}"
        )

        return BedrockResponse(
            content=content,
            stop_reason=response_body.get("stop_reason") or "",
            usage=response_body.get("usage", {}),
            model=response_body.get("model", self.config.model_id)
        )

    async def generate_text(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        user_message: str
    ) -> str:
        messages = [
            {
                "role": "user" if turn.get("role") == "user" else "assistant",
                "content": turn.get("content", "")
            }
            for turn in history
        ]
        messages.append({"role": "user", "content": user_message})

        response = await self._bounded(
            asyncio.to_thread(self.invoke_model, messages, system_prompt),
            "Bedrock invocation"
        )
        return response.content

    async def analyze_image(self, image_bytes: bytes, mime_type: str) -> str:
        messages = [{
            "role": "user",
            "content": [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": mime_type,
                        "data": base64.b64encode(image_bytes).decode("ascii"),
                    }
                },
                {"type": "text", "text": IMAGE_ANALYSIS_PROMPT},
            ]
        }]
        response = await self._bounded(
            asyncio.to_thread(self.invoke_model, messages),
            "Bedrock image analysis"
        )
        return response.content


class BedrockInvocationError(ProviderError):
    """Raised when Bedrock API invocation fails."""
    pass
