"""HTTP client for the document-understanding model (Anthropic messages API).

This client performs exactly one request per call. Rate limiting is the
caller's job: every call must go through the shared RateLimitedCallQueue.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from finsync.config import VisionConfig
from finsync.errors import ModelAPIError, ModelRateLimitError, ModelTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class DocumentSource:
    """A PDF given either by signed URL or by inline bytes."""

    url: str | None = None
    data: bytes | None = None
    media_type: str = "application/pdf"

    def __post_init__(self):
        if self.url is None and self.data is None:
            raise ValueError("DocumentSource needs a url or data")

    def to_content_block(self) -> dict[str, Any]:
        if self.url is not None:
            source: dict[str, Any] = {"type": "url", "url": self.url}
        else:
            source = {
                "type": "base64",
                "media_type": self.media_type,
                "data": base64.b64encode(self.data or b"").decode("ascii"),
            }
        return {"type": "document", "source": source}


class VisionModelClient:
    """Submit a prompt plus one document and return the model's text."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.anthropic.com/v1/messages",
        model: str = "claude-3-5-sonnet-20241022",
        api_version: str = "2023-06-01",
        max_tokens: int = 4000,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "x-api-key": api_key,
                "anthropic-version": api_version,
            },
        )

    @classmethod
    def from_config(
        cls, config: VisionConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> VisionModelClient:
        """Build a client from configuration.

        Raises:
            ConfigurationError: If ANTHROPIC_API_KEY is not set
        """
        return cls(
            api_key=config.require_api_key(),
            api_url=config.api_url,
            model=config.model,
            api_version=config.api_version,
            max_tokens=config.max_tokens,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    def build_payload(self, prompt: str, document: DocumentSource) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        document.to_content_block(),
                    ],
                }
            ],
        }

    async def analyze(self, prompt: str, document: DocumentSource) -> str:
        """Send one analysis request.

        Returns:
            The text of the first content block

        Raises:
            ModelRateLimitError: HTTP 429
            ModelTimeoutError: The call exceeded ``timeout`` seconds
            ModelAPIError: Any other non-2xx or an empty answer
        """
        payload = self.build_payload(prompt, document)
        try:
            response = await asyncio.wait_for(
                self.client.post(self.api_url, json=payload), timeout=self.timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ModelTimeoutError(f"Model call timed out after {self.timeout:.0f}s") from exc
        except httpx.RequestError as exc:
            raise ModelAPIError(f"Model request failed: {exc}") from exc

        if response.status_code == 429:
            raise ModelRateLimitError(
                "Model API rate limit exceeded (429). Please try again in a few minutes. "
                f"Details: {response.text}",
                status_code=429,
                body=response.text,
            )
        if response.is_error:
            raise ModelAPIError(
                f"Model API failed: {response.status_code} {response.reason_phrase} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ModelAPIError("Model API returned a non-JSON body", body=response.text) from exc
        if not isinstance(data, dict):
            raise ModelAPIError("Model API returned an unexpected body", body=response.text)

        usage = data.get("usage") or {}
        if usage:
            logger.info(
                "Model token usage: input=%s output=%s",
                usage.get("input_tokens"),
                usage.get("output_tokens"),
            )

        content = data.get("content") or []
        text = content[0].get("text") if content and isinstance(content[0], dict) else None
        if not text:
            raise ModelAPIError("No analysis received from model", body=response.text)
        return text

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> VisionModelClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
