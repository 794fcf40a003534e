"""
Client for the external chat-completion service.

POST {base_url}/chat/completions with `{model, messages, temperature, max_tokens}`
and a bearer token. Every failure (network, non-2xx, malformed body) surfaces as
`AnalysisError`; for non-2xx responses the raw error body is attached.
"""

import logging
from typing import Dict, List, Optional

import httpx
from openai import APIError, APIStatusError, AsyncOpenAI

from .config import Settings
from .errors import AnalysisError

logger = logging.getLogger(__name__)

Message = Dict[str, str]


class CompletionClient:
    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-3.5-turbo",
        temperature: float = 0.7,
        max_tokens: int = 150,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = AsyncOpenAI(
            api_key=api_key or "not-configured",
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            http_client=http_client,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompletionClient":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout_seconds,
        )

    async def complete(
        self,
        messages: List[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send one chat-completion request and return the first choice's text."""
        if not self.api_key:
            raise AnalysisError("Completion service API key is not configured")
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=self.max_tokens if max_tokens is None else max_tokens,
            )
        except APIStatusError as e:
            body = e.response.text
            raise AnalysisError(
                f"API call failed with status {e.status_code}: {body}",
                status_code=e.status_code,
                body=body,
                cause=e,
            ) from e
        except APIError as e:
            raise AnalysisError(f"Completion request failed: {e}", cause=e) from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise AnalysisError(f"Malformed completion response: {e}", cause=e) from e
        usage = getattr(response, "usage", None)
        logger.debug(f"Completion usage: {getattr(usage, 'total_tokens', 0)} tokens ({self.model})")
        return content or ""

    async def aclose(self) -> None:
        await self._client.close()
