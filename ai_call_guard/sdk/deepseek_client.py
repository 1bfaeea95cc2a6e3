"""
DeepSeek chat-completion client.

Thin wrapper over the OpenAI-compatible DeepSeek API. Retries, caching and
usage tracking live in the guard layer, not here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from openai import AsyncOpenAI

from ..config.loader import Settings
from ..core.token_counter import TokenUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Completion:
    """Text returned by the model and the usage it reported, if any."""
    content: str
    usage: Optional[TokenUsage] = None


class ChatCompletionClient(Protocol):
    """Anything that can answer a chat completion request."""

    model: str

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> Completion:
        ...


class DeepSeekClient:
    """Async DeepSeek client.

    Errors from the OpenAI SDK propagate unchanged so the error classifier
    can categorize them from status code or message.
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[AsyncOpenAI] = None):
        """Initialize the client.

        Args:
            settings: API key, base URL, model and timeout; read from the
                environment when omitted
            client: Preconfigured AsyncOpenAI instance
        """
        self.settings = settings or Settings.from_env()
        if not self.settings.api_key:
            logger.warning("DEEPSEEK_API_KEY is not set. AI calls will fail until configured.")

        self.model = self.settings.model
        # SDK retries disabled; the guard layer retries
        self.client = client or AsyncOpenAI(
            api_key=self.settings.api_key or "missing",
            base_url=self.settings.base_url,
            timeout=self.settings.timeout,
            max_retries=0
        )

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        **kwargs: Any
    ) -> Completion:
        """Create a chat completion.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            model: Model override, the configured model by default
            **kwargs: Additional OpenAI parameters

        Returns:
            Completion with the first choice's content and reported usage

        Raises:
            ValueError: If messages is empty
            OpenAI API errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        params: Dict[str, Any] = {"model": model or self.model, "messages": messages}
        if temperature is not None:
            params["temperature"] = temperature
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        params.update(kwargs)

        response = await self.client.chat.completions.create(**params)

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""

        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0
            )

        return Completion(content=content, usage=usage)
