"""OpenAI chat completion gateway used to compose answers."""

from __future__ import annotations

from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from .config import config
from .errors import UpstreamError

logger = config.get_logger(__name__)


class AnswerGateway(Protocol):
    """Produces an answer from a system instruction and a user prompt."""

    async def complete(self, system_instruction: str, user_prompt: str) -> str | None: ...


class AnswerService:
    """Generates answers with the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        """Initialize the AnswerService.

        Args:
            api_key: OpenAI API key. If None, reads OPENAI_API_KEY.
            model: Chat model name. If None, uses config.CHAT_MODEL.
            max_tokens: Completion budget. If None, uses config.CHAT_MAX_TOKENS.
            temperature: Sampling temperature. If None, uses
                config.CHAT_TEMPERATURE.
        """
        default_headers = config.get_api_headers()
        self.client = AsyncOpenAI(
            api_key=api_key or config.get_openai_api_key(),
            base_url=config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
        )
        self.model = model or config.CHAT_MODEL
        self.max_tokens = max_tokens if max_tokens is not None else config.CHAT_MAX_TOKENS
        self.temperature = (
            temperature if temperature is not None else config.CHAT_TEMPERATURE
        )

    async def complete(self, system_instruction: str, user_prompt: str) -> str | None:
        """Ask the chat model for an answer.

        Returns:
            The stripped answer text, or None when the model returned nothing.

        Raises:
            UpstreamError: If the chat completion request fails.
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_instruction},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except OpenAIError as exc:
            logger.exception("Error generating answer")
            msg = f"Answer request failed: {exc}"
            raise UpstreamError(msg) from exc

        if not response.choices:
            return None
        content = response.choices[0].message.content
        return content.strip() if content else None
