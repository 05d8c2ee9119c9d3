"""Generative text service client."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from openai import APIConnectionError, APIError, APITimeoutError, AsyncOpenAI

from arcana.config import Settings
from arcana.errors import GenerationTimeout, GenerationUnavailable

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a natural, intuitive tarot reader. Ground every response in the cards provided "
    "and follow the requested output format exactly."
)


class TextGenerator(Protocol):
    async def submit(self, prompt: str, max_output_tokens: int, temperature: float) -> str:
        ...


class OpenAITextGenerator:
    """Chat-completions backed generator.

    Transport problems surface as GenerationUnavailable, deadline overruns as
    GenerationTimeout. Nothing else is raised.
    """

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.settings = settings
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.settings.openai_api_key:
                raise GenerationUnavailable("OpenAI API key not configured")
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key, timeout=self.settings.llm_timeout)
        return self._client

    async def submit(self, prompt: str, max_output_tokens: int, temperature: float) -> str:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.settings.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_output_tokens,
                temperature=temperature,
            )
        except APITimeoutError as e:
            raise GenerationTimeout(f"Generation timed out: {e}") from e
        except (APIConnectionError, APIError) as e:
            raise GenerationUnavailable(f"Generation request failed: {e}") from e

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug("Token usage: prompt=%s completion=%s", usage.prompt_tokens, usage.completion_tokens)

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()
