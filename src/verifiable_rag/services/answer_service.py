"""Answer generation providers."""

import logging
import time
from abc import ABC, abstractmethod

from openai import AsyncOpenAI

from verifiable_rag.utils.errors import AnswerGenerationError, ConfigurationError


logger = logging.getLogger("verifiable-rag.answer")


class AnswerProvider(ABC):
    """Chat-style completion: instructions plus prompt in, text out."""

    @abstractmethod
    async def complete(self, system_instructions: str, user_prompt: str) -> str:
        """
        Generate an answer.

        Raises:
            AnswerGenerationError: If the provider fails
        """


class OpenAIAnswerProvider(AnswerProvider):
    """OpenAI chat completions. Failures are not retried."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_tokens: int = 1000,
        timeout: int = 60
    ):
        """
        Initialize answer provider.

        Args:
            api_key: OpenAI API key
            model: Chat model name
            temperature: Sampling temperature
            max_tokens: Upper bound on answer length
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ConfigurationError("OpenAI API key is required")

        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    async def complete(self, system_instructions: str, user_prompt: str) -> str:
        start_time = time.time()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_instructions},
                    {"role": "user", "content": user_prompt}
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=self.timeout
            )
        except Exception as e:
            logger.error(f"Answer generation failed: {e}")
            raise AnswerGenerationError(f"Failed to generate answer: {e}", cause=e)

        if not response.choices:
            logger.error("Answer generation returned no choices")
            raise AnswerGenerationError("Answer provider returned no choices")

        content = response.choices[0].message.content or ""
        latency_ms = int((time.time() - start_time) * 1000)
        logger.debug(f"Generated answer: model={self.model}, latency={latency_ms}ms")
        return content


def create_answer_provider(config) -> AnswerProvider:
    """Build the provider selected by ``LLM_PROVIDER``."""
    if config.llm_provider == "openai":
        return OpenAIAnswerProvider(
            api_key=config.openai_api_key,
            model=config.llm_model,
            temperature=config.llm_temperature,
            max_tokens=config.llm_max_tokens,
            timeout=config.openai_timeout,
        )

    raise ConfigurationError(f"Unsupported LLM provider: {config.llm_provider}")
