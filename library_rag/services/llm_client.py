"""
LLM client for the catalog assistant
------------------------------------
Thin async wrapper over an OpenAI-compatible chat endpoint. Only the
interfaces the pipeline needs are exposed: plain text generation and
generation of a JSON payload.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import structlog
from openai import APIConnectionError, AsyncOpenAI, OpenAIError

from ..core import config
from ..core.exceptions import CollaboratorUnavailable
from ..utils.circuit_breaker import with_circuit_breaker
from ..utils.json_utils import extract_json_payload
from ..utils.retry import get_llm_retry_decorator

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a library research assistant. You help patrons find catalog "
    "records, refine their searches and plan their research. Be concise and "
    "accurate and never invent bibliographic details."
)


class LLMClient:
    """Language-model collaborator used for enhancement, optimization and insights."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
    ):
        self.api_key = api_key if api_key is not None else config.LLM_API_KEY
        self.base_url = base_url if base_url is not None else config.LLM_BASE_URL
        self.model = model or config.LLM_MODEL
        self._client: Optional[AsyncOpenAI] = None

        if self.api_key:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url or None,
                timeout=config.LLM_TIMEOUT_SEC,
            )
            logger.info("llm_client_initialized", model=self.model)
        else:
            logger.warning("llm_client_disabled", reason="no API key configured")

    def is_available(self) -> bool:
        if self._client is None:
            return False
        breaker = getattr(self.generate, "circuit_breaker", None)
        return breaker is None or breaker.allows_calls()

    @get_llm_retry_decorator((APIConnectionError, asyncio.TimeoutError))
    async def _complete(self, messages: List[Dict[str, str]], temperature: float) -> Any:
        return await asyncio.wait_for(
            self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=config.LLM_MAX_OUTPUT_TOKENS,
            ),
            timeout=config.LLM_TIMEOUT_SEC,
        )

    @with_circuit_breaker("language_model", failure_threshold=3, recovery_timeout=60.0)
    async def generate(
        self,
        prompt: str,
        context: Optional[str] = None,
        temperature: float = 0.7,
    ) -> str:
        """Return the model's text reply to *prompt*.

        Raises:
            CollaboratorUnavailable: when no client is configured, the call
                times out or the provider reports an error.
        """
        if self._client is None:
            raise CollaboratorUnavailable("language_model", "no API key configured")

        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        if context:
            messages.append({"role": "system", "content": f"Conversation context:\n{context}"})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self._complete(messages, temperature)
        except asyncio.TimeoutError as e:
            logger.warning("llm_timeout", model=self.model)
            raise CollaboratorUnavailable("language_model", "request timed out") from e
        except OpenAIError as e:
            logger.warning("llm_request_failed", model=self.model, error=str(e))
            raise CollaboratorUnavailable("language_model", str(e)) from e

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise CollaboratorUnavailable("language_model", "empty completion")
        return content

    async def generate_json(
        self,
        prompt: str,
        context: Optional[str] = None,
        temperature: float = 0.3,
    ) -> Any:
        """Generate and parse a JSON payload.

        Raises ``ValidationError`` when the reply holds no parseable JSON.
        """
        text = await self.generate(prompt, context=context, temperature=temperature)
        return extract_json_payload(text)


# Global client instance
llm_client = LLMClient()
