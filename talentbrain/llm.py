"""Chat-completion and embedding services used at the loop boundary."""
import asyncio
import logging
from typing import List, Optional

from openai import OpenAIError

from talentbrain.config import (
    EMBED_MODEL,
    LLM_TIMEOUT,
    OPENAI_MODEL,
    get_encoder,
    get_openai_client,
)

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when the chat model is unavailable, times out or returns nothing."""


class EmbeddingError(Exception):
    """Raised when text cannot be embedded."""


def clean_json_response(content: str) -> str:
    """
    Clean LLM response to extract valid JSON.

    Removes markdown code fences and surrounding whitespace.
    """
    content = content.strip()
    if content.startswith("```"):
        lines = content.split("\n")
        # Remove first line (```json or ```)
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        elif lines and "```" in lines[-1]:
            lines[-1] = lines[-1].replace("```", "")
        content = "\n".join(lines)

    return content.strip()


class ChatModel:
    """Thin async wrapper over OpenAI chat completions."""

    def __init__(self, client=None, model: str = OPENAI_MODEL, timeout: float = LLM_TIMEOUT):
        self._client = client
        self.model = model
        self.timeout = timeout

    @property
    def client(self):
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        client = self.client
        if client is None:
            raise LLMError("OpenAI client unavailable")

        kwargs = {
            "model": self.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(**kwargs), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"⚠️  LLM call timed out after {self.timeout}s")
            raise LLMError(f"LLM call timed out after {self.timeout}s") from e
        except OpenAIError as e:
            logger.warning(f"LLM call failed: {e}")
            raise LLMError(str(e)) from e

        content = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not content:
            raise LLMError("Empty response from LLM")
        return content


class Embedder:
    """sentence-transformers encoder run off the event loop."""

    def __init__(self, encoder=None, timeout: float = LLM_TIMEOUT):
        self._encoder = encoder
        self.timeout = timeout

    @property
    def encoder(self):
        if self._encoder is None:
            self._encoder = get_encoder()
        return self._encoder

    def _encode(self, text: str) -> List[float]:
        return self.encoder.encode(
            [f"query: {text}"],
            normalize_embeddings=True,
            show_progress_bar=False,
        )[0].tolist()

    async def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._encode, text), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise EmbeddingError(f"Embedding timed out after {self.timeout}s") from e
        except (OSError, RuntimeError, ValueError) as e:
            logger.warning("Embedding with %s failed: %s", EMBED_MODEL, e)
            raise EmbeddingError(str(e)) from e


def describe_model() -> Optional[str]:
    return OPENAI_MODEL if get_openai_client() is not None else None
