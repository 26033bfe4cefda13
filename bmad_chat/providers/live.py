"""
Live completion provider backed by the OpenAI chat completions API.

Backend faults never escape as raw SDK errors: every failure is classified
into a ProviderError subclass so the chat session can decide to fall back.
"""

import logging
from typing import Any, Iterator, Optional, Sequence

import openai
from openai import OpenAI

from ..core.conversation import ConversationTurn
from ..core.errors import (
    ProviderCredentialInvalid,
    ProviderError,
    ProviderNetworkError,
    ProviderQuotaExceeded,
    ProviderRateLimited,
    ProviderUnavailable,
    ProviderUnknownError,
)
from ..core.pricing import DEFAULT_MODEL
from ..core.token_counter import TokenUsage, estimate_usage
from .base import (
    Completion,
    CompletionProvider,
    StreamItem,
    StreamSink,
    StreamSummary,
    TextChunk,
    collect_stream,
)
from .prompts import build_messages

logger = logging.getLogger(__name__)


def classify_error(error: Exception) -> ProviderError:
    """Map an OpenAI SDK exception to a classified provider error."""
    code = getattr(error, "code", None)
    message = str(error)

    if isinstance(error, openai.AuthenticationError) or code == "invalid_api_key":
        return ProviderCredentialInvalid("Invalid OpenAI API key. Please check your configuration.")
    if code == "insufficient_quota":
        return ProviderQuotaExceeded("OpenAI API quota exceeded. Please check your billing.")
    if isinstance(error, openai.RateLimitError) or code == "rate_limit_exceeded":
        return ProviderRateLimited("Rate limit exceeded. Please try again in a moment.")
    if isinstance(error, openai.NotFoundError) or code == "model_not_found":
        return ProviderUnavailable(f"Model not available: {message}")
    if isinstance(error, openai.InternalServerError):
        return ProviderUnavailable(f"OpenAI service unavailable: {message}")
    if isinstance(error, openai.APIConnectionError):
        return ProviderNetworkError("Network error. Please check your internet connection.")
    return ProviderUnknownError(f"OpenAI API error: {message}")


def validate_api_key(api_key: str, client: Optional[Any] = None) -> Optional[ProviderError]:
    """Check a key with a cheap ``models.list()`` request.

    Returns:
        None when the key works, otherwise the classified failure
    """
    client = client or OpenAI(api_key=api_key)
    try:
        client.models.list()
    except openai.OpenAIError as e:
        logger.debug("API key check failed: %s", e)
        return classify_error(e)
    return None


class LiveProvider(CompletionProvider):
    """OpenAI chat completions, streaming or not."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 2000,
        temperature: float = 0.7,
        stream_response: bool = True,
        client: Optional[Any] = None,
    ):
        """Initialize the live provider.

        Args:
            api_key: OpenAI API key (required)
            model: Model name
            max_tokens: Completion token cap per reply
            temperature: Sampling temperature
            stream_response: Stream replies when a sink is supplied
            client: Pre-built client, mainly for tests

        Raises:
            ValueError: If api_key or model is missing/empty
        """
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.stream_response = stream_response
        self.client = client or OpenAI(api_key=api_key)

    @property
    def model_id(self) -> str:
        return self.model

    def complete(
        self,
        system_prompt: str,
        history: Sequence[ConversationTurn],
        stream_sink: Optional[StreamSink] = None,
    ) -> Completion:
        """Get a reply, streaming into ``stream_sink`` when streaming is on.

        Raises:
            ProviderError: Classified backend failure
        """
        if self.stream_response and stream_sink is not None:
            return collect_stream(self.stream(system_prompt, history), stream_sink)

        messages = build_messages(system_prompt, history)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.OpenAIError as e:
            raise classify_error(e) from e

        text = response.choices[0].message.content or ""
        usage = response.usage
        if usage is None:
            logger.debug("Response carried no usage; estimating from text length")
            return Completion(
                text=text,
                usage=estimate_usage((m["content"] for m in messages), text),
                model_id=response.model or self.model,
                usage_estimated=True,
            )

        return Completion(
            text=text,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
            ),
            model_id=response.model or self.model,
        )

    def stream(
        self,
        system_prompt: str,
        history: Sequence[ConversationTurn],
    ) -> Iterator[StreamItem]:
        """Yield reply chunks, then a StreamSummary.

        Usage is exact when the backend reports it on the final chunk and
        estimated from the text otherwise. If the consumer stops early the
        HTTP stream is closed and no summary is produced.

        Raises:
            ProviderError: Classified backend failure, possibly mid-stream
        """
        messages = build_messages(system_prompt, history)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                stream=True,
                stream_options={"include_usage": True},
            )
        except openai.OpenAIError as e:
            raise classify_error(e) from e

        parts = []
        reported = None
        model_id = self.model
        try:
            for chunk in response:
                if getattr(chunk, "model", None):
                    model_id = chunk.model
                if getattr(chunk, "usage", None):
                    reported = chunk.usage
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    parts.append(content)
                    yield TextChunk(content)
        except openai.OpenAIError as e:
            raise classify_error(e) from e
        finally:
            close = getattr(response, "close", None)
            if close is not None:
                close()

        text = "".join(parts)
        if reported is not None:
            yield StreamSummary(
                usage=TokenUsage(
                    prompt_tokens=reported.prompt_tokens,
                    completion_tokens=reported.completion_tokens,
                ),
                model_id=model_id,
            )
        else:
            logger.debug("Stream reported no usage; estimating from text length")
            yield StreamSummary(
                usage=estimate_usage((m["content"] for m in messages), text),
                model_id=model_id,
                estimated=True,
            )
