"""Completion provider interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Sequence, Union

from ..core.conversation import ConversationTurn
from ..core.errors import ProviderUnknownError
from ..core.token_counter import TokenUsage


StreamSink = Callable[[str], None]


@dataclass(frozen=True)
class Completion:
    """A finished reply from a provider."""
    text: str
    usage: Optional[TokenUsage]
    model_id: str
    usage_estimated: bool = False


@dataclass(frozen=True)
class TextChunk:
    """A partial piece of a streamed reply."""
    text: str


@dataclass(frozen=True)
class StreamSummary:
    """Last item of a stream: usage for the whole reply."""
    usage: Optional[TokenUsage]
    model_id: str
    estimated: bool = False


StreamItem = Union[TextChunk, StreamSummary]


class CompletionProvider(ABC):
    """Produces a reply to a conversation, live or offline."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        ...

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        history: Sequence[ConversationTurn],
        stream_sink: Optional[StreamSink] = None,
    ) -> Completion:
        """Return a reply; partial text goes to ``stream_sink`` when given."""
        ...

    def stream(
        self,
        system_prompt: str,
        history: Sequence[ConversationTurn],
    ) -> Iterator[StreamItem]:
        """Yield the reply as text chunks followed by one StreamSummary.

        The default emits the whole completion as a single chunk.
        """
        completion = self.complete(system_prompt, history)
        yield TextChunk(completion.text)
        yield StreamSummary(completion.usage, completion.model_id, completion.usage_estimated)


def collect_stream(
    items: Iterator[StreamItem],
    stream_sink: Optional[StreamSink] = None,
) -> Completion:
    """Drive a stream to completion, forwarding each chunk to the sink."""
    parts = []
    summary = None
    for item in items:
        if isinstance(item, TextChunk):
            parts.append(item.text)
            if stream_sink is not None:
                stream_sink(item.text)
        else:
            summary = item
    if summary is None:
        raise ProviderUnknownError("stream ended without a usage summary")
    return Completion(
        text="".join(parts),
        usage=summary.usage,
        model_id=summary.model_id,
        usage_estimated=summary.estimated,
    )
