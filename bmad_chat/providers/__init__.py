"""
Completion providers for bmad-chat.

A live provider backed by the OpenAI API and a deterministic offline one.
"""

from .base import Completion, CompletionProvider, StreamSummary, TextChunk
from .live import LiveProvider, validate_api_key
from .offline import OfflineProvider

__all__ = [
    "Completion",
    "CompletionProvider",
    "LiveProvider",
    "OfflineProvider",
    "StreamSummary",
    "TextChunk",
    "validate_api_key",
]
