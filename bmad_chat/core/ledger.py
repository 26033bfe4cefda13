"""
In-memory usage ledger.

Accumulates token and cost usage per conversation and per calendar day.
Costs are summed as Decimal so that totals taken over conversations and
over days always agree.
"""

import math
import threading
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Set, Tuple

from .errors import InvalidUsage


@dataclass(frozen=True)
class UsageRecord:
    """Priced usage of a single completion."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    total_cost: float
    input_cost: float = 0.0
    output_cost: float = 0.0


@dataclass(frozen=True)
class ConversationStats:
    """Accumulated usage of one conversation."""
    messages: int
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    total_cost: float


@dataclass(frozen=True)
class DailyStats:
    """Accumulated usage of one calendar day."""
    conversations: int
    total_tokens: int
    total_cost: float


@dataclass(frozen=True)
class TotalStats:
    """Usage summed over every recorded conversation."""
    conversations: int
    messages: int
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    total_cost: float


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time view of the whole ledger."""
    total: TotalStats
    conversations: List[Tuple[str, ConversationStats]]
    daily: List[Tuple[str, DailyStats]]


class _ConversationBucket:
    __slots__ = ("messages", "prompt_tokens", "completion_tokens", "total_tokens", "total_cost")

    def __init__(self):
        self.messages = 0
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.total_tokens = 0
        self.total_cost = Decimal("0")

    def freeze(self) -> ConversationStats:
        return ConversationStats(
            messages=self.messages,
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            total_tokens=self.total_tokens,
            total_cost=float(self.total_cost),
        )


class _DailyBucket:
    __slots__ = ("conversation_ids", "total_tokens", "total_cost")

    def __init__(self):
        self.conversation_ids: Set[str] = set()
        self.total_tokens = 0
        self.total_cost = Decimal("0")

    def freeze(self) -> DailyStats:
        return DailyStats(
            conversations=len(self.conversation_ids),
            total_tokens=self.total_tokens,
            total_cost=float(self.total_cost),
        )


def _validate(usage: UsageRecord) -> None:
    for name in ("prompt_tokens", "completion_tokens", "total_tokens"):
        value = getattr(usage, name)
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidUsage(f"{name} must be an integer (got {value!r})")
        if value < 0:
            raise InvalidUsage(f"{name} cannot be negative (got {value})")
    for name in ("total_cost", "input_cost", "output_cost"):
        value = getattr(usage, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise InvalidUsage(f"{name} must be a finite number (got {value!r})")
        if value < 0:
            raise InvalidUsage(f"{name} cannot be negative (got {value})")
    if usage.total_tokens != usage.prompt_tokens + usage.completion_tokens:
        raise InvalidUsage(
            f"total_tokens {usage.total_tokens} != prompt_tokens "
            f"{usage.prompt_tokens} + completion_tokens {usage.completion_tokens}"
        )


class UsageLedger:
    """Accounting store for token and cost usage.

    Every accepted record updates exactly one conversation bucket and exactly
    one daily bucket under a single lock, so concurrent sessions sharing a
    ledger never observe a partial update.
    """

    def __init__(self, today: Callable[[], date] = date.today):
        self._today = today
        self._lock = threading.Lock()
        self._conversations: Dict[str, _ConversationBucket] = {}
        self._daily: Dict[str, _DailyBucket] = {}

    def record(self, conversation_id: str, usage: UsageRecord) -> None:
        """Apply a usage record to the conversation and today's buckets.

        Raises:
            InvalidUsage: If a counter is negative or the token total is
                inconsistent; the ledger is left unchanged.
        """
        _validate(usage)
        cost = Decimal(str(usage.total_cost))
        day_key = self._today().isoformat()

        with self._lock:
            conv = self._conversations.setdefault(conversation_id, _ConversationBucket())
            conv.messages += 1
            conv.prompt_tokens += usage.prompt_tokens
            conv.completion_tokens += usage.completion_tokens
            conv.total_tokens += usage.total_tokens
            conv.total_cost += cost

            daily = self._daily.setdefault(day_key, _DailyBucket())
            daily.conversation_ids.add(conversation_id)
            daily.total_tokens += usage.total_tokens
            daily.total_cost += cost

    def conversation_stats(self, conversation_id: str) -> Optional[ConversationStats]:
        with self._lock:
            bucket = self._conversations.get(conversation_id)
            return bucket.freeze() if bucket else None

    def daily_stats(self, day: Optional[date] = None) -> Optional[DailyStats]:
        key = (day or self._today()).isoformat()
        with self._lock:
            bucket = self._daily.get(key)
            return bucket.freeze() if bucket else None

    def all_stats(self) -> LedgerSnapshot:
        """Return totals plus the per-conversation and per-day views."""
        with self._lock:
            buckets = list(self._conversations.values())
            total = TotalStats(
                conversations=len(buckets),
                messages=sum(b.messages for b in buckets),
                prompt_tokens=sum(b.prompt_tokens for b in buckets),
                completion_tokens=sum(b.completion_tokens for b in buckets),
                total_tokens=sum(b.total_tokens for b in buckets),
                total_cost=float(sum((b.total_cost for b in buckets), Decimal("0"))),
            )
            return LedgerSnapshot(
                total=total,
                conversations=[(cid, b.freeze()) for cid, b in self._conversations.items()],
                daily=[(day, b.freeze()) for day, b in self._daily.items()],
            )

    def clear(self) -> None:
        """Empty both mappings."""
        with self._lock:
            self._conversations.clear()
            self._daily.clear()

    def to_dict(self) -> dict:
        """JSON-ready form of all_stats()."""
        snapshot = self.all_stats()
        return {
            "total": asdict(snapshot.total),
            "conversations": [
                {"conversation_id": cid, **asdict(stats)}
                for cid, stats in snapshot.conversations
            ],
            "daily": [
                {"date": day, **asdict(stats)}
                for day, stats in snapshot.daily
            ],
        }
