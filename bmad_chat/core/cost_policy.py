"""
Spending limits for live completions.

Only the per-conversation limit blocks a call. The daily limit is tracked
and reported but never enforced before a call.
"""

from dataclasses import dataclass
from typing import Optional

from .ledger import DailyStats


# Share of the daily limit after which the usage report warns
DAILY_WARNING_THRESHOLD = 80.0


@dataclass(frozen=True)
class CostLimitConfig:
    """Configured spending limits in USD. None means unlimited."""
    per_conversation: Optional[float] = None
    daily: Optional[float] = None

    def __post_init__(self):
        """Validate limits are non-negative."""
        if self.per_conversation is not None and self.per_conversation < 0:
            raise ValueError("perConversation limit cannot be negative")
        if self.daily is not None and self.daily < 0:
            raise ValueError("daily limit cannot be negative")


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of a cost check."""
    allowed: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class DailyLimitStatus:
    """Today's spend measured against the daily limit."""
    limit: float
    spent: float
    remaining: float
    percent_used: float

    @property
    def approaching(self) -> bool:
        return self.percent_used > DAILY_WARNING_THRESHOLD


ALLOW = PolicyDecision(allowed=True)


def check_cost_limits(
    limits: Optional[CostLimitConfig],
    session_cost: float,
) -> PolicyDecision:
    """Decide whether a live completion may run.

    Args:
        limits: Configured limits, or None for unlimited
        session_cost: Cost accumulated by the conversation so far

    Returns:
        PolicyDecision; denied only when the conversation has already spent
        more than its per-conversation limit
    """
    if limits is None:
        return ALLOW

    if limits.per_conversation is not None and session_cost > limits.per_conversation:
        return PolicyDecision(
            allowed=False,
            reason=f"Conversation cost limit reached (${limits.per_conversation:.2f})"
        )

    return ALLOW


def daily_limit_status(
    limits: Optional[CostLimitConfig],
    today: Optional[DailyStats],
) -> Optional[DailyLimitStatus]:
    """Report today's spend against the daily limit, if one is configured."""
    if limits is None or not limits.daily:
        return None

    spent = today.total_cost if today else 0.0
    return DailyLimitStatus(
        limit=limits.daily,
        spent=spent,
        remaining=limits.daily - spent,
        percent_used=(spent / limits.daily) * 100,
    )
