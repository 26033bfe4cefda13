"""
Conversation turns.

A conversation is an ordered list of user and agent turns plus an id that
keys its usage in the ledger.
"""

import time
from dataclasses import dataclass, field
from typing import List, Sequence, Union


@dataclass(frozen=True)
class UserTurn:
    text: str


@dataclass(frozen=True)
class AgentTurn:
    agent_name: str
    text: str


ConversationTurn = Union[UserTurn, AgentTurn]


def latest_user_text(turns: Sequence[ConversationTurn]) -> str:
    """Text of the most recent user turn, or an empty string."""
    for turn in reversed(turns):
        if isinstance(turn, UserTurn):
            return turn.text
    return ""


def new_conversation_id() -> str:
    """Creation time in milliseconds."""
    return str(int(time.time() * 1000))


@dataclass
class Conversation:
    """Turns owned by a single chat session."""
    conversation_id: str = field(default_factory=new_conversation_id)
    turns: List[ConversationTurn] = field(default_factory=list)

    def append(self, turn: ConversationTurn) -> None:
        self.turns.append(turn)

    def __len__(self) -> int:
        return len(self.turns)
