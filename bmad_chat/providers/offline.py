"""
Offline completion provider.

Deterministic templated replies chosen by the agent's pack. Used when no
live backend is configured and as the fallback when the live one fails.
"""

from typing import Optional, Sequence

from ..core.catalog import AgentDefinition
from ..core.conversation import ConversationTurn, latest_user_text
from .base import Completion, CompletionProvider, StreamSink

OFFLINE_MODEL_ID = "offline"


def _problem_solver(agent: AgentDefinition, text: str) -> str:
    return f"""Let me analyze this systematically. {text} appears to be a complex challenge that requires understanding the underlying system dynamics.

I would approach this by:
1. **Identifying key components** - What are the main elements involved?
2. **Mapping relationships** - How do these components interact?
3. **Finding leverage points** - Where can we intervene most effectively?

Could you provide more context about the specific constraints or goals you're working with?"""


def _market_researcher(agent: AgentDefinition, text: str) -> str:
    return f"""Based on my analysis of "{text}", here are my initial observations:

**Market Context**: This appears to relate to market dynamics that require deeper investigation.

**Key Areas to Explore**:
- Target audience characteristics
- Competitive landscape
- Market size and growth potential

What specific market aspects would you like me to focus on?"""


def _product_manager(agent: AgentDefinition, text: str) -> str:
    return f"""From a product perspective, "{text}" raises important considerations:

**User Impact**: How does this affect our users' jobs-to-be-done?
**Strategic Alignment**: Does this align with our product vision?
**Prioritization**: Where does this fit in our roadmap?

Let's dig deeper into the user needs behind this request."""


def _generic(agent: AgentDefinition, text: str) -> str:
    return f"""I understand you're asking about "{text}". As {agent.display_name}, I bring expertise in {agent.role}. Let me think about this from that perspective and provide you with actionable insights.

What specific aspect would you like me to focus on?"""


# Checked in order against the pack name
PACK_TEMPLATES = (
    ("problem-solver", _problem_solver),
    ("market-researcher", _market_researcher),
    ("product-manager", _product_manager),
)


def offline_reply(agent: AgentDefinition, text: str) -> str:
    """Templated reply for an agent and the latest user text."""
    for keyword, template in PACK_TEMPLATES:
        if keyword in agent.pack_name:
            return template(agent, text)
    return _generic(agent, text)


class OfflineProvider(CompletionProvider):
    """Pure, side-effect-free provider for a single agent."""

    def __init__(self, agent: AgentDefinition):
        self.agent = agent

    @property
    def model_id(self) -> str:
        return OFFLINE_MODEL_ID

    def complete(
        self,
        system_prompt: str,
        history: Sequence[ConversationTurn],
        stream_sink: Optional[StreamSink] = None,
    ) -> Completion:
        return Completion(
            text=offline_reply(self.agent, latest_user_text(history)),
            usage=None,
            model_id=OFFLINE_MODEL_ID,
        )
