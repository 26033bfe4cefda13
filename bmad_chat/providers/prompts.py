"""System prompt and chat message construction for live providers."""

from typing import Dict, List, Sequence

from ..core.catalog import AgentDefinition
from ..core.conversation import AgentTurn, ConversationTurn, UserTurn


def build_system_prompt(agent: AgentDefinition) -> str:
    """Persona prompt embedding the agent's full definition."""
    return f"""You are {agent.display_name}, {agent.role}.

{agent.source_text}

Important instructions:
- Maintain the personality and expertise described above
- Use the frameworks and methodologies mentioned when relevant
- Speak in first person as {agent.display_name}
- Be helpful, professional, and true to the character
- Apply your specialized knowledge to the user's questions"""


def build_messages(system_prompt: str, history: Sequence[ConversationTurn]) -> List[Dict[str, str]]:
    """Chat message list: system prompt, then every turn in order."""
    messages = [{"role": "system", "content": system_prompt}]
    for turn in history:
        if isinstance(turn, UserTurn):
            messages.append({"role": "user", "content": turn.text})
        elif isinstance(turn, AgentTurn):
            messages.append({"role": "assistant", "content": turn.text})
    return messages
