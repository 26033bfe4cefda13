"""
Flat-file persistence for conversations and usage statistics.

Conversations are written as self-contained markdown documents; usage
statistics as JSON.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Set, Union

from ..core.catalog import AgentDefinition
from ..core.conversation import AgentTurn, ConversationTurn, UserTurn
from ..core.ledger import ConversationStats, UsageLedger

FOOTER = "*Exported by bmad-chat*"
AGENT_HEADER = "**Agent**:"


@dataclass(frozen=True)
class ExportInfo:
    """An exported conversation file."""
    path: Path
    size_bytes: int
    modified: datetime


def conversation_to_markdown(
    turns: Sequence[ConversationTurn],
    agent: Optional[AgentDefinition],
    usage: Optional[ConversationStats] = None,
    model: Optional[str] = None,
    exported_at: Optional[datetime] = None,
) -> str:
    """Render a conversation with its metadata and optional usage summary."""
    exported_at = exported_at or datetime.now()
    lines = [f"# Chat Conversation with {agent.display_name if agent else 'Agent'}", ""]

    lines.append(f"**Date**: {exported_at.strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append(f"{AGENT_HEADER} {f'{agent.display_name} ({agent.role})' if agent else 'Unknown'}")
    lines.append(f"**Pack**: {agent.pack_name if agent else 'Unknown'}")
    if model:
        lines.append(f"**Model**: {model}")

    if usage:
        lines.extend([
            "",
            "**Token Usage**:",
            f"- Total Tokens: {usage.total_tokens:,}",
            f"- Prompt Tokens: {usage.prompt_tokens:,}",
            f"- Completion Tokens: {usage.completion_tokens:,}",
            f"- Total Cost: ${usage.total_cost:.4f}",
        ])

    lines.extend(["", "---", ""])

    for turn in turns:
        if isinstance(turn, UserTurn):
            lines.extend(["## You", "", turn.text, ""])
        elif isinstance(turn, AgentTurn):
            lines.extend([f"## {turn.agent_name or 'Agent'}", "", turn.text, ""])

    lines.extend(["---", "", FOOTER, ""])
    return "\n".join(lines)


class MarkdownExporter:
    """Writes conversations into an export directory.

    Instances are callable with ``(turns, agent, usage)`` and return the path
    written.
    """

    def __init__(self, export_dir: Union[str, Path], model: Optional[str] = None):
        self.export_dir = Path(export_dir)
        self.model = model

    def __call__(
        self,
        turns: Sequence[ConversationTurn],
        agent: Optional[AgentDefinition],
        usage: Optional[ConversationStats] = None,
        filename: Optional[str] = None,
    ) -> Path:
        self.export_dir.mkdir(parents=True, exist_ok=True)
        now = datetime.now()
        if not filename:
            stem = agent.id if agent else "chat"
            filename = f"{stem}-{now.strftime('%Y-%m-%dT%H-%M-%S')}.md"

        path = self.export_dir / filename
        path.write_text(
            conversation_to_markdown(turns, agent, usage, self.model, now),
            encoding="utf-8",
        )
        return path


def list_exports(export_dir: Union[str, Path]) -> List[ExportInfo]:
    """Exported conversations, newest file name first."""
    root = Path(export_dir)
    if not root.is_dir():
        return []
    infos = []
    for path in sorted(root.glob("*.md"), reverse=True):
        stat = path.stat()
        infos.append(ExportInfo(path, stat.st_size, datetime.fromtimestamp(stat.st_mtime)))
    return infos


def _speaker_from_header(value: str) -> str:
    """Agent display name from the ``**Agent**: Name (Role)`` header value."""
    if value == "Unknown":
        return "Agent"
    if value.endswith(")") and " (" in value:
        return value.rsplit(" (", 1)[0]
    return value


def load_conversation(path: Union[str, Path]) -> List[ConversationTurn]:
    """Read an exported markdown conversation back into turns.

    Only ``## You`` and ``## {agent}`` headings start a turn, so replies
    that contain their own level-two headings stay whole.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Conversation file not found: {path}")

    turns: List[ConversationTurn] = []
    speakers: Optional[Set[str]] = None
    speaker: Optional[str] = None
    body: List[str] = []

    def flush():
        if speaker is None:
            return
        text = "\n".join(body).strip()
        # the closing rule and footer belong to the document, not the turn
        if text.endswith(FOOTER):
            text = text[: -len(FOOTER)].rstrip()
        if text.endswith("---"):
            text = text[:-3].rstrip()
        if not text:
            return
        if speaker == "You":
            turns.append(UserTurn(text))
        else:
            turns.append(AgentTurn(speaker, text))

    for line in path.read_text(encoding="utf-8").splitlines():
        if speaker is None and line.startswith(AGENT_HEADER):
            speakers = {"You", _speaker_from_header(line[len(AGENT_HEADER):].strip())}
            continue
        if line.startswith("## ") and (speakers is None or line[3:].strip() in speakers):
            flush()
            speaker = line[3:].strip()
            body = []
        elif speaker is not None:
            body.append(line)
    flush()

    return turns


def export_usage_stats(ledger: UsageLedger, path: Union[str, Path]) -> Path:
    """Write the ledger's full statistics as JSON."""
    path = Path(path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(ledger.to_dict(), f, indent=2)
    return path
