"""
Agent catalog.

Discovers agent definition files in enabled expansion packs and parses each
semi-structured markdown document into an AgentDefinition.

Parsing never fails for a single file. Which branch of the defaulting chain
produced a record is reported through ParseResult so callers and tests can
tell a parsed record from a defaulted one.
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from .errors import AgentFileMalformed, AgentNotFound, CatalogMissing

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "Specialist"
DEFAULT_ACTIVATION_PROMPT = "How can I help you today?"

PACKS_DIRNAME = "expansion-packs"
PACK_PREFIX = "bmad-"
AGENTS_DIRNAME = "agents"

YAML_FENCE = "```yaml"
FENCE = "```"

_QUOTED_AGENT_LINE = re.compile(r'Agent:\s*"([^"]+)"')


@dataclass(frozen=True)
class AgentDefinition:
    """A persona parsed from an agent markdown file."""
    id: str
    display_name: str
    role: str
    activation_hint: str
    source_text: str
    pack_name: str
    filename: str  # file stem, without the .md extension
    persona: Optional[str] = None


class ParseOutcome(Enum):
    """Which branch of the defaulting chain produced a record."""
    FOUND = "found"          # metadata block interpreted
    DEFAULTED = "defaulted"  # fell back to title / filename defaults
    FAILED = "failed"        # file unreadable, minimal record emitted


@dataclass(frozen=True)
class ParseResult:
    agent: AgentDefinition
    outcome: ParseOutcome
    reason: Optional[str] = None


class ScanState(Enum):
    """States of the metadata block scanner."""
    SEARCHING = "searching"
    IN_METADATA_BLOCK = "in_metadata_block"
    DONE = "done"


def scan_metadata_block(lines: List[str]) -> Optional[str]:
    """Return the interior of the first ```yaml fenced block, if any.

    An unterminated block runs to the end of the document.
    """
    state = ScanState.SEARCHING
    collected: List[str] = []

    for line in lines:
        if state == ScanState.SEARCHING:
            if YAML_FENCE in line:
                state = ScanState.IN_METADATA_BLOCK
        elif state == ScanState.IN_METADATA_BLOCK:
            if FENCE in line:
                state = ScanState.DONE
                break
            collected.append(line)

    if state == ScanState.SEARCHING:
        return None
    return "\n".join(collected) + "\n" if collected else ""


def scan_title(lines: List[str]) -> Optional[str]:
    """Return the text of the first level-one heading."""
    for line in lines:
        if line.startswith("# "):
            return line[2:].strip()
    return None


def scan_section(lines: List[str], heading: str) -> Optional[str]:
    """Return the trimmed body of a section, up to the next heading line."""
    body: Optional[List[str]] = None
    for line in lines:
        if body is None:
            if line.rstrip() == heading:
                body = []
        elif line.startswith("#"):
            break
        else:
            body.append(line)

    if body is None:
        return None
    return "\n".join(body).strip()


def _string_field(metadata: dict, key: str) -> Optional[str]:
    value = metadata.get(key)
    if isinstance(value, str) and value:
        return value
    return None


def _interpret_metadata(text: str) -> Tuple[Optional[dict], Optional[str]]:
    """Load metadata text as a mapping; return (mapping, failure reason)."""
    try:
        metadata = yaml.safe_load(text)
    except yaml.YAMLError as e:
        return None, f"invalid metadata block: {e}"
    if not isinstance(metadata, dict):
        return None, "metadata block is not a mapping"
    return metadata, None


def parse_agent_file(raw_text: str, pack_name: str, filename: str) -> ParseResult:
    """Parse one agent markdown document.

    Args:
        raw_text: Document contents
        pack_name: Name of the pack the file belongs to
        filename: File name, with or without the .md extension

    Returns:
        ParseResult carrying the record and the branch that produced it
    """
    stem = filename[:-3] if filename.endswith(".md") else filename
    lines = raw_text.splitlines()

    metadata_text = scan_metadata_block(lines)
    title = scan_title(lines)
    persona = scan_section(lines, "## Persona")

    metadata = None
    reason = None
    if metadata_text is None:
        reason = "no metadata block"
    else:
        metadata, reason = _interpret_metadata(metadata_text)

    if metadata is not None:
        agent_field = metadata.get("agent")
        agent = AgentDefinition(
            id=agent_field if isinstance(agent_field, str) else stem,
            display_name=_string_field(metadata, "name") or title or stem,
            role=_string_field(metadata, "role") or DEFAULT_ROLE,
            activation_hint=_string_field(metadata, "activation") or "",
            source_text=raw_text,
            pack_name=pack_name,
            filename=stem,
            persona=persona,
        )
        if "agent" in metadata and not isinstance(agent_field, str):
            return ParseResult(agent, ParseOutcome.DEFAULTED, "agent field is not a string")
        return ParseResult(agent, ParseOutcome.FOUND)

    agent = AgentDefinition(
        id=stem,
        display_name=title or stem,
        role=DEFAULT_ROLE,
        activation_hint="",
        source_text=raw_text,
        pack_name=pack_name,
        filename=stem,
        persona=persona,
    )
    return ParseResult(agent, ParseOutcome.DEFAULTED, reason)


def minimal_agent(pack_name: str, filename: str) -> AgentDefinition:
    """Record built from the filename alone, for unreadable files."""
    stem = filename[:-3] if filename.endswith(".md") else filename
    return AgentDefinition(
        id=stem,
        display_name=stem,
        role=DEFAULT_ROLE,
        activation_hint="",
        source_text="",
        pack_name=pack_name,
        filename=stem,
    )


def load_agent_file(path: Path, pack_name: str) -> ParseResult:
    """Read and parse an agent file, degrading to a minimal record."""
    try:
        raw_text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        error = AgentFileMalformed(path.name, str(e))
        logger.warning("%s", error)
        return ParseResult(minimal_agent(pack_name, path.name), ParseOutcome.FAILED, str(e))

    result = parse_agent_file(raw_text, pack_name, path.name)
    if result.outcome == ParseOutcome.DEFAULTED and result.reason != "no metadata block":
        logger.warning("%s", AgentFileMalformed(path.name, result.reason))
    return result


def pack_path(bmad_path: Path, pack_name: str) -> Path:
    return bmad_path / PACKS_DIRNAME / f"{PACK_PREFIX}{pack_name}"


def build_catalog(config) -> List[AgentDefinition]:
    """Build the agent catalog for the enabled packs.

    Args:
        config: Object exposing ``bmad_path`` and ``enabled_packs``

    Returns:
        Agents in pack order, then file-name order within each pack

    Raises:
        CatalogMissing: If the expansion-pack root or an enabled pack
            directory does not exist
    """
    bmad_path = Path(config.bmad_path).expanduser().resolve()
    packs_root = bmad_path / PACKS_DIRNAME
    if not packs_root.is_dir():
        raise CatalogMissing(f"BMAD expansion packs not found at: {packs_root}")

    agents: List[AgentDefinition] = []
    for pack_name in config.enabled_packs:
        root = pack_path(bmad_path, pack_name)
        if not root.is_dir():
            raise CatalogMissing(f"Pack '{pack_name}' not found at: {root}")

        agents_dir = root / AGENTS_DIRNAME
        if not agents_dir.is_dir():
            logger.warning("Pack '%s' has no %s directory", pack_name, AGENTS_DIRNAME)
            continue

        for path in sorted(agents_dir.glob("*.md")):
            result = load_agent_file(path, pack_name)
            logger.debug("Loaded agent %s from %s (%s)", result.agent.id, path, result.outcome.value)
            agents.append(result.agent)

    return agents


def find_agent(catalog: List[AgentDefinition], query: str) -> Optional[AgentDefinition]:
    """Resolve a query to an agent.

    Precedence: exact id, then case-insensitive substring of the display
    name, then exact filename stem. First match in catalog order wins.
    """
    for agent in catalog:
        if agent.id == query:
            return agent

    needle = query.lower()
    for agent in catalog:
        if needle in agent.display_name.lower():
            return agent

    for agent in catalog:
        if agent.filename == query:
            return agent

    return None


def require_agent(catalog: List[AgentDefinition], query: str) -> AgentDefinition:
    """Like find_agent, but raises AgentNotFound."""
    agent = find_agent(catalog, query)
    if agent is None:
        raise AgentNotFound(query)
    return agent


def group_by_pack(catalog: List[AgentDefinition]) -> Dict[str, List[AgentDefinition]]:
    """Group agents by pack, preserving catalog order."""
    groups: Dict[str, List[AgentDefinition]] = OrderedDict()
    for agent in catalog:
        groups.setdefault(agent.pack_name, []).append(agent)
    return groups


def extract_example_greeting(source_text: str) -> Optional[str]:
    """Find the quoted agent reply in the Example Interaction section."""
    lines = source_text.splitlines()
    in_section = False
    seen_user = False
    for line in lines:
        if not in_section:
            if line.startswith("## Example Interaction"):
                in_section = True
            continue
        if line.startswith("## "):
            break
        if "You:" in line:
            seen_user = True
        if seen_user:
            match = _QUOTED_AGENT_LINE.search(line)
            if match:
                return match.group(1)
    return None


def get_greeting(agent: AgentDefinition) -> str:
    """Opening line for a chat with the agent."""
    example = extract_example_greeting(agent.source_text)
    if example:
        return example
    activation = agent.activation_hint or DEFAULT_ACTIVATION_PROMPT
    return f"Hello! I'm {agent.display_name}, your {agent.role}. {activation}"
