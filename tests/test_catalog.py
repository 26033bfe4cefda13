"""
Unit tests for the agent catalog.

Tests agent file parsing, the defaulting chain, lookup precedence and
catalog discovery.
"""

import os
import shutil
import tempfile
from pathlib import Path
from types import SimpleNamespace

import pytest

from bmad_chat.core.catalog import (
    DEFAULT_ROLE,
    AgentDefinition,
    ParseOutcome,
    build_catalog,
    find_agent,
    get_greeting,
    group_by_pack,
    parse_agent_file,
    require_agent,
    scan_metadata_block,
)
from bmad_chat.core.errors import AgentNotFound, CatalogMissing


SAGE_FILE = """# Sage - Market Research Agent

```yaml
agent: "sage"
name: "Sage"
role: "Market Researcher"
activation: "Ask me about any market."
```

## Persona

Curious, methodical and data-driven.

## Example Interaction

```
You: Can you help me size a market?
Agent: "Absolutely. Let's start with who the buyers are."
```
"""


class TestParseAgentFile:
    """Test parsing of a single agent document."""

    def test_metadata_block_fields(self):
        """Fields come from the fenced metadata block."""
        result = parse_agent_file(SAGE_FILE, "market-researcher", "sage-agent.md")
        agent = result.agent

        assert result.outcome == ParseOutcome.FOUND
        assert agent.id == "sage"
        assert agent.display_name == "Sage"
        assert agent.role == "Market Researcher"
        assert agent.activation_hint == "Ask me about any market."
        assert agent.pack_name == "market-researcher"
        assert agent.filename == "sage-agent"
        assert agent.source_text == SAGE_FILE

    def test_persona_section_captured(self):
        """Persona text runs to the next heading and is trimmed."""
        agent = parse_agent_file(SAGE_FILE, "pack", "sage.md").agent
        assert agent.persona == "Curious, methodical and data-driven."

    def test_persona_heading_must_match_exactly(self):
        """Longer headings that start with the same word are other sections."""
        text = "# Nova\n\n## Personality Traits\n\nBold.\n\n## Persona \n\nCalm.\n"
        assert parse_agent_file(text, "pack", "nova.md").agent.persona == "Calm."

        only_traits = "# Nova\n\n## Personality Traits\n\nBold.\n"
        assert parse_agent_file(only_traits, "pack", "nova.md").agent.persona is None

    def test_non_string_agent_field_falls_back_to_stem(self):
        """Object or number ids are never coerced."""
        text = "```yaml\nagent:\n  name: Nested\n  id: nested\nname: Nested Agent\n```\n"
        result = parse_agent_file(text, "pack", "nested-file.md")

        assert result.agent.id == "nested-file"
        assert result.agent.display_name == "Nested Agent"
        assert result.outcome == ParseOutcome.DEFAULTED
        assert result.reason == "agent field is not a string"

    def test_numeric_agent_field_falls_back_to_stem(self):
        text = "```yaml\nagent: 42\n```\n"
        assert parse_agent_file(text, "pack", "answer.md").agent.id == "answer"

    def test_name_defaults_to_title_then_stem(self):
        """Missing name uses the title, missing title uses the stem."""
        with_title = "# The Analyst\n```yaml\nagent: analyst\n```\n"
        without_title = "```yaml\nagent: analyst\n```\n"

        assert parse_agent_file(with_title, "pack", "a.md").agent.display_name == "The Analyst"
        assert parse_agent_file(without_title, "pack", "a.md").agent.display_name == "a"

    def test_role_and_activation_defaults(self):
        text = "```yaml\nagent: bare\n```\n"
        agent = parse_agent_file(text, "pack", "bare.md").agent

        assert agent.role == DEFAULT_ROLE
        assert agent.activation_hint == ""

    def test_no_metadata_block(self):
        """Without a block only title and stem are used."""
        result = parse_agent_file("# Planner\n\nSome text.\n", "pack", "planner.md")

        assert result.outcome == ParseOutcome.DEFAULTED
        assert result.reason == "no metadata block"
        assert result.agent.id == "planner"
        assert result.agent.display_name == "Planner"
        assert result.agent.role == DEFAULT_ROLE

    def test_invalid_yaml_defaults(self):
        """Unparseable metadata falls back to title and stem."""
        text = "# Broken\n```yaml\nagent: [unclosed\nname: x\n```\n"
        result = parse_agent_file(text, "pack", "broken.md")

        assert result.outcome == ParseOutcome.DEFAULTED
        assert result.reason.startswith("invalid metadata block")
        assert result.agent.id == "broken"
        assert result.agent.display_name == "Broken"

    def test_scalar_metadata_defaults(self):
        """A block that is not a mapping is not interpreted."""
        result = parse_agent_file("```yaml\njust a string\n```\n", "pack", "s.md")
        assert result.outcome == ParseOutcome.DEFAULTED
        assert result.reason == "metadata block is not a mapping"

    def test_empty_file(self):
        """An empty document still yields a record."""
        result = parse_agent_file("", "pack", "empty.md")
        assert result.agent.id == "empty"
        assert result.agent.display_name == "empty"
        assert result.agent.persona is None

    def test_first_title_wins(self):
        text = "# First\n## Sub\n# Second\n"
        assert parse_agent_file(text, "pack", "t.md").agent.display_name == "First"

    def test_parse_is_idempotent(self):
        first = parse_agent_file(SAGE_FILE, "pack", "sage.md")
        second = parse_agent_file(SAGE_FILE, "pack", "sage.md")
        assert first == second


class TestScanner:
    """Test the metadata block scanner."""

    def test_block_closed_by_next_fence(self):
        lines = ["intro", "```yaml", "a: 1", "b: 2", "```", "```yaml", "c: 3", "```"]
        assert scan_metadata_block(lines) == "a: 1\nb: 2\n"

    def test_unterminated_block_runs_to_end(self):
        assert scan_metadata_block(["```yaml", "a: 1"]) == "a: 1\n"

    def test_no_block(self):
        assert scan_metadata_block(["```", "a: 1", "```"]) is None


class TestGreeting:
    """Test greeting extraction and synthesis."""

    def test_example_interaction_quote(self):
        agent = parse_agent_file(SAGE_FILE, "pack", "sage.md").agent
        assert get_greeting(agent) == "Absolutely. Let's start with who the buyers are."

    def test_synthesized_greeting_with_activation(self):
        text = "```yaml\nname: Nova\nrole: Strategist\nactivation: Tell me your goal.\n```\n"
        agent = parse_agent_file(text, "pack", "nova.md").agent
        assert get_greeting(agent) == "Hello! I'm Nova, your Strategist. Tell me your goal."

    def test_synthesized_greeting_default_prompt(self):
        agent = parse_agent_file("# Nova\n", "pack", "nova.md").agent
        assert get_greeting(agent) == "Hello! I'm Nova, your Specialist. How can I help you today?"


def _agent(agent_id, name, filename=None, pack="pack"):
    return AgentDefinition(
        id=agent_id,
        display_name=name,
        role="Specialist",
        activation_hint="",
        source_text="",
        pack_name=pack,
        filename=filename or agent_id,
    )


class TestFindAgent:
    """Test lookup precedence."""

    def test_exact_id_beats_name_match(self):
        by_name = _agent("other", "sage helper")
        by_id = _agent("sage", "Someone")
        assert find_agent([by_name, by_id], "sage") is by_id

    def test_case_insensitive_name_substring(self):
        agent = _agent("x1", "Market Sage")
        assert find_agent([agent], "sAGE") is agent

    def test_filename_match(self):
        agent = _agent("x1", "Analyst", filename="analyst-agent")
        assert find_agent([agent], "analyst-agent") is agent

    def test_first_match_in_order_wins(self):
        first = _agent("dup", "A", pack="one")
        second = _agent("dup", "B", pack="two")
        assert find_agent([first, second], "dup") is first

    def test_not_found(self):
        assert find_agent([_agent("a", "A")], "zzz") is None
        with pytest.raises(AgentNotFound, match="Agent 'zzz' not found"):
            require_agent([_agent("a", "A")], "zzz")


class TestBuildCatalog:
    """Test catalog discovery on disk."""

    def setup_method(self):
        """Set up a BMAD tree."""
        self.temp_dir = tempfile.mkdtemp()
        self.bmad = Path(self.temp_dir)
        self.agents_dir = self.bmad / "expansion-packs" / "bmad-market-researcher" / "agents"
        self.agents_dir.mkdir(parents=True)
        (self.agents_dir / "sage.md").write_text(SAGE_FILE, encoding="utf-8")
        (self.agents_dir / "analyst.md").write_text("# Analyst\n", encoding="utf-8")
        (self.agents_dir / "notes.txt").write_text("ignored", encoding="utf-8")

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _config(self, packs):
        return SimpleNamespace(bmad_path=str(self.bmad), enabled_packs=packs)

    def test_build_and_find(self):
        """End to end: metadata agent is found by id and by name."""
        catalog = build_catalog(self._config(["market-researcher"]))

        assert [a.id for a in catalog] == ["analyst", "sage"]
        assert find_agent(catalog, "sage").role == "Market Researcher"
        assert find_agent(catalog, "Sage").id == "sage"

    def test_missing_packs_root_is_fatal(self):
        with pytest.raises(CatalogMissing):
            build_catalog(SimpleNamespace(bmad_path=os.path.join(self.temp_dir, "nope"), enabled_packs=["x"]))

    def test_missing_enabled_pack_is_fatal(self):
        with pytest.raises(CatalogMissing, match="Pack 'ghost' not found"):
            build_catalog(self._config(["market-researcher", "ghost"]))

    def test_pack_without_agents_dir(self):
        (self.bmad / "expansion-packs" / "bmad-empty").mkdir()
        catalog = build_catalog(self._config(["empty"]))
        assert catalog == []

    def test_unreadable_file_yields_minimal_record(self, caplog):
        """A non-UTF-8 file is logged and replaced by a filename record."""
        (self.agents_dir / "binary.md").write_bytes(b"\xff\xfe\x00bad")
        catalog = build_catalog(self._config(["market-researcher"]))

        binary = find_agent(catalog, "binary")
        assert binary is not None
        assert binary.display_name == "binary"
        assert binary.role == DEFAULT_ROLE
        assert "Malformed agent file binary.md" in caplog.text

    def test_group_by_pack_preserves_order(self):
        other = self.bmad / "expansion-packs" / "bmad-problem-solver" / "agents"
        other.mkdir(parents=True)
        (other / "solver.md").write_text("# Solver\n", encoding="utf-8")

        catalog = build_catalog(self._config(["problem-solver", "market-researcher"]))
        groups = group_by_pack(catalog)

        assert list(groups) == ["problem-solver", "market-researcher"]
        assert [a.id for a in groups["market-researcher"]] == ["analyst", "sage"]
