"""
Tests for the CLI interface.
"""
import json
import os
import shutil
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from bmad_chat.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from bmad_chat.config.loader import API_KEY_ENV_VAR, load_config
from bmad_chat.core.errors import ProviderCredentialInvalid, ProviderNetworkError
from bmad_chat.core.ledger import UsageLedger, UsageRecord

runner = CliRunner()

SAGE_FILE = """# Sage - Market Research Agent

```yaml
agent: "sage"
name: "Sage"
role: "Market Researcher"
activation: "Ask me about any market."
```
"""


@pytest.fixture(autouse=True)
def fresh_ledger(monkeypatch):
    """Give every test its own process ledger."""
    monkeypatch.delenv(API_KEY_ENV_VAR, raising=False)
    ledger = UsageLedger()
    with patch('bmad_chat.cli.main.ledger', ledger):
        yield ledger


class TestCLI:
    """Test CLI commands."""

    def setup_method(self):
        """Set up a BMAD tree and a configuration file."""
        self.temp_dir = tempfile.mkdtemp()
        root = Path(self.temp_dir)
        agents = root / "bmad" / "expansion-packs" / "bmad-market-researcher" / "agents"
        agents.mkdir(parents=True)
        (agents / "sage.md").write_text(SAGE_FILE, encoding="utf-8")
        (agents / "analyst.md").write_text("# Analyst\n", encoding="utf-8")

        self.export_dir = root / "exports"
        self.config_path = str(root / ".bmadrc")
        self._write_config({
            "bmadPath": str(root / "bmad"),
            "enabledPacks": ["market-researcher"],
            "exportDir": str(self.export_dir),
        })

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, data):
        with open(self.config_path, 'w', encoding='utf-8') as f:
            yaml.dump(data, f)

    def _invoke(self, *args, **kwargs):
        return runner.invoke(app, ["--config", self.config_path, *args], **kwargs)

    def test_no_command(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_list_agents(self):
        result = self._invoke("list")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Available Agents:" in result.output
        assert "market-researcher:" in result.output
        assert "Sage" in result.output
        assert "Total agents: 2" in result.output

    def test_missing_config(self):
        result = runner.invoke(app, ["--config", os.path.join(self.temp_dir, "none"), "list"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "No configuration found." in result.output

    def test_invalid_config(self):
        self._write_config({"bmadPath": "/x", "enabledPacks": ["a"], "colour": "blue"})

        result = self._invoke("list")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration:" in result.output

    def test_missing_pack(self):
        self._write_config({"bmadPath": os.path.join(self.temp_dir, "bmad"), "enabledPacks": ["ghost"]})

        result = self._invoke("list")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Pack 'ghost' not found" in result.output

    def test_piped_chat(self):
        """End to end: one piped message is answered offline and saved."""
        result = self._invoke("chat", "sage", input="How big is the tea market?\n")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Ask me about any market." in result.output
        assert "Market Context" in result.output
        assert "Conversation saved to:" in result.output

        exports = list(self.export_dir.glob("sage-*.md"))
        assert len(exports) == 1
        text = exports[0].read_text(encoding="utf-8")
        assert "## You\n\nHow big is the tea market?" in text
        assert "Token Usage" not in text

    def test_piped_chat_by_name(self):
        result = self._invoke("chat", "SAGE", input="hello\n")
        assert result.exit_code == EXIT_CODE_PASS

    def test_chat_unknown_agent(self):
        result = self._invoke("chat", "ghost", input="hello\n")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Agent 'ghost' not found" in result.output

    def test_piped_chat_requires_agent(self):
        result = self._invoke("chat", input="hello\n")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Please specify an agent when using pipes" in result.output

    def test_chat_usage_out(self):
        stats_path = Path(self.temp_dir) / "usage.json"

        result = self._invoke("chat", "sage", "--usage-out", str(stats_path), input="hello\n")

        assert result.exit_code == EXIT_CODE_PASS
        data = json.loads(stats_path.read_text(encoding="utf-8"))
        assert data["total"]["total_tokens"] == 0

    def test_export_listing(self):
        result = self._invoke("export")
        assert "No conversations exported yet." in result.output

        self._invoke("chat", "sage", input="hello\n")
        result = self._invoke("export")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Exported Conversations:" in result.output
        assert "Total: 1 conversations" in result.output

    def test_export_single_file(self):
        self._invoke("chat", "sage", input="hello\n")
        name = next(self.export_dir.glob("sage-*.md")).name

        result = self._invoke("export", name)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Session already exported" in result.output
        assert "3 turns (1 from you)" in result.output

    def test_export_missing_file(self):
        result = self._invoke("export", "nope.md")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Session file not found: nope.md" in result.output

    def test_usage_empty(self):
        result = self._invoke("usage")

        assert result.exit_code == EXIT_CODE_PASS
        assert "No usage data available yet." in result.output

    def test_usage_report(self, fresh_ledger):
        fresh_ledger.record("1700000000000", UsageRecord(1000, 500, 1500, 0.06))

        result = self._invoke("usage", "--detailed")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Overall Statistics:" in result.output
        assert "Total Tokens: 1,500" in result.output
        assert "Daily Breakdown" in result.output
        assert "Recent Conversations" in result.output

    def test_usage_today(self, fresh_ledger):
        fresh_ledger.record("c1", UsageRecord(100, 50, 150, 0.01))

        result = self._invoke("usage", "--today")

        assert "Today's Usage:" in result.output
        assert "$0.0100" in result.output

    def test_usage_from_stats_file(self):
        ledger = UsageLedger()
        ledger.record("c1", UsageRecord(100, 50, 150, 0.01))
        stats_path = Path(self.temp_dir) / "stats.json"
        stats_path.write_text(json.dumps(ledger.to_dict()), encoding="utf-8")

        result = self._invoke("usage", "--stats-file", str(stats_path))

        assert result.exit_code == EXIT_CODE_PASS
        assert "Overall Statistics:" in result.output

    def test_usage_clear(self, fresh_ledger):
        fresh_ledger.record("c1", UsageRecord(100, 50, 150, 0.01))

        result = self._invoke("usage", "--clear")

        assert result.exit_code == EXIT_CODE_PASS
        assert fresh_ledger.all_stats().total.total_tokens == 0

    def test_usage_with_limits(self, fresh_ledger):
        self._write_config({
            "bmadPath": os.path.join(self.temp_dir, "bmad"),
            "enabledPacks": ["market-researcher"],
            "openai": {"costLimit": {"perConversation": 1.0, "daily": 0.05}},
        })
        fresh_ledger.record("c1", UsageRecord(1000, 500, 1500, 0.045))

        result = self._invoke("usage")

        assert "Cost Limits:" in result.output
        assert "Daily Limit: $0.05" in result.output
        assert "Approaching daily cost limit" in result.output

    def test_config_creates_file(self):
        config_path = os.path.join(self.temp_dir, "new", ".bmadrc")

        result = runner.invoke(app, [
            "--config", config_path, "config",
            "--bmad-path", "/opt/bmad",
            "--pack", "market-researcher",
            "--pack", "problem-solver",
            "--limit-conversation", "0.5",
        ])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Configuration saved to" in result.output
        config = load_config(config_path)
        assert config.enabled_packs == ("market-researcher", "problem-solver")
        assert config.cost_limit.per_conversation == 0.5
        assert config.live_enabled is False

    def test_config_updates_existing(self):
        result = self._invoke("config", "--no-auto-save", "--model", "gpt-4")

        assert result.exit_code == EXIT_CODE_PASS
        config = load_config(self.config_path)
        assert config.auto_save is False
        assert config.openai.model == "gpt-4"
        assert config.enabled_packs == ("market-researcher",)

    def test_config_rejects_openai_without_key(self):
        result = self._invoke("config", "--openai")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "no API key" in result.output

    def test_config_warns_on_unknown_model(self):
        result = self._invoke("config", "--model", "my-custom-model")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Unknown model" in result.output

    @patch('bmad_chat.cli.main.validate_api_key')
    def test_config_accepts_valid_key(self, mock_validate):
        mock_validate.return_value = None

        result = self._invoke("config", "--openai", "--api-key", "sk-good")

        assert result.exit_code == EXIT_CODE_PASS
        mock_validate.assert_called_once_with("sk-good")
        assert load_config(self.config_path).openai.api_key == "sk-good"

    @patch('bmad_chat.cli.main.validate_api_key')
    def test_config_rejects_invalid_key(self, mock_validate):
        """A key the backend refuses is not saved."""
        mock_validate.return_value = ProviderCredentialInvalid("Invalid OpenAI API key.")

        result = self._invoke("config", "--openai", "--api-key", "sk-bad")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "API key rejected" in result.output
        assert load_config(self.config_path).live_enabled is False

    @patch('bmad_chat.cli.main.validate_api_key')
    def test_config_saves_when_key_cannot_be_checked(self, mock_validate):
        mock_validate.return_value = ProviderNetworkError("Network error.")

        result = self._invoke("config", "--openai", "--api-key", "sk-maybe")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Could not verify API key" in result.output
        assert load_config(self.config_path).live_enabled is True
