"""
Chat session orchestration.

A ChatSession owns one conversation with one agent and drives each turn
through the cost check, the completion provider and the usage ledger.

States:
    SELECTING_AGENT -> GREETING -> AWAITING_INPUT
    -> (PROCESSING -> AWAITING_INPUT)* -> TERMINATED

Failures of the live provider never end the session: the turn is retried
against the offline provider and only one agent turn is appended.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape

from .catalog import AgentDefinition, get_greeting
from .conversation import AgentTurn, Conversation, UserTurn
from .cost_policy import CostLimitConfig, check_cost_limits
from .errors import InvalidUsage, ProviderError, ProviderErrorKind
from .ledger import UsageLedger, UsageRecord
from .pricing import calculate_cost
from ..providers.prompts import build_system_prompt

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "/"

HELP_TEXT = """Available commands:
  /exit, /quit  - Exit the chat
  /export       - Export conversation to markdown
  /usage        - Show token usage for this conversation
  /clear        - Clear the screen
  /help         - Show this help message"""


class SessionState(Enum):
    SELECTING_AGENT = "selecting_agent"
    GREETING = "greeting"
    AWAITING_INPUT = "awaiting_input"
    PROCESSING = "processing"
    TERMINATED = "terminated"


class ResponseSource(Enum):
    """Which path produced an agent turn."""
    LIVE = "live"
    OFFLINE = "offline"
    FALLBACK = "fallback"  # live provider failed, offline answered
    REFUSED = "refused"    # cost limit denied the live call


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one processing step."""
    turn: AgentTurn
    source: ResponseSource
    usage: Optional[UsageRecord] = None
    fallback_kind: Optional[ProviderErrorKind] = None
    streamed: bool = False


def format_cost_line(usage: UsageRecord, session_total: float) -> str:
    line = (
        f"[cyan]Tokens:[/] {usage.total_tokens:,} "
        f"[dim](prompt: {usage.prompt_tokens:,} + response: {usage.completion_tokens:,})[/]\n"
        f"[cyan]Cost:[/] [yellow]${usage.total_cost:.4f}[/]"
    )
    if session_total > 0:
        line += f" [dim](Session total: ${session_total:.4f})[/]"
    return line


class ChatSession:
    """One conversation between the user and an agent."""

    def __init__(
        self,
        agent: AgentDefinition,
        ledger: UsageLedger,
        offline_provider,
        live_provider=None,
        cost_limit: Optional[CostLimitConfig] = None,
        exporter: Optional[Callable] = None,
        auto_save: bool = True,
        show_costs: bool = True,
        console: Optional[Console] = None,
        conversation: Optional[Conversation] = None,
    ):
        """Create a session for an already selected agent.

        Args:
            agent: Persona backing the conversation
            ledger: Usage ledger shared with other sessions
            offline_provider: Deterministic provider, also the fallback
            live_provider: Optional live provider; None means offline only
            cost_limit: Spending limits checked before live calls
            exporter: Callable ``(turns, agent, usage) -> Path``
            auto_save: Export the conversation on termination
            show_costs: Print token and cost lines after live replies
            console: Output console
            conversation: Pre-built conversation, mainly for tests
        """
        self.agent = agent
        self.ledger = ledger
        self.offline = offline_provider
        self.live = live_provider
        self.cost_limit = cost_limit
        self.exporter = exporter
        self.auto_save = auto_save
        self.show_costs = show_costs
        self.console = console or Console()
        self.conversation = conversation or Conversation()
        self.session_cost = 0.0
        self.state = SessionState.SELECTING_AGENT
        self._system_prompt: Optional[str] = None

    @property
    def conversation_id(self) -> str:
        return self.conversation.conversation_id

    @property
    def turns(self):
        return self.conversation.turns

    @property
    def system_prompt(self) -> str:
        if self._system_prompt is None:
            self._system_prompt = build_system_prompt(self.agent)
        return self._system_prompt

    def _print_header(self) -> None:
        self.console.rule(f"[bold cyan]Chat with {escape(self.agent.display_name)}")
        self.console.print(f"[dim]Role: {escape(self.agent.role)}[/]")
        if self.live is not None:
            self.console.print(f"[dim]Model: {self.live.model_id}[/]")
        self.console.rule()

    def start(self) -> None:
        """Greet the user; the greeting becomes the first agent turn."""
        if self.state != SessionState.SELECTING_AGENT:
            return
        self.state = SessionState.GREETING
        self._print_header()
        greeting = get_greeting(self.agent)
        self.conversation.append(AgentTurn(self.agent.display_name, greeting))
        self.console.print(f"[green]{escape(self.agent.display_name)}:[/]")
        self.console.print(Markdown(greeting))
        self.state = SessionState.AWAITING_INPUT

    def process(self, text: str) -> TurnResult:
        """Run one processing step for a line of user text."""
        if self.state == SessionState.TERMINATED:
            raise RuntimeError("session is terminated")
        self.state = SessionState.PROCESSING
        try:
            self.conversation.append(UserTurn(text))
            result = self._respond()
            self.conversation.append(result.turn)
        finally:
            self.state = SessionState.AWAITING_INPUT
        return result

    def _stream_sink(self):
        started = []

        def sink(chunk: str) -> None:
            if not started:
                self.console.print(f"[green]{escape(self.agent.display_name)}:[/] ", end="")
                started.append(True)
            self.console.print(chunk, end="", markup=False, highlight=False)

        return sink, started

    def _respond(self) -> TurnResult:
        name = self.agent.display_name

        if self.live is None:
            completion = self.offline.complete(self.system_prompt, self.turns)
            return TurnResult(AgentTurn(name, completion.text), ResponseSource.OFFLINE)

        decision = check_cost_limits(self.cost_limit, self.session_cost)
        if not decision.allowed:
            logger.info("Live call refused: %s", decision.reason)
            text = f"I apologize, but I cannot continue this conversation. {decision.reason}"
            return TurnResult(AgentTurn(name, text), ResponseSource.REFUSED)

        sink, started = self._stream_sink()
        try:
            streaming = getattr(self.live, "stream_response", False)
            status = nullcontext() if streaming else self.console.status("Thinking...", spinner="dots")
            with status:
                completion = self.live.complete(self.system_prompt, self.turns, sink)
        except ProviderError as e:
            if started:
                self.console.print()
            logger.warning("Live provider failed (%s): %s", e.kind.value, e)
            self.console.print(f"[red]{escape(str(e))}[/]")
            self.console.print("[yellow]Falling back to offline response...[/]")
            completion = self.offline.complete(self.system_prompt, self.turns)
            return TurnResult(
                AgentTurn(name, completion.text),
                ResponseSource.FALLBACK,
                fallback_kind=e.kind,
            )

        if started:
            self.console.print()

        record = None
        if completion.usage is not None:
            record = calculate_cost(completion.usage, completion.model_id)
            try:
                self.ledger.record(self.conversation_id, record)
            except InvalidUsage as e:
                logger.warning("Usage not recorded for %s: %s", self.conversation_id, e)
                record = None
            else:
                self.session_cost += record.total_cost

        return TurnResult(
            AgentTurn(name, completion.text),
            ResponseSource.LIVE,
            usage=record,
            streamed=bool(started),
        )

    def _show_result(self, result: TurnResult) -> None:
        if not result.streamed:
            self.console.print()
            self.console.print(f"[green]{escape(result.turn.agent_name)}:[/]")
            self.console.print(Markdown(result.turn.text))
        if result.usage is not None and self.show_costs:
            self.console.rule(style="dim")
            self.console.print(format_cost_line(result.usage, self.session_cost))
            self.console.rule(style="dim")
        self.console.print()

    def export(self) -> Optional[Path]:
        """Hand the conversation to the exporter now."""
        if self.exporter is None:
            return None
        usage = self.ledger.conversation_stats(self.conversation_id) if self.live is not None else None
        return self.exporter(list(self.turns), self.agent, usage)

    def handle_command(self, line: str) -> bool:
        """Run a slash command. Returns False when the session should end."""
        command = line.strip().lower()

        if command in ("/exit", "/quit"):
            return False

        if command == "/export":
            path = self.export()
            if path is None:
                self.console.print("[yellow]Export is not available in this session[/]")
            else:
                self.console.print(f"[green]✓[/] Conversation exported to: {path}")
        elif command == "/clear":
            self.console.clear()
            self._print_header()
        elif command == "/help":
            self.console.print(f"\n[yellow]{HELP_TEXT}[/]\n")
        elif command == "/usage":
            stats = self.ledger.conversation_stats(self.conversation_id)
            if stats is None:
                self.console.print("[dim]No usage recorded for this conversation.[/]")
            else:
                self.console.print(
                    f"[cyan]Messages:[/] {stats.messages}  "
                    f"[cyan]Tokens:[/] {stats.total_tokens:,}  "
                    f"[cyan]Cost:[/] [yellow]${stats.total_cost:.4f}[/]"
                )
        else:
            self.console.print(f"[red]Unknown command: {escape(command)}[/]")
            self.console.print("[dim]Type /help for available commands[/]")
        return True

    def run_interactive(self, read_line: Callable[[], str]) -> Optional[Path]:
        """Read and answer lines until /exit, end of input or Ctrl-C.

        Returns:
            Path of the auto-saved export, if one was written
        """
        self.start()
        try:
            while True:
                try:
                    line = read_line()
                except EOFError:
                    break
                line = line.strip()
                if not line:
                    continue
                if line.startswith(COMMAND_PREFIX):
                    if not self.handle_command(line):
                        break
                    continue
                self._show_result(self.process(line))
        except KeyboardInterrupt:
            self.console.print()
        return self.terminate()

    def run_piped(self, text: str) -> Optional[Path]:
        """Answer a single piped message, then terminate."""
        self.start()
        text = text.strip()
        if text:
            self._show_result(self.process(text))
        return self.terminate()

    def terminate(self) -> Optional[Path]:
        """End the session, auto-saving when there was an exchange."""
        if self.state == SessionState.TERMINATED:
            return None
        self.state = SessionState.TERMINATED

        path = None
        if self.auto_save and len(self.conversation) > 2 and self.exporter is not None:
            path = self.export()
            self.console.print(f"[dim]Conversation saved to: {path}[/]")
        return path

