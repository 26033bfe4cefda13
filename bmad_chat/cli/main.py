"""
CLI interface for bmad-chat.

Chat with BMAD agent personas, list agents, browse exports and inspect
token usage.
"""

import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import IntPrompt

from bmad_chat.cli.report import render_usage_report
from bmad_chat.config.loader import (
    AppConfig,
    OpenAIConfig,
    default_config_path,
    load_config,
    save_config,
)
from bmad_chat.core.catalog import AgentDefinition, build_catalog, group_by_pack, require_agent
from bmad_chat.core.conversation import UserTurn
from bmad_chat.core.cost_policy import CostLimitConfig
from bmad_chat.core.errors import AgentNotFound, BmadChatError, ProviderCredentialInvalid
from bmad_chat.core.ledger import UsageLedger
from bmad_chat.core.pricing import available_models
from bmad_chat.core.session import ChatSession
from bmad_chat.providers import LiveProvider, OfflineProvider, validate_api_key
from bmad_chat.storage.export import MarkdownExporter, export_usage_stats, list_exports, load_conversation

app = typer.Typer(help="Chat with BMAD-METHOD agents from the command line.")
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

# Usage ledger for this process; every session started here records into it
ledger = UsageLedger()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def _load(ctx: typer.Context) -> AppConfig:
    """Load the configuration named on the command line, or exit."""
    path = ctx.obj.get("config_path") if ctx.obj else None
    try:
        return load_config(path)
    except FileNotFoundError:
        console.print("[yellow]No configuration found.[/]")
        console.print("Run `bmad-chat config --bmad-path PATH --pack NAME` to create one.")
        sys.exit(EXIT_CODE_FAIL)
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)


def _catalog(config: AppConfig) -> List[AgentDefinition]:
    try:
        return build_catalog(config)
    except BmadChatError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)


def _select_agent(catalog: List[AgentDefinition]) -> Optional[AgentDefinition]:
    """Numbered agent menu grouped by pack."""
    if not catalog:
        console.print("[red]No agents found. Please check your configuration.[/]")
        return None

    numbered = []
    for pack_name, agents in group_by_pack(catalog).items():
        console.print(f"[yellow]── {escape(pack_name)} ──[/]")
        for agent in agents:
            numbered.append(agent)
            console.print(f"  {len(numbered)}. {escape(agent.display_name)} [dim]- {escape(agent.role)}[/]")

    choice = IntPrompt.ask(
        "Select an agent",
        choices=[str(i) for i in range(1, len(numbered) + 1)],
        show_choices=False,
        console=console,
    )
    return numbered[choice - 1]


def _live_provider(config: AppConfig) -> Optional[LiveProvider]:
    if not config.live_enabled:
        return None
    return LiveProvider(
        api_key=config.openai.api_key,
        model=config.openai.model,
        max_tokens=config.openai.max_tokens,
        temperature=config.openai.temperature,
        stream_response=config.openai.stream_response,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Configuration file (defaults to ~/.bmadrc)"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging"
    ),
):
    """bmad-chat CLI."""
    _configure_logging(verbose)
    ctx.obj = {"config_path": config_path}
    if ctx.invoked_subcommand is None:
        console.print("bmad-chat - Use --help to see available commands")


@app.command()
def chat(
    ctx: typer.Context,
    agent_query: Optional[str] = typer.Argument(
        None,
        metavar="AGENT",
        help="Agent id, name or file name"
    ),
    usage_out: Optional[Path] = typer.Option(
        None,
        "--usage-out",
        help="Write usage statistics as JSON when the session ends"
    ),
):
    """Start a chat session with an agent."""
    config = _load(ctx)
    catalog = _catalog(config)
    piped = not sys.stdin.isatty()

    if agent_query:
        try:
            agent = require_agent(catalog, agent_query)
        except AgentNotFound as e:
            console.print(f"[red]{escape(str(e))}[/]")
            sys.exit(EXIT_CODE_FAIL)
    elif piped:
        console.print("[red]Please specify an agent when using pipes[/]")
        sys.exit(EXIT_CODE_FAIL)
    else:
        agent = _select_agent(catalog)
        if agent is None:
            sys.exit(EXIT_CODE_FAIL)

    try:
        live = _live_provider(config)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    session = ChatSession(
        agent=agent,
        ledger=ledger,
        offline_provider=OfflineProvider(agent),
        live_provider=live,
        cost_limit=config.cost_limit,
        exporter=MarkdownExporter(config.export_dir, config.openai.model if live else None),
        auto_save=config.auto_save,
        show_costs=config.openai.show_costs,
        console=console,
    )

    if piped:
        session.run_piped(sys.stdin.read())
    else:
        session.run_interactive(lambda: console.input("[blue]You:[/] "))
        console.print("\n[cyan]Goodbye![/]\n")

    if usage_out is not None:
        path = export_usage_stats(ledger, usage_out)
        console.print(f"[green]✓[/] Usage statistics exported to: {path}")


@app.command("list")
def list_agents(ctx: typer.Context):
    """List all available agents."""
    config = _load(ctx)
    catalog = _catalog(config)

    console.print("\n[bold cyan]Available Agents:[/]\n")
    for pack_name, agents in group_by_pack(catalog).items():
        console.print(f"[yellow]{escape(pack_name)}:[/]")
        for agent in agents:
            console.print(f"  • [green]{escape(agent.display_name)}[/] - {escape(agent.role)}")
            console.print(f"    ID: [dim]{escape(agent.id)}[/]")
        console.print()
    console.print(f"[dim]Total agents: {len(catalog)}[/]")


@app.command()
def export(
    ctx: typer.Context,
    session_file: Optional[str] = typer.Argument(
        None,
        help="Exported conversation file name"
    ),
):
    """List exported conversations, or summarize one."""
    config = _load(ctx)
    export_dir = Path(config.export_dir)

    if session_file:
        path = export_dir / session_file
        if not path.exists():
            console.print(f"[red]Session file not found: {escape(session_file)}[/]")
            sys.exit(EXIT_CODE_FAIL)
        turns = load_conversation(path)
        user_turns = sum(1 for turn in turns if isinstance(turn, UserTurn))
        console.print(f"[green]✓[/] Session already exported: {path}")
        console.print(f"  [dim]{len(turns)} turns ({user_turns} from you)[/]")
        return

    exports = list_exports(export_dir)
    if not exports:
        console.print("[yellow]No conversations exported yet.[/]")
        return

    console.print("\n[bold cyan]Exported Conversations:[/]\n")
    for info in exports:
        console.print(f"  [green]{escape(info.path.name)}[/]")
        console.print(
            f"    [dim]{info.modified.strftime('%Y-%m-%d %H:%M:%S')} • "
            f"{info.size_bytes / 1024:.1f} KB[/]"
        )
    console.print(f"\n[dim]Total: {len(exports)} conversations[/]")
    console.print(f"[dim]Location: {export_dir.resolve()}[/]")


@app.command()
def usage(
    ctx: typer.Context,
    today: bool = typer.Option(
        False,
        "--today",
        "-t",
        help="Show only today's usage"
    ),
    detailed: bool = typer.Option(
        False,
        "--detailed",
        "-d",
        help="Show detailed conversation breakdown"
    ),
    stats_file: Optional[Path] = typer.Option(
        None,
        "--stats-file",
        help="Report on statistics saved with `chat --usage-out`"
    ),
    export_path: Optional[Path] = typer.Option(
        None,
        "--export",
        help="Write the statistics as JSON"
    ),
    clear: bool = typer.Option(
        False,
        "--clear",
        help="Clear the usage statistics of this process"
    ),
):
    """Show token usage statistics."""
    config = _load(ctx)

    if clear:
        ledger.clear()
        console.print("[green]✓[/] Usage statistics cleared.")
        return

    if export_path is not None:
        path = export_usage_stats(ledger, export_path)
        console.print(f"[green]✓[/] Usage statistics exported to: {path}")
        return

    if stats_file is not None:
        try:
            stats = json.loads(stats_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            console.print(f"[red]Cannot read statistics file:[/] {escape(str(e))}")
            sys.exit(EXIT_CODE_FAIL)
    else:
        stats = ledger.to_dict()

    render_usage_report(
        console,
        stats,
        limits=config.cost_limit,
        today_only=today,
        detailed=detailed,
        export_dir=config.export_dir,
    )


@app.command("config")
def configure(
    ctx: typer.Context,
    bmad_path: Optional[str] = typer.Option(None, "--bmad-path", help="Path to the BMAD-METHOD folder"),
    packs: Optional[List[str]] = typer.Option(None, "--pack", "-p", help="Enabled expansion pack (repeatable)"),
    export_dir: Optional[str] = typer.Option(None, "--export-dir", help="Directory for exported conversations"),
    auto_save: Optional[bool] = typer.Option(None, "--auto-save/--no-auto-save", help="Save conversations on exit"),
    openai_enabled: Optional[bool] = typer.Option(None, "--openai/--no-openai", help="Use the OpenAI API"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="OpenAI API key"),
    model: Optional[str] = typer.Option(None, "--model", help="OpenAI model"),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens", help="Maximum tokens per reply"),
    temperature: Optional[float] = typer.Option(None, "--temperature", help="Sampling temperature"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream", help="Stream replies"),
    show_costs: Optional[bool] = typer.Option(None, "--show-costs/--hide-costs", help="Show cost after each reply"),
    limit_conversation: Optional[float] = typer.Option(None, "--limit-conversation", help="Per-conversation cost limit (USD)"),
    limit_daily: Optional[float] = typer.Option(None, "--limit-daily", help="Daily cost limit (USD), reported only"),
):
    """Create or update the configuration file."""
    path = ctx.obj.get("config_path") if ctx.obj else None
    config_path = Path(path) if path else default_config_path()

    existing = None
    if config_path.exists():
        try:
            existing = load_config(str(config_path))
        except (ValueError, yaml.YAMLError) as e:
            console.print(f"[yellow]Existing configuration is invalid and will be replaced:[/] {escape(str(e))}")

    try:
        openai_config = existing.openai if existing else OpenAIConfig()
        limit = openai_config.cost_limit or CostLimitConfig()
        if limit_conversation is not None or limit_daily is not None:
            limit = CostLimitConfig(
                per_conversation=limit_conversation if limit_conversation is not None else limit.per_conversation,
                daily=limit_daily if limit_daily is not None else limit.daily,
            )
        openai_config = replace(
            openai_config,
            enabled=openai_enabled if openai_enabled is not None else openai_config.enabled,
            api_key=api_key or openai_config.api_key,
            model=model or openai_config.model,
            max_tokens=max_tokens if max_tokens is not None else openai_config.max_tokens,
            temperature=temperature if temperature is not None else openai_config.temperature,
            stream_response=stream if stream is not None else openai_config.stream_response,
            show_costs=show_costs if show_costs is not None else openai_config.show_costs,
            cost_limit=limit if (limit.per_conversation is not None or limit.daily is not None) else None,
        )

        if existing:
            config = replace(
                existing,
                bmad_path=bmad_path or existing.bmad_path,
                enabled_packs=tuple(packs) if packs else existing.enabled_packs,
                export_dir=export_dir or existing.export_dir,
                auto_save=auto_save if auto_save is not None else existing.auto_save,
                openai=openai_config,
            )
        else:
            config = AppConfig(
                bmad_path=bmad_path or "",
                enabled_packs=tuple(packs or ()),
                export_dir=export_dir or "./exports",
                auto_save=auto_save if auto_save is not None else True,
                openai=openai_config,
            )
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    if config.openai.model not in available_models():
        console.print(
            f"[yellow]Unknown model '{escape(config.openai.model)}'; "
            f"costs will be estimated with default pricing[/]"
        )

    if api_key and config.openai.enabled:
        problem = validate_api_key(api_key)
        if isinstance(problem, ProviderCredentialInvalid):
            console.print(f"[red]API key rejected:[/] {escape(str(problem))}")
            sys.exit(EXIT_CODE_FAIL)
        if problem is not None:
            console.print(f"[yellow]Could not verify API key:[/] {escape(str(problem))}")

    written = save_config(config, str(config_path))
    console.print(f"[green]✓[/] Configuration saved to {written}")
    console.print(f"  BMAD Path: [dim]{escape(config.bmad_path)}[/]")
    console.print(f"  Enabled Packs: [dim]{escape(', '.join(config.enabled_packs))}[/]")
    console.print(f"  Export Directory: [dim]{escape(config.export_dir)}[/]")
    console.print(f"  Auto-save: [dim]{'Yes' if config.auto_save else 'No'}[/]")
    if config.openai.enabled:
        console.print(f"  Model: [dim]{escape(config.openai.model)}[/]")
        if config.openai.cost_limit:
            console.print(
                f"  Cost Limits: [dim]{config.openai.cost_limit.per_conversation}/conv, "
                f"{config.openai.cost_limit.daily}/day[/]"
            )


if __name__ == "__main__":
    app()
