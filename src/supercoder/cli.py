"""Command-line entry point: argument parsing and the interactive REPL."""

import argparse
import asyncio
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from rich.console import Console
from rich.panel import Panel

from . import __version__
from .agent import AgentLoop, TurnState
from .backend import OpenAIChatBackend
from .config import AppConfig
from .output import ConsoleOutput
from .prompts import get_system_prompt
from .tools import create_default_registry
from .logger import init_logging, get_logger

log = get_logger("cli")

HELP_TEXT = """Commands:
  /help   Show this help
  /clear  Start a new conversation
  /exit   Quit (also /quit or Ctrl+D)

Press Ctrl+C or Escape while the assistant is answering to stop it.
Escape+Enter inserts a newline."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="supercoder", description="SuperCoder coding assistant")
    parser.add_argument("-c", "--use-cursor-rules", choices=["true", "false"],
                        help="use Cursor rules for the agent")
    parser.add_argument("-m", "--model", help="model to use for the agent")
    parser.add_argument("--debug", action="store_true", default=None,
                        help="show tool-call blocks in the output")
    parser.add_argument("--max-tool-depth", type=int, metavar="N",
                        help="stop after N tool calls per message (default: unlimited)")
    parser.add_argument("-p", "--prompt", help="send a single message and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_config(args: argparse.Namespace) -> AppConfig:
    config = AppConfig.from_env()
    use_cursor_rules = None
    if args.use_cursor_rules is not None:
        use_cursor_rules = args.use_cursor_rules == "true"
    config = config.with_overrides(
        model=args.model,
        debug=args.debug,
        use_cursor_rules=use_cursor_rules,
        max_tool_depth=args.max_tool_depth,
    )
    # --max-tool-depth 0 lifts a limit set in the environment
    if args.max_tool_depth is not None and args.max_tool_depth <= 0:
        config = replace(config, max_tool_depth=None)
    return config


def create_prompt_session(history_file: Path) -> PromptSession:
    """Prompt with history; Enter submits, Escape+Enter inserts a newline."""
    bindings = KeyBindings()

    @bindings.add(Keys.Escape, Keys.Enter)
    def _(event):
        event.current_buffer.insert_text("\n")

    history_file.parent.mkdir(parents=True, exist_ok=True)
    return PromptSession(
        history=FileHistory(str(history_file)),
        auto_suggest=AutoSuggestFromHistory(),
        key_bindings=bindings,
        multiline=False,
    )


def show_welcome(console: Console, config: AppConfig) -> None:
    console.print(Panel(
        f"[bold]SuperCoder[/bold] {__version__}\n"
        f"Model: {config.model}\n"
        f"Project: {config.workspace_path}\n\n"
        "Type /help for commands.",
        border_style="blue",
    ))


async def repl(agent: AgentLoop, console: Console, session: PromptSession) -> None:
    """Read user messages until /exit or end of input."""
    while True:
        try:
            text = await session.prompt_async("> ")
        except EOFError:
            break
        except KeyboardInterrupt:
            continue

        text = text.strip()
        if not text:
            continue
        if text in ("/exit", "/quit"):
            break
        if text == "/help":
            console.print(HELP_TEXT)
            continue
        if text == "/clear":
            agent.reset()
            console.print("[dim]Conversation cleared.[/dim]")
            continue

        try:
            await agent.chat(text)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted[/yellow]")
        console.print()


async def run(config: AppConfig, prompt: Optional[str], console: Console) -> int:
    output = ConsoleOutput(console, debug=config.debug)
    registry = create_default_registry(config.workspace_path)
    system_prompt = get_system_prompt(
        config.workspace_path,
        tool_list=registry.describe(),
        use_cursor_rules=config.use_cursor_rules,
    )

    async with OpenAIChatBackend(config) as backend:
        agent = AgentLoop(
            config,
            backend,
            registry,
            output,
            system_prompt,
            handle_interrupts=sys.stdin.isatty(),
        )
        if prompt is not None:
            state = await agent.chat(prompt)
            return 0 if state is TurnState.DONE else 1

        show_welcome(console, config)
        session = create_prompt_session(config.workspace_path / ".supercoder" / "history")
        await repl(agent, console, session)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console(highlight=False)

    config = load_config(args)
    try:
        config.validate()
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        return 2

    init_logging(str(config.workspace_path))
    log.info("Starting model=%s base_url=%s debug=%s cursor_rules=%s max_tool_depth=%s",
             config.model, config.base_url, config.debug,
             config.use_cursor_rules, config.max_tool_depth)

    try:
        return asyncio.run(run(config, args.prompt, console))
    except KeyboardInterrupt:
        console.print("\n[yellow]Bye[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
