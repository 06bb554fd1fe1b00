"""Report Chat CLI - terminal driver for a report chat endpoint.

Runs one ``ChatSession`` against the configured endpoint, streaming the
assistant's replies live and printing the structured summary once the
server produces it.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.style import Style

from .auth import resolve_auth_headers
from .chat import ChatSession, ChatStreamClient, ChatTransportError
from .chat.transport import SummaryPayload
from .config import Settings, get_settings
from .logging_settings import configure_logging, parse_logging_settings
from .schemas.chat import ReportSummary

# Styles
ASSISTANT_STYLE = Style(color="bright_green")
ERROR_STYLE = Style(color="red", bold=True)
INFO_STYLE = Style(color="cyan")


class ShellReport:
    """Terminal conversation that ends in a structured report."""

    def __init__(self, settings: Settings, context: Optional[dict[str, Any]] = None):
        self.settings = settings
        self.context = context or {}
        self.console = Console()
        self.running = True
        self.client = ChatStreamClient(timeout=settings.request_timeout)
        self.session = ChatSession(
            str(settings.endpoint),
            auth=settings.auth_config(),
            max_messages=settings.max_messages,
            locale=settings.locale,
            client=self.client,
        )
        self.summary: Optional[SummaryPayload] = None
        self._response = ""
        self._live: Optional[Live] = None

        self.session.on_text_chunk(self._on_text)
        self.session.on_summary(self._on_summary)
        self.session.on_error(self._on_error)

    def _on_text(self, chunk: str) -> None:
        self._response += chunk
        if self._live is not None:
            self._live.update(Markdown(self._response, style=ASSISTANT_STYLE))

    def _on_summary(self, summary: SummaryPayload) -> None:
        self.summary = summary

    def _on_error(self, error: Exception) -> None:
        message = str(error) or type(error).__name__
        if isinstance(error, ChatTransportError) and error.status:
            message = f"{message} (HTTP {error.status})"
        self.console.print(f"[error]Error: {message}[/error]", style=ERROR_STYLE)
        self.console.print("[dim]Type /retry to send your last message again.[/dim]")

    async def _check_endpoint(self) -> bool:
        """Check if the chat endpoint is reachable."""
        try:
            headers = await resolve_auth_headers(self.settings.auth_config())
        except Exception as e:
            self.console.print(
                f"[error]Cannot resolve credentials: {e}[/error]", style=ERROR_STYLE
            )
            return False
        if not await self.client.probe(str(self.settings.endpoint), headers):
            self.console.print(
                f"[error]Chat endpoint not available at {self.settings.endpoint}[/error]",
                style=ERROR_STYLE,
            )
            return False
        self.console.print(f"[dim]Connected to {self.settings.endpoint}[/dim]")
        return True

    async def _stream(self) -> None:
        """Render the turn in flight until it finishes or the user aborts."""
        self._response = ""
        try:
            with Live(console=self.console, refresh_per_second=10) as live:
                self._live = live
                await self.session.wait()
        except KeyboardInterrupt:
            self.session.abort()
            self.console.print("\n[dim]Request cancelled[/dim]")
        except asyncio.CancelledError:
            # The runner is shutting us down; stop the turn and keep unwinding.
            self.session.abort()
            raise
        finally:
            self._live = None

        if self.summary is not None:
            self._show_summary(self.summary)
            self.summary = None

    def _show_summary(self, summary: SummaryPayload) -> None:
        if isinstance(summary, ReportSummary):
            data = summary.model_dump(exclude_none=True)
        else:
            data = dict(summary)
        title = str(data.pop("title", "Report summary"))
        body = json.dumps(data, ensure_ascii=False, indent=2)
        self.console.print(Panel(body, title=title, border_style="green"))

    def _show_help(self) -> None:
        """Show available commands."""
        help_text = """
[bold]Commands:[/bold]
  /help              Show this help message
  /retry             Send your last message again
  /reset             Forget the conversation and start over
  /quit              Exit report-chat

[bold]Shortcuts:[/bold]
  Ctrl+C             Cancel current request
  Ctrl+D             Exit report-chat
"""
        self.console.print(
            Panel(help_text.strip(), title="Report Chat Help", border_style="blue")
        )

    async def _handle_command(self, cmd: str) -> bool:
        """Handle slash commands. Returns True if handled."""
        command = cmd.strip().split(maxsplit=1)[0].lower() if cmd.strip() else ""

        if command == "/help":
            self._show_help()
            return True
        elif command == "/retry":
            if self.session.get_last_user_message() is None:
                self.console.print("[dim]Nothing to retry yet[/dim]")
                return True
            self.session.retry()
            await self._stream()
            return True
        elif command == "/reset":
            self.session.reset()
            self.console.print(
                "[info]Conversation cleared. Starting fresh.[/info]", style=INFO_STYLE
            )
            self.session.start(self.context)
            await self._stream()
            return True
        elif command == "/quit":
            self.running = False
            return True

        return False

    async def run(self) -> None:
        """Main chat loop."""
        try:
            if not await self._check_endpoint():
                return

            self.console.print()
            self.console.print(
                "[bold]Report Chat[/bold] - Describe the problem, /help for commands",
                style=INFO_STYLE,
            )
            self.console.print()

            self.session.start(self.context)
            await self._stream()

            while self.running:
                try:
                    user_input = Prompt.ask("[bold blue]You[/bold blue]")
                    if not user_input.strip():
                        continue

                    if user_input.startswith("/"):
                        handled = await self._handle_command(user_input)
                        if handled:
                            continue

                    self.console.print()
                    self.session.send_message(user_input)
                    await self._stream()
                    self.console.print()

                except EOFError:
                    # Ctrl+D
                    self.console.print("\n[dim]Goodbye![/dim]")
                    break
                except KeyboardInterrupt:
                    # Ctrl+C - just cancel current input
                    self.console.print()
                    continue
        finally:
            await self.session.aclose()
            await self.client.aclose()


def _load_context(path: Optional[Path]) -> dict[str, Any]:
    if path is None:
        return {}
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Diagnostic context in {path} must be a JSON object")
    return data


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Report Chat - turn a problem description into a structured report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  report-chat                                  Use REPORT_CHAT_ENDPOINT
  report-chat --endpoint https://api.example   Talk to another endpoint
  report-chat --context snapshot.json          Attach a diagnostic snapshot

Environment Variables:
  REPORT_CHAT_ENDPOINT       Chat endpoint base URL
  REPORT_CHAT_API_KEY        Project key sent on every request
  REPORT_CHAT_BEARER_TOKEN   Bearer token sent on every request
""",
    )
    parser.add_argument("--endpoint", "-e", default=None, help="Chat endpoint base URL")
    parser.add_argument("--locale", "-l", default=None, help="Locale sent to the server")
    parser.add_argument(
        "--max-messages",
        type=int,
        default=None,
        help="History length that triggers a summary request (default: 20)",
    )
    parser.add_argument(
        "--context",
        type=Path,
        default=None,
        help="JSON file sent as the diagnostic snapshot on the first request",
    )

    args = parser.parse_args()

    overrides: dict[str, Any] = {}
    if args.endpoint:
        overrides["endpoint"] = args.endpoint
    if args.locale:
        overrides["locale"] = args.locale
    if args.max_messages is not None:
        overrides["max_messages"] = args.max_messages

    try:
        settings = Settings(**overrides) if overrides else get_settings()
    except ValidationError as exc:
        parser.error(f"Invalid configuration: {exc}")

    configure_logging(parse_logging_settings(settings.logging_settings_path))

    try:
        context = _load_context(args.context)
    except (OSError, ValueError) as exc:
        parser.error(str(exc))

    chat = ShellReport(settings, context)
    try:
        asyncio.run(chat.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
