"""CLI entry point for the voice chat system."""

import asyncio
import json
import sys
import threading
from pathlib import Path
from typing import Optional

import click
import structlog

from ..config.settings import settings
from ..core.conversation_manager import ConversationConfig, ConversationManager
from ..core.models import Notice, TurnMode
from ..core.playback import chunk_text
from ..exceptions import ProviderError
from ..providers import registry
from ..providers.conversation.base import AssistantTurn
from ..utils.logging import setup_logging
from ..utils.text import strip_markdown


logger = structlog.get_logger()


NOTICE_COLORS = {"error": "red", "warning": "yellow", "info": "cyan"}

MODE_LABELS = {
    TurnMode.IDLE: "💤 Idle",
    TurnMode.LISTENING: "🎙️  Listening...",
    TurnMode.SPEAKING: "🔊 Speaking...",
}


def validate_provider(ctx, param, value):
    """Validate provider selection."""
    kind = param.name.replace("_provider", "")
    valid_providers = registry.list_providers(kind)
    if value not in valid_providers:
        raise click.BadParameter(
            f"Invalid {kind} provider '{value}'. "
            f"Available options: {', '.join(valid_providers)}"
        )
    return value


def _configure(debug: bool, config: Optional[str]) -> None:
    if config:
        settings.config_file = Path(config)
        settings.load_from_file()

    setup_logging(
        debug=debug,
        log_file=settings.logging.file_enabled,
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        file_rotation_mb=settings.logging.file_rotation_mb,
        file_backup_count=settings.logging.file_backup_count,
    )

    for issue in settings.validate():
        click.echo(click.style(f"⚠️  {issue}", fg="yellow"), err=True)


def echo_notice(notice: Notice) -> None:
    click.echo(click.style(notice.message, fg=NOTICE_COLORS.get(notice.level, "white")))


def echo_reply(reply: AssistantTurn) -> None:
    click.echo(click.style("Assistant: ", fg="green", bold=True) + reply.content)


def _stdin_reader(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> None:
    """Forward stdin lines to the loop. ``None`` marks end of input."""
    for line in sys.stdin:
        loop.call_soon_threadsafe(lines.put_nowait, line.rstrip("\n"))
    loop.call_soon_threadsafe(lines.put_nowait, None)


async def run_session(manager: ConversationManager) -> None:
    """Drive one interactive session until /quit or end of input."""
    manager.add_notice_listener(echo_notice)
    manager.coordinator.add_reply_listener(echo_reply)
    manager.coordinator.add_mode_listener(lambda mode: click.echo(MODE_LABELS[mode]))

    loop = asyncio.get_running_loop()
    lines: asyncio.Queue = asyncio.Queue()
    threading.Thread(target=_stdin_reader, args=(loop, lines), daemon=True, name="stdin-reader").start()

    try:
        await manager.start()
        while True:
            line = await lines.get()
            if line is None:
                # Piped input: let the last reply arrive and finish playing
                await manager.wait_until_idle(timeout=60, include_capture=False)
                break
            if line.strip() == "/quit":
                break

            command = line.strip()
            if not command:
                continue
            if command == "/mic":
                manager.toggle_mic()
            elif command == "/status":
                click.echo(json.dumps(manager.get_status(), indent=2, default=str))
            else:
                await manager.wait_until_idle(timeout=60, include_capture=False)
                if not manager.submit_text(command):
                    click.echo(click.style("Still waiting for the previous message.", fg="yellow"))
    finally:
        manager.stop()


@click.command()
@click.option(
    "--recognition-provider",
    callback=validate_provider,
    default="whisperkit",
    help="Speech recognition engine to use",
)
@click.option(
    "--synthesis-provider",
    callback=validate_provider,
    default="elevenlabs",
    help="Speech synthesis engine to use",
)
@click.option(
    "--conversation-provider",
    callback=validate_provider,
    default="gemini",
    help="Conversation service to use",
)
@click.option("--model", "-m", help="Model id (defaults to the first available model)")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--mock", is_flag=True, help="Run in mock mode (no microphone, speakers or API calls)")
@click.option("--config", type=click.Path(exists=True), help="Path to configuration file")
@click.option("--no-speak", is_flag=True, help="Do not read replies aloud")
@click.option("--no-listen", is_flag=True, help="Start with the microphone off")
def main(
    recognition_provider: str,
    synthesis_provider: str,
    conversation_provider: str,
    model: Optional[str],
    debug: bool,
    mock: bool,
    config: Optional[str],
    no_speak: bool,
    no_listen: bool,
):
    """
    Start a voice conversation.

    Speak when the microphone is on; the message is sent after two seconds
    of silence. Type a line and press Enter to send it as text.

    \b
    Commands:
        /mic     toggle the microphone
        /status  print the current status
        /quit    exit
    """
    _configure(debug, config)

    settings.recognition_provider = recognition_provider
    settings.synthesis_provider = synthesis_provider
    settings.conversation_provider = conversation_provider

    conversation_config = ConversationConfig(
        recognition_provider=recognition_provider,
        synthesis_provider=synthesis_provider,
        conversation_provider=conversation_provider,
        model_id=model,
        auto_speak_replies=settings.speech.auto_speak_replies and not no_speak,
        listen_on_start=not no_listen,
        debug_mode=debug,
        mock_mode=mock,
    )

    click.echo(click.style("🎙️  Voice Chat Starting...", fg="green", bold=True))
    click.echo(f"Recognition: {recognition_provider}")
    click.echo(f"Synthesis: {synthesis_provider}")
    click.echo(f"Conversation: {conversation_provider}")
    if mock:
        click.echo(click.style("⚠️  Running in MOCK mode - no API calls will be made", fg="yellow"))
    click.echo("\nType /mic to toggle the microphone, /quit to exit.\n")

    try:
        manager = ConversationManager(conversation_config)
        asyncio.run(run_session(manager))
    except KeyboardInterrupt:
        click.echo("\n\nShutting down...")
    except ProviderError as e:
        click.echo(click.style(f"\n❌ Provider error: {e}", fg="red"))
        sys.exit(1)
    except Exception as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        click.echo(click.style(f"\n❌ Error: {e}", fg="red"))
        sys.exit(1)

    click.echo("\n👋 Goodbye!")


@click.command()
@click.option(
    "--conversation-provider",
    callback=validate_provider,
    default="gemini",
    help="Conversation service to query",
)
@click.option("--mock", is_flag=True, help="List the mock models")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def models(conversation_provider: str, mock: bool, json_output: bool):
    """List models that can answer messages."""
    setup_logging(log_level="WARNING")

    async def fetch():
        service = registry.get_conversation_service("mock" if mock else conversation_provider)
        service.initialize()
        try:
            return await service.list_models()
        finally:
            service.stop()

    try:
        available = asyncio.run(fetch())
    except ProviderError as e:
        click.echo(click.style(f"❌ Provider error: {e}", fg="red"))
        sys.exit(1)
    except Exception as e:
        click.echo(click.style(f"❌ Failed to list models: {e}", fg="red"))
        sys.exit(1)

    if json_output:
        click.echo(json.dumps([{"id": m.id, "name": m.name} for m in available], indent=2))
        return

    click.echo(f"🤖 Models ({len(available)})")
    for index, info in enumerate(available):
        marker = " (default)" if index == 0 else ""
        click.echo(f"  - {info.id}: {info.name}{marker}")


@click.command()
def providers():
    """List available providers."""
    click.echo("🔌 Available Providers")
    click.echo("-" * 50)

    for kind, icon in (("recognition", "🎙️ "), ("synthesis", "🔊"), ("conversation", "🤖")):
        names = registry.list_providers(kind)
        click.echo(f"\n{icon} {kind.capitalize()} ({len(names)})")
        for name in names:
            click.echo(f"  - {name}")

    click.echo("\nUse --<type>-provider to select a specific provider.")
    click.echo("Example: voice-chat start --conversation-provider gemini")


@click.command()
@click.argument("text")
@click.option("--max-length", type=int, default=None, help="Maximum chunk length")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def chunks(text: str, max_length: Optional[int], json_output: bool):
    """Show how TEXT would be split for playback."""
    limit = max_length or settings.speech.max_chunk_length
    if limit <= 0:
        raise click.BadParameter("must be positive", param_hint="--max-length")

    plan = chunk_text(strip_markdown(text), limit)

    if json_output:
        click.echo(json.dumps(
            [{"index": c.index, "total": c.total, "length": len(c.text), "text": c.text} for c in plan],
            indent=2,
            ensure_ascii=False,
        ))
        return

    click.echo(f"{len(plan)} chunk(s), max length {limit}")
    for chunk in plan:
        click.echo(f"[{chunk.index + 1}/{chunk.total}] ({len(chunk.text)}) {chunk.text}")


@click.command()
@click.argument("text")
@click.option(
    "--synthesis-provider",
    callback=validate_provider,
    default="elevenlabs",
    help="Speech synthesis engine to use",
)
@click.option("--mock", is_flag=True, help="Use the mock engines")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--timeout", type=float, default=120.0, help="Give up after this many seconds")
def say(text: str, synthesis_provider: str, mock: bool, debug: bool, timeout: float):
    """Speak TEXT through the playback path and exit when done."""
    setup_logging(debug=debug, log_level="INFO" if debug else "WARNING")

    conversation_config = ConversationConfig(
        recognition_provider="mock",
        synthesis_provider=synthesis_provider,
        conversation_provider="mock",
        listen_on_start=False,
        mock_mode=mock,
    )

    async def speak() -> bool:
        manager = ConversationManager(conversation_config)
        manager.add_notice_listener(echo_notice)
        try:
            await manager.start()
            if not manager.speak(text):
                click.echo("Nothing to say.")
                return True
            return await manager.wait_until_idle(timeout=timeout)
        finally:
            manager.stop()

    try:
        finished = asyncio.run(speak())
    except ProviderError as e:
        click.echo(click.style(f"❌ Provider error: {e}", fg="red"))
        sys.exit(1)

    if not finished:
        click.echo(click.style("❌ Timed out while speaking", fg="red"))
        sys.exit(1)


# Create CLI group
cli = click.Group(help="Hands-free voice conversations with an assistant.")
cli.add_command(main, name="start")
cli.add_command(models)
cli.add_command(providers)
cli.add_command(chunks)
cli.add_command(say)


if __name__ == "__main__":
    cli()
