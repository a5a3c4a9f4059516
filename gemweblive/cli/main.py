"""CLI entry point for the live client."""

import click
import json
import signal
import sys
import time
from pathlib import Path
import structlog
from typing import Optional

from ..core.conversation_manager import ConversationManager, ConversationConfig
from ..core.transcript import TranscriptEntry
from ..config.settings import settings
from ..live.config_builder import ConfigBuilder
from ..live.errors import InvalidCapabilities, SendBeforeReady
from ..metrics.collector import MetricsCollector
from ..models.catalog import catalog
from ..rest.client import RestClient
from ..state.session_store import SessionStore
from ..utils.logging import cleanup_old_logs, setup_logging


logger = structlog.get_logger()


# Global conversation manager for signal handling
conversation_manager: Optional[ConversationManager] = None


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    logger.info("Received shutdown signal")
    if conversation_manager:
        conversation_manager.stop()
    sys.exit(0)


def load_models_file(models_file: Optional[str]) -> None:
    """Register the models of a descriptor file with the catalogue."""
    models_file = models_file or settings.live.models_file
    if not models_file:
        return
    try:
        loaded = catalog.load_file(models_file)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Could not load models file {models_file}: {e}")
    logger.info("Loaded models file", file=models_file, count=len(loaded))


def validate_model(ctx, param, value):
    """Validate model selection against the catalogue."""
    if value is None:
        return value
    # --models-file is eager, so its models are already registered
    if value not in catalog:
        raise click.BadParameter(
            f"Unknown model '{value}'. "
            f"Available options: {', '.join(catalog.list_ids())}"
        )
    return value


def _load_models_option(ctx, param, value):
    load_models_file(value)
    return value


models_file_option = click.option(
    "--models-file",
    type=click.Path(exists=True, dir_okay=False),
    callback=_load_models_option,
    is_eager=True,
    help="JSON model descriptor file to add to the catalogue",
)


def print_entry(entry: TranscriptEntry) -> None:
    """Echo one transcript entry."""
    if entry.is_user:
        click.echo(click.style(f"You: {entry.text}", fg="cyan"))
    else:
        click.echo(click.style(f"Gemini: {entry.text}", fg="green"))


def run_text_loop(manager: ConversationManager) -> None:
    """Send each line typed on stdin as a user turn until EOF."""
    click.echo("Type a message and press Enter. Ctrl+D to finish.\n")
    for line in sys.stdin:
        if not manager.is_running:
            break
        text = line.strip()
        if not text:
            continue
        try:
            manager.send_text(text)
        except SendBeforeReady:
            click.echo(click.style("Session is not ready yet, message dropped", fg="yellow"))


@click.command()
@click.option(
    "--model",
    "-m",
    callback=validate_model,
    help="Model to use (defaults to GEMINI_LIVE_MODEL or the built-in live model)",
)
@models_file_option
@click.option(
    "--resume/--fresh",
    default=True,
    help="Resume the last session for this model, or start a new one",
)
@click.option("--text-only", is_flag=True, help="Type messages instead of using the microphone")
@click.option("--frame-log", is_flag=True, help="Write every frame to a per-session log")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--no-metrics", is_flag=True, help="Disable metrics collection")
def start(
    model: Optional[str],
    models_file: Optional[str],
    resume: bool,
    text_only: bool,
    frame_log: bool,
    debug: bool,
    config: Optional[str],
    no_metrics: bool,
):
    """
    Start a live conversation.

    Audio from the microphone is streamed to the model once the server has
    acknowledged the session setup, and the reply is played back while its
    transcript is printed.
    """
    global conversation_manager

    # Load configuration
    if config:
        settings.config_file = Path(config)
        settings.reload()

    setup_logging(
        debug=debug,
        log_file=settings.logging.file_enabled,
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        file_rotation_mb=settings.logging.file_rotation_mb,
        file_backup_count=settings.logging.file_backup_count,
    )
    if settings.logging.file_enabled:
        cleanup_old_logs(keep_days=settings.logging.file_backup_count)

    for issue in settings.validate():
        logger.warning("Configuration issue", issue=issue)

    # Register signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    conversation_config = ConversationConfig(
        model_id=model,
        resume=resume,
        enable_microphone=not text_only,
        enable_metrics=not no_metrics,
        frame_log=frame_log,
    )

    try:
        conversation_manager = ConversationManager(conversation_config, on_entry=print_entry)
    except ValueError as e:
        raise click.ClickException(str(e))

    selected = conversation_manager.model
    click.echo(click.style("Live session starting...", fg="green", bold=True))
    click.echo(f"Model: {selected.model_id}")
    click.echo(f"Input: {', '.join(sorted(m.value for m in selected.input_modalities))}")
    click.echo(f"Output: {', '.join(sorted(m.value for m in selected.output_modalities))}")
    if not text_only:
        click.echo("\nPress Ctrl+C to stop the conversation.\n")

    try:
        conversation_manager.start()

        if not conversation_manager.wait_until_ready():
            error = conversation_manager.last_error
            raise click.ClickException(
                f"Session did not become ready: {error}" if error else "Session did not become ready"
            )

        if text_only:
            run_text_loop(conversation_manager)
        else:
            while conversation_manager.is_running:
                time.sleep(1)

        if conversation_manager.last_error is not None:
            click.echo(click.style(f"\nSession ended: {conversation_manager.last_error}", fg="red"))

    except KeyboardInterrupt:
        click.echo("\n\nShutting down...")
    except InvalidCapabilities as e:
        raise click.ClickException(f"Invalid model descriptor: {e}")
    except ValueError as e:
        raise click.ClickException(str(e))
    finally:
        if conversation_manager:
            collector = conversation_manager.metrics_collector
            conversation_manager.stop()

            if collector and collector.current_session:
                summary = collector.get_summary()
                click.echo("\nSession Summary:")
                click.echo(f"Duration: {summary['session_duration_seconds']:.1f}s")
                click.echo(f"Turns: {summary['turns']}")
                click.echo(f"Frames sent: {summary['frames_sent']} (dropped: {summary['frames_dropped']})")
                if summary["setup_latency_ms"]["samples"] > 0:
                    click.echo(f"Setup latency: {summary['setup_latency_ms']['avg']:.0f}ms")
                if summary["response_latency_ms"]["samples"] > 0:
                    click.echo(f"Avg response latency: {summary['response_latency_ms']['avg']:.0f}ms")

            conversation_manager = None

        click.echo("\nGoodbye!")


@click.command()
@models_file_option
@click.option("--live-only", is_flag=True, help="Only list models with a live endpoint")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def models(models_file: Optional[str], live_only: bool, as_json: bool):
    """List known models and their capabilities."""
    model_list = catalog.list_models(live_only=live_only)

    if as_json:
        click.echo(json.dumps([m.to_dict() for m in model_list], indent=2))
        return

    click.echo(f"Models ({len(model_list)})")
    click.echo("-" * 60)
    for model in model_list:
        flags = [
            name for name, enabled in (
                ("live", model.is_live),
                ("native-audio", model.native_audio),
                ("system-instruction", model.supports_system_instruction),
                ("thinking", model.supports_thinking_config),
                ("safety", model.supports_safety_settings),
                ("input-transcription", model.supports_input_transcription),
                ("output-transcription", model.supports_output_transcription),
                ("compression", model.supports_context_compression),
                ("affective-dialog", model.supports_affective_dialog),
                ("proactivity", model.supports_proactivity),
            ) if enabled
        ]
        inputs = ", ".join(sorted(m.value for m in model.input_modalities))
        outputs = ", ".join(sorted(m.value for m in model.output_modalities))
        click.echo(f"{model.model_id}")
        click.echo(f"  {inputs} -> {outputs}")
        click.echo(f"  {' '.join(flags) or 'no optional features'}")


@click.command(name="setup-payload")
@click.option("--model", "-m", required=True, callback=validate_model, help="Model to build the setup for")
@models_file_option
@click.option("--handle", help="Resumption handle to include")
def setup_payload(model: str, models_file: Optional[str], handle: Optional[str]):
    """Print the setup message a session would send for a model."""
    builder = ConfigBuilder(default_system_instruction=settings.system_prompts.default)
    try:
        config = builder.build(catalog.get(model), handle, settings.session_overrides())
    except InvalidCapabilities as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(config.to_payload(), indent=2))


@click.command()
@click.option("--input", "-i", "input_text", required=True, help="Text to send")
@click.option("--model", "-m", default="gemini-2.5-flash", callback=validate_model, help="Model to use")
@models_file_option
@click.option("--temperature", type=float, help="Sampling temperature, if the model allows it")
@click.option("--stream/--no-stream", default=True, help="Print the reply as it arrives")
def ask(input_text: str, model: str, models_file: Optional[str],
        temperature: Optional[float], stream: bool):
    """Send one text request to a model without a live session."""
    user_settings = {}
    if temperature is not None:
        user_settings["temperature"] = temperature

    client = RestClient(
        catalog.get(model),
        system_instruction=settings.system_prompts.default,
        user_settings=user_settings,
        api_key=settings.api_key,
    )

    try:
        client.initialize()
        if stream:
            for chunk in client.stream(input_text):
                if chunk.text:
                    click.echo(chunk.text, nl=False)
            click.echo()
        else:
            click.echo(client.generate(input_text))
    except ValueError as e:
        raise click.ClickException(str(e))
    except Exception as e:
        logger.error("Request failed", error=str(e))
        raise click.ClickException(f"Request failed: {e}")
    finally:
        client.stop()


@click.command()
@click.option("--days", "-d", default=7, help="Number of days to include in report")
@click.option(
    "--format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
def metrics(days: int, format: str):
    """View session metrics."""
    collector = MetricsCollector()
    report = collector.generate_report(days=days)

    if format == "json":
        click.echo(json.dumps(report, indent=2))
        return

    click.echo("Session Metrics Report")
    click.echo(f"Last {days} days")
    click.echo("-" * 50)

    if report["total_sessions"] == 0:
        click.echo("No data available for the specified period.")
        return

    click.echo(f"Total Sessions: {report['total_sessions']}")
    click.echo(f"Total Turns: {report['total_turns']}")
    click.echo(f"Error Rate: {report['error_rate']:.2%}")
    click.echo(f"Dropped Frames: {report['drop_rate']:.2%}")
    click.echo()

    def display_latency(name, latency):
        if latency["samples"] > 0:
            click.echo(f"{name} Latency:")
            click.echo(f"  Average: {latency['avg']:.1f}ms")
            click.echo(f"  P95: {latency['p95']:.1f}ms")
            click.echo(f"  Samples: {latency['samples']}")
        else:
            click.echo(f"{name} Latency: No data")

    display_latency("Setup", report["setup_latency_ms"])
    display_latency("Response", report["response_latency_ms"])


@click.command()
@click.option("--clear-handle", "clear_model", help="Forget the resumption handle of a model")
def sessions(clear_model: Optional[str]):
    """List saved session transcripts."""
    store = SessionStore()

    if clear_model:
        store.clear_handle(clear_model)
        click.echo(f"Resumption handle cleared for {clear_model}")
        return

    records = store.list_records()
    if not records:
        click.echo("No sessions found.")
        return

    for record in records:
        click.echo(
            f"{record['id']}  {record['model_id']}  {record['created_at']}  "
            f"{record['message_count']} messages"
        )


# Create CLI group
cli = click.Group(help="Gemini live API client.")
cli.add_command(start)
cli.add_command(models)
cli.add_command(setup_payload)
cli.add_command(ask)
cli.add_command(metrics)
cli.add_command(sessions)


if __name__ == "__main__":
    cli()
