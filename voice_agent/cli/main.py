"""CLI entry point for the voice agent."""

import click
import json
import signal
import sys
from dataclasses import replace
from pathlib import Path
import structlog
from typing import Optional

from ..audio.channel import SegmentChannel
from ..audio.listener import FrameSource, SegmentListener
from ..audio.segmenter import Segmenter, SegmenterConfig
from ..core.conversation_manager import ConversationManager, ConversationConfig
from ..core.types import Speaker, Utterance
from ..errors import DeviceError
from .ask import ask
from ..config.settings import settings
from ..metrics.collector import MetricsCollector
from ..mocks.providers import ScriptedFrameSource
from ..state.session_manager import SessionManager
from ..tools.builtin import QuietPeriod, register_builtin_tools
from ..tools.registry import ToolRegistry
from ..utils.logging import cleanup_old_logs, setup_logging
from ..providers import registry


logger = structlog.get_logger()


# Global conversation manager for signal handling
conversation_manager: Optional[ConversationManager] = None


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    logger.info("Received shutdown signal", signal=signum)
    if conversation_manager:
        conversation_manager.stop()


def validate_provider(ctx, param, value):
    """Validate provider selection."""
    if value is None:
        return value

    if param.name == "stt_provider":
        valid_providers = registry.list_stt_providers()
        provider_type = "STT"
    elif param.name == "llm_provider":
        valid_providers = registry.list_llm_providers()
        provider_type = "LLM"
    elif param.name == "tts_provider":
        valid_providers = registry.list_tts_providers()
        provider_type = "TTS"
    else:
        return value

    if value not in valid_providers:
        raise click.BadParameter(
            f"Invalid {provider_type} provider '{value}'. "
            f"Available options: {', '.join(valid_providers)}"
        )
    return value


def create_frame_source(segmenter_config: SegmenterConfig, mock: bool) -> FrameSource:
    """Microphone input, or a scripted speech pattern in mock mode."""
    if mock:
        return ScriptedFrameSource.repeating_speech(
            segmenter_config.frame_size, segmenter_config.sample_rate
        )

    # sounddevice needs PortAudio, so only load it when a microphone is wanted
    from ..audio.capture import MicrophoneSource

    return MicrophoneSource(
        sample_rate=segmenter_config.sample_rate,
        channels=settings.audio.channels,
        frame_size=segmenter_config.frame_size,
        device=settings.audio.device,
    )


def echo_utterance(utterance: Utterance) -> None:
    if utterance.speaker == Speaker.USER:
        click.echo(click.style("You: ", fg="cyan", bold=True) + utterance.text)
    else:
        click.echo(click.style("Agent: ", fg="green", bold=True) + utterance.text)


def echo_notice(notice: str) -> None:
    click.echo(click.style(f"⚠️  {notice}", fg="yellow"))


@click.command()
@click.option(
    "--stt-provider",
    callback=validate_provider,
    default=None,
    help="STT provider to use",
)
@click.option(
    "--llm-provider",
    callback=validate_provider,
    default=None,
    help="LLM provider to use",
)
@click.option(
    "--tts-provider",
    callback=validate_provider,
    default=None,
    help="TTS provider to use",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--mock", is_flag=True, help="Run with scripted audio and mock providers"
)
@click.option(
    "--config", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--no-tools", is_flag=True, help="Do not offer tools to the model")
@click.option("--no-metrics", is_flag=True, help="Disable metrics collection")
@click.option("--no-save", is_flag=True, help="Do not save the session transcript")
def main(
    stt_provider: Optional[str],
    llm_provider: Optional[str],
    tts_provider: Optional[str],
    debug: bool,
    mock: bool,
    config: Optional[str],
    no_tools: bool,
    no_metrics: bool,
    no_save: bool,
):
    """
    Start the voice agent.

    Speak after the prompt; the agent answers once you pause:
    - WhisperKit for speech-to-text
    - Ollama or Gemini for answers and tool calls
    - ElevenLabs for text-to-speech
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
    cleanup_old_logs(keep_days=settings.metrics.cleanup_interval_days)

    # Command line options win over configuration
    if mock:
        stt_provider = stt_provider or "mock"
        llm_provider = llm_provider or "mock"
        tts_provider = tts_provider or "mock"
    stt_provider = stt_provider or settings.providers.stt_provider
    llm_provider = llm_provider or settings.providers.llm_provider
    tts_provider = tts_provider or settings.providers.tts_provider

    issues = settings.validate()
    if issues:
        for issue in issues:
            click.echo(click.style(f"❌ {issue}", fg="red"), err=True)
        sys.exit(1)

    conversation_config = ConversationConfig.from_settings(settings)
    if no_tools:
        conversation_config = replace(conversation_config, use_tools=False)

    segmenter_config = SegmenterConfig.from_settings(settings)
    channel = SegmentChannel()
    listener = SegmentListener(
        create_frame_source(segmenter_config, mock),
        Segmenter(segmenter_config),
        channel,
    )

    quiet_period = QuietPeriod(conversation_config.quiet_wake_word)
    tool_registry = ToolRegistry()
    if conversation_config.use_tools:
        register_builtin_tools(tool_registry, quiet_period)

    conversation_manager = ConversationManager(
        conversation_config,
        transcriber=registry.get_stt_provider(stt_provider),
        llm=registry.get_llm_provider(llm_provider),
        synthesizer=registry.get_tts_provider(tts_provider),
        channel=channel,
        listener=listener,
        tool_registry=tool_registry,
        quiet_period=quiet_period,
        metrics=None if no_metrics or not settings.metrics.enabled else MetricsCollector(),
        session_manager=None if no_save or not settings.metrics.save_sessions else SessionManager(),
        notice_handler=echo_notice,
        utterance_handler=echo_utterance,
    )

    # Register signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Display startup information
    click.echo(click.style("🎙️  Voice Agent Starting...", fg="green", bold=True))
    click.echo(f"STT Provider: {stt_provider}")
    click.echo(f"LLM Provider: {llm_provider}")
    click.echo(f"TTS Provider: {tts_provider}")
    click.echo(f"Tools: {', '.join(tool_registry.list_tools()) or 'None'}")

    if mock:
        click.echo(
            click.style(
                "⚠️  Running in MOCK mode - scripted audio, no API calls", fg="yellow"
            )
        )

    click.echo("\nPress Ctrl+C to stop the conversation.\n")

    exit_code = 0
    try:
        conversation_manager.run()
    except DeviceError as e:
        click.echo(click.style(f"\n❌ Audio device error: {e}", fg="red"), err=True)
        exit_code = 1
    except KeyboardInterrupt:
        click.echo("\n\nShutting down...")
        conversation_manager.stop()
    finally:
        metrics_collector = conversation_manager.metrics
        if metrics_collector and metrics_collector.current_session:
            summary = metrics_collector.get_summary()

            click.echo("\n📊 Session Summary:")
            click.echo(f"Duration: {summary['session_duration_seconds']:.1f}s")
            click.echo(f"Turns: {summary['total_turns']}")

            if summary["e2e_latency_ms"]["samples"] > 0:
                click.echo(
                    f"Avg E2E Latency: {summary['e2e_latency_ms']['avg']:.0f}ms"
                )

        if conversation_manager.current_session and conversation_manager.session_manager:
            click.echo(f"Transcript saved as {conversation_manager.current_session.id}")

        click.echo("\n👋 Goodbye!")

    if exit_code:
        sys.exit(exit_code)


@click.command()
@click.option("--days", "-d", default=7, help="Number of days to include in report")
@click.option(
    "--format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
def metrics(days: int, format: str):
    """View performance metrics."""
    collector = MetricsCollector()
    report = collector.generate_report(days=days)

    if format == "json":
        click.echo(json.dumps(report, indent=2))
        return

    click.echo("📊 Performance Metrics Report")
    click.echo(f"Last {days} days")
    click.echo("-" * 50)

    if report["total_sessions"] == 0:
        click.echo("No data available for the specified period.")
        return

    # Display summary statistics
    click.echo(f"Total Sessions: {report['total_sessions']}")
    click.echo(f"Total Turns: {report['total_turns']}")
    click.echo(f"Error Rate: {report['error_rate']:.2%}")
    outcomes = ", ".join(
        f"{status}={count}" for status, count in sorted(report["turn_outcomes"].items())
    )
    click.echo(f"Turn Outcomes: {outcomes or 'None'}")
    click.echo(
        f"Tool Calls: {report['tool_calls']['succeeded']} succeeded, "
        f"{report['tool_calls']['failed']} failed"
    )
    click.echo()

    # Display latency metrics
    def display_latency(name, metrics):
        if metrics["samples"] > 0:
            click.echo(f"{name} Latency:")
            click.echo(f"  Average: {metrics['avg']:.1f}ms")
            click.echo(f"  P95: {metrics['p95']:.1f}ms")
            click.echo(f"  P99: {metrics['p99']:.1f}ms")
            click.echo(f"  Samples: {metrics['samples']}")
        else:
            click.echo(f"{name} Latency: No data")
        click.echo()

    display_latency("STT", report["stt_latency_ms"])
    display_latency("LLM", report["llm_latency_ms"])
    display_latency("Tool", report["tool_latency_ms"])
    display_latency("TTS", report["tts_latency_ms"])
    display_latency("End-to-End", report["e2e_latency_ms"])


@click.command()
@click.option("--show", "session_id", help="Print the transcript of one session")
def sessions(session_id: Optional[str]):
    """List saved session transcripts."""
    manager = SessionManager()

    if session_id:
        session = manager.load_session(session_id)
        if session is None:
            click.echo(click.style(f"❌ Session not found: {session_id}", fg="red"))
            sys.exit(1)
        click.echo(f"📝 {session.id} ({session.created_at})")
        click.echo("-" * 60)
        for utterance in session.transcript():
            echo_utterance(utterance)
        return

    sessions_list = manager.list_sessions()
    if not sessions_list:
        click.echo("No saved sessions.")
        return

    click.echo("📝 Saved sessions:")
    click.echo("-" * 60)
    for info in sessions_list:
        click.echo(f"ID: {info['id']}")
        click.echo(f"Created: {info['created_at']}")
        click.echo(f"Utterances: {info['utterance_count']}")
        click.echo("-" * 60)


@click.command()
def tools():
    """List the tools offered to the model."""
    tool_registry = ToolRegistry()
    register_builtin_tools(tool_registry, QuietPeriod())

    click.echo("🧰 Available Tools")
    click.echo("-" * 50)
    for spec in tool_registry.specs():
        click.echo(f"\n{spec.name}: {spec.description}")
        properties = spec.parameters.get("properties", {})
        required = set(spec.parameters.get("required", []))
        for name, schema in properties.items():
            flag = " (required)" if name in required else ""
            click.echo(f"  - {name}: {schema.get('type', 'any')}{flag}")


@click.command()
def providers():
    """List available providers."""
    click.echo("🔌 Available Providers")
    click.echo("-" * 50)

    stt_providers = registry.list_stt_providers()
    click.echo(f"\n🎙️  STT Providers ({len(stt_providers)})")
    for provider in stt_providers:
        click.echo(f"  - {provider}")

    llm_providers = registry.list_llm_providers()
    click.echo(f"\n🤖 LLM Providers ({len(llm_providers)})")
    for provider in llm_providers:
        click.echo(f"  - {provider}")

    tts_providers = registry.list_tts_providers()
    click.echo(f"\n🔊 TTS Providers ({len(tts_providers)})")
    for provider in tts_providers:
        click.echo(f"  - {provider}")

    click.echo("\nUse --<type>-provider flag to select a specific provider.")
    click.echo("Example: voice-agent start --llm-provider gemini")


# Create CLI group
cli = click.Group(help="Voice Agent - talk to a tool-using model.")
cli.add_command(main, name="start")
cli.add_command(ask)
cli.add_command(metrics)
cli.add_command(sessions)
cli.add_command(tools)
cli.add_command(providers)


if __name__ == "__main__":
    cli()
