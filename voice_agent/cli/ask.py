"""Text-only turn through the LLM provider and tool loop."""

import click
import json
import sys
import time
from typing import Optional
import structlog

from ..config.settings import settings
from ..core.tool_loop import ToolLoop
from ..core.types import Speaker, Utterance
from ..errors import InferenceError
from ..providers import registry
from ..tools.builtin import QuietPeriod, register_builtin_tools
from ..tools.executor import ToolExecutor
from ..tools.registry import ToolRegistry
from ..utils.logging import setup_logging

logger = structlog.get_logger()

# Keyword each provider uses for its model name
MODEL_KWARGS = {"ollama": "model", "gemini": "model_name"}


def _load_context(path: str) -> list:
    with open(path, "r") as f:
        data = json.load(f)
    return [Utterance.from_dict(item) for item in data.get("history", [])]


@click.command()
@click.option(
    "--input", "-i", "text", help="Text to send (if not provided, reads from stdin)"
)
@click.option(
    "--provider",
    "-p",
    default=None,
    help="LLM provider to use (defaults to the configured provider)",
)
@click.option("--model", "-m", help="Model to use (provider-specific)")
@click.option("--system", "-s", help="System prompt to use")
@click.option(
    "--context",
    "-c",
    type=click.Path(exists=True),
    help="Path to a JSON file with earlier history",
)
@click.option("--no-tools", is_flag=True, help="Do not offer tools to the model")
@click.option(
    "--json", "json_output", is_flag=True, help="Output response as JSON with metadata"
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
def ask(
    text: Optional[str],
    provider: Optional[str],
    model: Optional[str],
    system: Optional[str],
    context: Optional[str],
    no_tools: bool,
    json_output: bool,
    debug: bool,
):
    """
    Run one text turn through the model, executing any tools it calls.

    Examples:
    \b
        voice-agent ask --input "What time is it?"
        echo "What is 2 + 2?" | voice-agent ask --provider gemini
        voice-agent ask --input "And now?" --context previous.json --json
    """
    if json_output and not debug:
        # Keep stdout clean for JSON
        setup_logging(log_file=False, log_level="CRITICAL")
    else:
        setup_logging(debug=debug, log_file=False, log_level=settings.logging.level)

    provider = provider or settings.providers.llm_provider
    if provider not in registry.list_llm_providers():
        click.echo(
            f"Error: Unknown provider '{provider}'. "
            f"Available: {', '.join(registry.list_llm_providers())}",
            err=True,
        )
        sys.exit(1)

    if not text:
        text = sys.stdin.read().strip()
        if not text:
            click.echo("Error: No input provided", err=True)
            sys.exit(1)

    history = []
    if context:
        try:
            history = _load_context(context)
        except (OSError, ValueError, KeyError) as e:
            click.echo(f"Error loading context file: {e}", err=True)
            sys.exit(1)
    history.append(Utterance(speaker=Speaker.USER, text=text))

    kwargs = {}
    if system:
        kwargs["system_prompt"] = system
    if model and provider in MODEL_KWARGS:
        kwargs[MODEL_KWARGS[provider]] = model

    try:
        llm = registry.get_llm_provider(provider, **kwargs)
        llm.initialize()
    except Exception as e:
        logger.error("Failed to initialize LLM provider", error=str(e))
        click.echo(f"Error initializing {provider}: {e}", err=True)
        sys.exit(1)

    tools = ToolRegistry()
    if not no_tools:
        register_builtin_tools(tools, QuietPeriod(settings.conversation.quiet_wake_word))
    tools.freeze()

    loop = ToolLoop(
        llm,
        ToolExecutor(tools, call_timeout=settings.conversation.call_timeout),
        max_iterations=settings.conversation.max_tool_iterations,
        call_timeout=settings.conversation.call_timeout,
    )

    start_time = time.time()
    try:
        outcome = loop.run(tuple(history), tools.specs())
    except InferenceError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        try:
            llm.stop()
        except Exception as e:
            logger.warning("Error stopping LLM provider", error=str(e))
    total_latency_ms = (time.time() - start_time) * 1000

    if json_output:
        history.append(Utterance(speaker=Speaker.AGENT, text=outcome.text))
        output = {
            "response": outcome.text,
            "provider": provider,
            "model": model,
            "input": text,
            "tool_limit_reached": outcome.exhausted,
            "tool_calls": [
                {
                    "name": result.name,
                    "arguments": request.arguments,
                    **result.to_message(),
                }
                for tool_round in outcome.rounds
                for request, result in zip(tool_round.requests, tool_round.results)
            ],
            "metadata": {"total_latency_ms": round(total_latency_ms, 2)},
            "history": [utterance.to_dict() for utterance in history],
        }
        click.echo(json.dumps(output, indent=2, default=str))
    else:
        for tool_round in outcome.rounds:
            for result in tool_round.results:
                status = "ok" if result.success else f"failed: {result.error}"
                click.echo(f"[tool {result.name}: {status}]", err=True)
        click.echo(outcome.text)


if __name__ == "__main__":
    ask()
