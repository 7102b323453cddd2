"""Command-line chat front-end wiring settings, client and orchestrator together."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable, Sequence, TextIO

from .ai.client import ChatClient
from .ai.telemetry import NOOP_TRACER, AgentTracer, InMemoryTelemetrySink, RecordingTracer, format_span_summary
from .chat.message_model import ConversationState
from .chat.orchestrator import ChatOrchestrator, StaticPromptProvider, TurnInProgressError
from .chat.references import ReferenceExtractor, StaticEntityResolver
from .services.settings import Settings, load_settings, redact_secret
from .utils.logging import setup_logging

LOGGER = logging.getLogger(__name__)

_QUIT_COMMANDS = frozenset({"/quit", "/exit"})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cvagent", description="Chat with a streaming CV assistant.")
    parser.add_argument("--settings", type=Path, help="Path to a JSON settings file.")
    parser.add_argument("--entities", type=Path, help="JSON array of entities used to resolve inline references.")
    parser.add_argument(
        "--system-prompt",
        default="",
        help="System prompt text, or @path to read it from a file.",
    )
    parser.add_argument("--log-level", default="WARNING", help="Root log level (default: WARNING).")
    parser.add_argument("--log-dir", type=Path, help="Directory for the rotating log file.")
    parser.add_argument("--trace", action="store_true", help="Record LLM spans and print a summary per turn.")
    return parser


def load_system_prompt(value: str) -> str:
    """Return *value*, or the contents of the file it names when prefixed with ``@``."""

    if value.startswith("@"):
        return Path(value[1:]).expanduser().read_text(encoding="utf-8").strip()
    return value


def build_orchestrator(
    settings: Settings,
    *,
    system_prompt: str = "",
    entities: Path | None = None,
    tracer: AgentTracer = NOOP_TRACER,
) -> ChatOrchestrator:
    client = ChatClient(
        settings.client_settings(),
        rate_limiter=settings.rate_limiter(),
        tracer=tracer,
    )
    extractor = ReferenceExtractor(StaticEntityResolver.from_json_file(entities)) if entities else None
    return ChatOrchestrator(
        client,
        reference_extractor=extractor,
        prompt_provider=StaticPromptProvider(system_prompt),
        max_history=settings.max_history,
        stream_timeout=settings.stream_timeout,
        idle_suggestions=settings.idle_suggestions,
    )


class ConsoleRenderer:
    """Prints streamed content as it grows and the final turn details."""

    def __init__(self, out: TextIO) -> None:
        self._out = out
        self._printed = 0

    def __call__(self, state: ConversationState) -> None:
        message = state.streaming_message
        if message is None:
            return
        content = message.content
        if len(content) > self._printed:
            self._out.write(content[self._printed:])
            self._out.flush()
        self._printed = len(content)

    def finish_turn(self, state: ConversationState) -> None:
        self._printed = 0
        if state.error is not None:
            self._out.write(f"\n[error:{state.error.kind.value}] {state.error.message}\n")
            return
        if not state.messages:
            return
        last = state.messages[-1]
        # Extraction rewrites the streamed text; show the final form.
        self._out.write("\n---\n" + last.content + "\n")
        for reference in last.references:
            self._out.write(f"  ref {reference.kind}: {reference.label} ({reference.id})\n")
        for suggestion in last.suggestions:
            self._out.write(f"  > {suggestion}\n")


async def run_console(
    orchestrator: ChatOrchestrator,
    *,
    read_line: Callable[[], str] | None = None,
    out: TextIO = sys.stdout,
    tracer: RecordingTracer | None = None,
) -> int:
    """Read lines until EOF or ``/quit`` and stream each reply to *out*."""

    loop = asyncio.get_running_loop()
    reader = read_line or sys.stdin.readline
    renderer = ConsoleRenderer(out)
    unsubscribe = orchestrator.state.subscribe(renderer, replay=False)
    for suggestion in orchestrator.snapshot.suggestions:
        out.write(f"  > {suggestion}\n")
    try:
        while True:
            out.write("you> ")
            out.flush()
            line = await loop.run_in_executor(None, reader)
            if not line:
                break
            text = line.rstrip("\n")
            command = text.strip().lower()
            if command in _QUIT_COMMANDS:
                break
            if command == "/clear":
                orchestrator.clear_history()
                out.write("(history cleared)\n")
                continue
            if command == "/retry":
                task = orchestrator.retry()
                if task is None:
                    out.write("(nothing to retry)\n")
                    continue
            else:
                try:
                    task = orchestrator.submit(text)
                except TurnInProgressError:
                    out.write("(still answering)\n")
                    continue
            await task
            renderer.finish_turn(orchestrator.snapshot)
            if tracer is not None:
                spans = tracer.spans(limit=1)
                if spans:
                    out.write(f"  [{format_span_summary(spans[-1])}]\n")
    finally:
        unsubscribe()
        await orchestrator.aclose()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = getattr(logging, str(args.log_level).upper(), None)
    if not isinstance(level, int):
        parser.error(f"Unknown log level: {args.log_level}")
    settings = load_settings(args.settings)
    log_path = setup_logging(level, log_dir=args.log_dir, debug=settings.debug_logging)
    LOGGER.info(
        "Starting cvagent (model=%s, api_key=%s, log=%s)", settings.model, redact_secret(settings.api_key), log_path
    )

    if not settings.api_key:
        print("No API key configured; set CVAGENT_API_KEY or add api_key to the settings file.", file=sys.stderr)
        return 2

    try:
        system_prompt = load_system_prompt(args.system_prompt)
    except OSError as exc:
        parser.error(f"Cannot read system prompt: {exc}")
    tracer = RecordingTracer(InMemoryTelemetrySink()) if args.trace else None

    async def _run() -> int:
        orchestrator = build_orchestrator(
            settings,
            system_prompt=system_prompt,
            entities=args.entities,
            tracer=tracer or NOOP_TRACER,
        )
        return await run_console(orchestrator, tracer=tracer)

    try:
        return asyncio.run(_run())
    except KeyboardInterrupt:
        return 130


__all__ = ["build_parser", "build_orchestrator", "load_system_prompt", "run_console", "main"]
