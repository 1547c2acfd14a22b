"""
Aether command line.

    aether run "list files in /tmp"   one-shot agent run, steps printed live
    aether chat                       text session (TASK/CHAT routed)
    aether voice                      voice session driven by the speech sidecar
    aether clear-cache                forget the cached runtime context
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from aether.bootstrap import build_context_service, build_orchestrator, build_session, build_synthesizer
from aether.config import Config, load_config
from aether.orchestrator import Step
from aether.sidecar import SpeechSidecar
from aether.version import get_version

logger = logging.getLogger(__name__)

_STEP_LABELS = {
    "thought": "THINK",
    "action": "ACT  ",
    "observation": "OBS  ",
    "error": "ERROR",
}


def print_step(step: Step) -> None:
    print(f"[{_STEP_LABELS.get(step.kind.value, step.kind.value)}] {step.content}", flush=True)


async def _run_objective(config: Config, objective: str) -> int:
    orchestrator = build_orchestrator(config)
    answer = await orchestrator.execute(objective, print_step)
    print()
    print(answer)
    return 0


async def _chat_loop(config: Config) -> int:
    session = build_session(config, on_step=print_step)
    loop = asyncio.get_running_loop()
    print("Aether text session. Prefix with / to force a task. Ctrl-D to quit.")
    while True:
        try:
            line = await loop.run_in_executor(None, input, "> ")
        except EOFError:
            print()
            return 0
        reply = await session.handle_text(line)
        if reply is not None:
            print(reply, flush=True)


async def _voice_loop(config: Config, speak: bool) -> int:
    executable = config.get("speech.sidecar_path")
    if not executable:
        print("speech.sidecar_path is not configured", file=sys.stderr)
        return 2

    sidecar = SpeechSidecar(
        executable=executable,
        wake_word=config.get("speech.wake_word"),
        model_path=config.get("speech.model_path"),
    )
    session = build_session(
        config,
        synthesizer=build_synthesizer(config, enabled=speak),
        speech_input=sidecar,
        on_step=print_step,
        on_status=lambda status: logger.info(f"[Status] {status}"),
    )
    unsubscribe = sidecar.on_event(session.dispatch)
    await sidecar.start()
    print("Listening for the wake phrase. Ctrl-C to quit.")
    try:
        code = await sidecar.wait_closed()
    finally:
        unsubscribe()
        await session.stop_listening()
        await sidecar.stop()
        await session.settle()
    return code or 0


def _clear_cache(config: Config) -> int:
    build_context_service(config).clear_cache()
    print("Runtime context cache cleared.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aether", description="Local desktop agent")
    parser.add_argument("--config", type=str, default=None, help="Path to aether.json")
    parser.add_argument("--log-level", type=str, default=None, help="Override system.log_level")
    info = get_version()
    parser.add_argument("--version", action="version", version=f"aether {info['version']} ({info['milestone']})")

    sub = parser.add_subparsers(dest="command", required=True)
    run = sub.add_parser("run", help="Run one objective through the agent")
    run.add_argument("objective", nargs="+", help="Objective text")
    sub.add_parser("chat", help="Interactive text session")
    voice = sub.add_parser("voice", help="Voice session via the speech sidecar")
    voice.add_argument("--no-speech", action="store_true", help="Do not speak replies")
    sub.add_parser("clear-cache", help="Clear the cached runtime context")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv(Path.cwd() / ".env")
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    logging.basicConfig(
        level=(args.log_level or config.get("system.log_level", "INFO")).upper(),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    if args.command == "clear-cache":
        return _clear_cache(config)

    try:
        if args.command == "run":
            return asyncio.run(_run_objective(config, " ".join(args.objective)))
        if args.command == "chat":
            return asyncio.run(_chat_loop(config))
        return asyncio.run(_voice_loop(config, speak=not args.no_speech))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
