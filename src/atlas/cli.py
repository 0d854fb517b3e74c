"""Atlas CLI - interactive desktop assistant.

Modes:
  - Interactive (default): `atlas`
  - Single turn: `atlas --once "open spotify"`
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from atlas import __version__
from atlas.agent.tool_base import ProgressEvent
from atlas.config import load_config
from atlas.errors import AtlasError
from atlas.router.pipeline import Assistant, Reply, build_assistant

logger = logging.getLogger(__name__)

EXIT_WORDS = frozenset({"exit", "quit", "bye", "goodbye"})


# ANSI colors
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    CYAN = "\033[36m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    RED = "\033[31m"


def _color(text: str, color: str) -> str:
    if not sys.stdout.isatty():
        return text
    return f"{color}{text}{Colors.RESET}"


def print_progress(event: ProgressEvent) -> None:
    parts = [event.phase]
    if event.percent is not None:
        parts.append(f"{event.percent:.0f}%")
    if event.items is not None:
        parts.append(f"{event.items} items")
    print(_color(f"  … {event.tool}: {' '.join(parts)}", Colors.DIM), flush=True)


def print_reply(reply: Reply) -> None:
    if reply.awaiting_confirmation:
        color = Colors.YELLOW
    elif not reply.ok:
        color = Colors.RED
    else:
        color = Colors.GREEN
    print(_color(reply.text, color), flush=True)


async def run_turn(assistant: Assistant, text: str) -> Reply:
    """Handle one turn; Ctrl-C while it runs cancels the tool call."""
    loop = asyncio.get_running_loop()
    installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, assistant.cancel_inflight, "interrupted")
        installed = True
    except (NotImplementedError, RuntimeError):
        # No signal handlers on this platform; Ctrl-C aborts the turn instead.
        pass
    try:
        return await assistant.handle(text)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def repl(assistant: Assistant) -> int:
    print(_color(f"Atlas {__version__}. Type \"help\" for ideas, \"exit\" to quit.", Colors.CYAN))
    while True:
        try:
            text = input(_color("you> ", Colors.BOLD)).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not text:
            continue
        if text.lower() in EXIT_WORDS:
            break
        print_reply(asyncio.run(run_turn(assistant, text)))
        assistant.save()
    assistant.save()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="atlas",
        description="Atlas - desktop assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  atlas                              # interactive
  atlas --once "open spotify"        # single turn
  atlas --config ~/atlas.yaml --debug
""",
    )
    parser.add_argument("--once", default=None, metavar="TEXT", help="Run a single turn and exit")
    parser.add_argument("--config", default=None, metavar="PATH", help="YAML config file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--no-llm", action="store_true", help="Disable the language model backend")
    parser.add_argument("--version", action="version", version=f"atlas {__version__}")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
    except AtlasError as e:
        print(_color(f"Config error: {e}", Colors.RED), file=sys.stderr)
        return 2
    if args.no_llm:
        config.llm.enabled = False

    assistant = build_assistant(config, on_progress=print_progress)

    if args.once is not None:
        reply = asyncio.run(run_turn(assistant, args.once))
        print_reply(reply)
        assistant.save()
        return 0 if reply.ok else 1

    return repl(assistant)


if __name__ == "__main__":
    raise SystemExit(main())
