from __future__ import annotations

import atexit
import sys
import textwrap
from pathlib import Path
from typing import TYPE_CHECKING

# Enable readline for arrow keys, history navigation, and line editing.
try:
    import readline
except ImportError:
    readline = None  # type: ignore[assignment]  # Windows fallback

from apps.cli.output import format_stats
from chatpipe.engine.errors import ChatpipeError, GenerationInProgressError

if TYPE_CHECKING:
    from chatpipe.engine.text_generation import TextGeneration


def _chat_history_file_path() -> Path:
    return Path.home() / ".config" / "chatpipe" / "chat_history"


def _setup_readline_history() -> None:
    """Set up persistent input history for the REPL."""
    if readline is None:
        return
    history_file = _chat_history_file_path()
    history_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        readline.read_history_file(history_file)
    except FileNotFoundError:
        pass
    readline.set_history_length(1000)
    atexit.register(readline.write_history_file, history_file)


_CHAT_COMMANDS = ["/help", "/exit", "/history", "/stats", "/model"]


def _setup_completer() -> None:
    if readline is None:
        return

    def completer(text: str, state: int) -> str | None:
        matches = [cmd for cmd in _CHAT_COMMANDS if cmd.startswith(text)] if text.startswith("/") else []
        return matches[state] if state < len(matches) else None

    readline.set_completer(completer)
    readline.set_completer_delims(" \t\n")
    readline.parse_and_bind("tab: complete")


def _cmd_help() -> None:
    print(
        "\n".join(
            [
                "commands:",
                "  /help",
                "  /exit           exit",
                "  /history [n]    show the last n conversation turns (default 10)",
                "  /stats          show last turn metrics",
                "  /model          show the loaded model",
            ]
        )
    )


def _cmd_history(engine: TextGeneration, n: int = 10) -> None:
    turns = engine.history[-n:] if n > 0 else ()
    if not turns:
        print("(no turns yet)")
        return
    for msg in turns:
        body = textwrap.shorten(msg.content.replace("\n", " "), width=160, placeholder=" ...")
        print(f"{msg.role:>9}: {body}")


def stream_turn(engine: TextGeneration, prompt: str) -> bool:
    """Stream one answer to stdout. Returns False if the turn was interrupted."""
    stream = engine.chat(prompt)
    try:
        for fragment in stream:
            sys.stdout.write(fragment)
            sys.stdout.flush()
    except KeyboardInterrupt:
        stream.close()
        sys.stdout.write("\n(cancelled)\n")
        sys.stdout.flush()
        return False
    sys.stdout.write("\n")
    sys.stdout.flush()
    return True


def chat_once(engine: TextGeneration, prompt: str, *, show_stats: bool = False) -> int:
    """Non-interactive mode: answer a single prompt and exit."""
    try:
        if not stream_turn(engine, prompt):
            return 130
    except ChatpipeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    if show_stats and engine.last_stats is not None:
        print(format_stats(engine.last_stats), file=sys.stderr)
    return 0


def chat_repl(engine: TextGeneration, *, model_id: str, show_stats: bool = True) -> int:
    _setup_readline_history()
    _setup_completer()

    print(f"model={model_id}")
    print("type /help for commands")

    while True:
        try:
            raw = input(f"chatpipe({model_id})> ")
        except EOFError:
            print()
            return 0
        except KeyboardInterrupt:
            print("^C")
            continue

        line = raw.strip()
        if not line:
            continue

        if line.startswith("/"):
            cmd, _, arg = line[1:].partition(" ")
            arg = arg.strip()
            if cmd in {"exit", "quit", "q"}:
                return 0
            if cmd == "help":
                _cmd_help()
            elif cmd == "history":
                try:
                    n = int(arg) if arg else 10
                except ValueError:
                    print("usage: /history [n]", file=sys.stderr)
                    continue
                _cmd_history(engine, n)
            elif cmd == "stats":
                if engine.last_stats is None:
                    print("(no completed turn yet)")
                else:
                    print(format_stats(engine.last_stats))
            elif cmd == "model":
                info = engine.model_info
                for key in sorted(info):
                    print(f"{key}={info[key]}")
            else:
                print(f"unknown command: /{cmd} (type /help)", file=sys.stderr)
            continue

        try:
            completed = stream_turn(engine, line)
        except GenerationInProgressError as exc:
            print(str(exc), file=sys.stderr)
            continue
        except ChatpipeError as exc:
            # The turn was not recorded; the conversation is unchanged.
            print(f"error: {exc}", file=sys.stderr)
            continue
        if completed and show_stats and engine.last_stats is not None:
            print(format_stats(engine.last_stats))
