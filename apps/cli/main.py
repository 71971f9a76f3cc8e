"""`chatpipe` command-line interface.

Run from source with:
  `python -m apps.cli.main --help`
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from apps.cli.chat_repl import chat_once, chat_repl
from apps.cli.output import entry_to_dict, format_entries, print_json
from chatpipe.engine.config import InferenceConfig
from chatpipe.engine.errors import ChatpipeError
from chatpipe.engine.registry import ModelRegistry
from chatpipe.engine.text_generation import DEFAULT_MODEL_ID, TextGeneration

logger = logging.getLogger("chatpipe.cli")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chatpipe", description="Streaming chat with local LLMs from the Hugging Face Hub")
    p.add_argument(
        "--registry",
        default=None,
        help="Model registry TOML (default: $CHATPIPE_MODELS or ./models.toml)",
    )
    p.add_argument(
        "--log-level",
        default="warning",
        choices=["debug", "info", "warning", "error"],
        help="Logging level (default: %(default)s)",
    )

    sub = p.add_subparsers(dest="command")

    defaults = InferenceConfig.__dataclass_fields__
    chat = sub.add_parser("chat", help="Chat REPL (or answer a single --prompt)")
    chat.add_argument(
        "--model",
        default=DEFAULT_MODEL_ID,
        help="Model id: <arch> or <arch>.<variant> (default: %(default)s)",
    )
    chat.add_argument("--prompt", default=None, help="Answer this prompt and exit")
    chat.add_argument("--system", default=None, help="System prompt for the conversation")
    chat.add_argument(
        "--sample-len",
        type=int,
        default=defaults["sample_len"].default,
        help="Maximum tokens per answer (default: %(default)s)",
    )
    chat.add_argument(
        "--temperature",
        type=float,
        default=defaults["temperature"].default,
        help="Sampling temperature, 0 for greedy (default: %(default)s)",
    )
    chat.add_argument("--top-p", type=float, default=None, help="Nucleus sampling cutoff (default: disabled)")
    chat.add_argument(
        "--seed",
        type=int,
        default=defaults["seed"].default,
        help="Sampling seed (default: %(default)s)",
    )
    chat.add_argument(
        "--repeat-penalty",
        type=float,
        default=defaults["repeat_penalty"].default,
        help="Repetition penalty, 1 disables (default: %(default)s)",
    )
    chat.add_argument(
        "--repeat-last-n",
        type=int,
        default=defaults["repeat_last_n"].default,
        help="Answer tokens considered by the repetition penalty (default: %(default)s)",
    )
    chat.add_argument("--device", default=None, help="Torch device, e.g. cpu, cuda:0 (default: auto)")
    chat.add_argument(
        "--dtype",
        default=defaults["dtype"].default,
        help="Weights dtype: float16|bfloat16|float32 (default: %(default)s)",
    )
    chat.add_argument("--no-stats", action="store_true", help="Do not print per-turn metrics")

    models = sub.add_parser("models", help="List configured models")
    models.add_argument("--json", action="store_true", help="Machine-readable JSON output")

    resolve = sub.add_parser("resolve", help="Show the hub entry a model id resolves to")
    resolve.add_argument("model_id", help="<arch> or <arch>.<variant>")
    resolve.add_argument("--json", action="store_true", help="Machine-readable JSON output")

    return p


def _config_from_args(args: argparse.Namespace) -> InferenceConfig:
    config = InferenceConfig(
        sample_len=args.sample_len,
        temperature=args.temperature,
        top_p=args.top_p,
        seed=args.seed,
        repeat_penalty=args.repeat_penalty,
        repeat_last_n=args.repeat_last_n,
        device=args.device,
        dtype=args.dtype,
    )
    config.validate()
    return config


def _cmd_models(registry: ModelRegistry, *, json_output: bool) -> int:
    entries = list(registry)
    if json_output:
        print_json([entry_to_dict(model_id, entry) for model_id, entry in entries])
        return 0
    if not entries:
        print("(no models configured)")
        return 0
    print(format_entries(entries))
    return 0


def _cmd_resolve(registry: ModelRegistry, model_id: str, *, json_output: bool) -> int:
    entry = registry.resolve(model_id)
    if json_output:
        print_json(entry_to_dict(model_id, entry))
    else:
        print(format_entries([(model_id, entry)]))
    return 0


def _cmd_chat(registry: ModelRegistry, args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    engine = asyncio.run(
        TextGeneration.create(args.model, config, registry=registry, system_prompt=args.system)
    )
    show_stats = not args.no_stats
    try:
        if args.prompt is not None:
            return chat_once(engine, args.prompt, show_stats=show_stats)
        return chat_repl(engine, model_id=args.model, show_stats=show_stats)
    finally:
        engine.close()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    argv_list = list(sys.argv[1:]) if argv is None else list(argv)
    args = parser.parse_args(argv_list)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # `chatpipe` defaults to `chatpipe chat`.
    if args.command is None:
        args = parser.parse_args([*argv_list, "chat"])

    try:
        registry = ModelRegistry.load(args.registry)
        if args.command == "models":
            return _cmd_models(registry, json_output=bool(args.json))
        if args.command == "resolve":
            return _cmd_resolve(registry, args.model_id, json_output=bool(args.json))
        if args.command == "chat":
            return _cmd_chat(registry, args)
    except ChatpipeError as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130

    parser.error(f"Unknown command: {args.command!r}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
