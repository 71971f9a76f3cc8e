from __future__ import annotations

import json
from typing import Any, Iterable, Sequence

from chatpipe.engine.chat_types import GenerationStats
from chatpipe.engine.hub import HubEntry


def print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, sort_keys=True))


def format_table(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    rows_list = [[str(c) for c in r] for r in rows]
    widths = [len(h) for h in headers]
    for r in rows_list:
        for i, cell in enumerate(r[: len(widths)]):
            widths[i] = max(widths[i], len(cell))

    def fmt_row(cols: Sequence[str]) -> str:
        padded = [c.ljust(widths[i]) if i < len(widths) else c for i, c in enumerate(cols)]
        return "  ".join(padded).rstrip()

    out = [fmt_row(list(headers)), fmt_row(["-" * w for w in widths])]
    out.extend(fmt_row(r) for r in rows_list)
    return "\n".join(out)


def entry_to_dict(model_id: str, entry: HubEntry) -> dict[str, Any]:
    return {
        "id": model_id,
        "arch": entry.arch.value,
        "model_repo": entry.model_repo,
        "model_file": entry.model_file,
        "tokenizer_repo": entry.tokenizer_repo,
        "format": entry.model_format.value,
        "default": entry.default,
    }


def format_entries(entries: Iterable[tuple[str, HubEntry]]) -> str:
    headers = ["ID", "MODEL REPO", "FILE", "TOKENIZER", "DEFAULT"]
    rows = [
        [model_id, e.model_repo, e.model_file, e.tokenizer_repo, "*" if e.default else ""]
        for model_id, e in entries
    ]
    return format_table(headers, rows)


def format_stats(stats: GenerationStats) -> str:
    parts = [f"tokens={stats.prompt_tokens}+{stats.completion_tokens}"]
    if stats.tok_per_s is not None:
        parts.append(f"tok/s={stats.tok_per_s:.2f}")
    parts.append(f"finish={stats.finish_reason}")
    parts.append(f"wall={stats.elapsed_s:.3f}s")
    return " ".join(parts)
