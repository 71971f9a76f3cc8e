import json

import pytest

from apps.cli import main as cli_main
from apps.cli.chat_repl import chat_once
from apps.cli.main import build_parser, main
from apps.cli.output import entry_to_dict, format_stats, format_table
from chatpipe.engine.chat_types import GenerationStats
from chatpipe.engine.errors import InferenceError
from chatpipe.engine.hub import HubEntry, ModelArch

_REGISTRY = """
[qwen3.4b_base]
model_repo = "Org/M4B"

[qwen3.4b_q4]
model_repo = "Org/M4B-GGUF"
model_file = "m4b-q4.gguf"
default = true
"""


@pytest.fixture
def registry_file(tmp_path):
    path = tmp_path / "models.toml"
    path.write_text(_REGISTRY, encoding="utf-8")
    return path


def test_parser_chat_defaults():
    args = build_parser().parse_args(["chat"])
    assert args.command == "chat"
    assert args.model == "qwen3"
    assert args.sample_len == 1000
    assert args.temperature == pytest.approx(0.8)
    assert args.top_p is None
    assert args.seed == 299792458
    assert args.repeat_penalty == pytest.approx(1.1)
    assert args.repeat_last_n == 64


def test_parser_chat_overrides():
    args = build_parser().parse_args(
        ["--log-level", "debug", "chat", "--model", "llama.8b_base", "--temperature", "0", "--top-p", "0.9"]
    )
    assert args.log_level == "debug"
    assert args.model == "llama.8b_base"
    assert args.temperature == 0.0
    assert args.top_p == pytest.approx(0.9)


def test_parser_resolve_json():
    args = build_parser().parse_args(["resolve", "qwen3.4b_q4", "--json"])
    assert args.command == "resolve"
    assert args.model_id == "qwen3.4b_q4"
    assert args.json is True


def test_format_table_aligns_columns():
    out = format_table(["A", "LONG"], [["xyz", "1"], ["p", "22"]])
    assert out.splitlines() == ["A    LONG", "---  ----", "xyz  1", "p    22"]


def test_entry_to_dict():
    entry = HubEntry(arch=ModelArch.LLAMA, model_repo="Org/L-GGUF", model_file="l.gguf", tokenizer_repo="Org/L")
    assert entry_to_dict("llama.q4", entry) == {
        "id": "llama.q4",
        "arch": "llama",
        "model_repo": "Org/L-GGUF",
        "model_file": "l.gguf",
        "tokenizer_repo": "Org/L",
        "format": "gguf",
        "default": False,
    }


def test_format_stats():
    stats = GenerationStats(prompt_tokens=10, completion_tokens=20, elapsed_s=2.0, finish_reason="stop")
    assert format_stats(stats) == "tokens=10+20 tok/s=10.00 finish=stop wall=2.000s"


def test_models_json(registry_file, capsys):
    assert main(["--registry", str(registry_file), "models", "--json"]) == 0
    rows = json.loads(capsys.readouterr().out)
    assert [r["id"] for r in rows] == ["qwen3.4b_base", "qwen3.4b_q4"]
    assert rows[1]["tokenizer_repo"] == "Org/M4B"
    assert rows[1]["default"] is True


def test_resolve_table(registry_file, capsys):
    assert main(["--registry", str(registry_file), "resolve", "qwen3"]) == 0
    out = capsys.readouterr().out
    assert "Org/M4B-GGUF" in out
    assert "m4b-q4.gguf" in out


def test_resolve_unknown_variant_exits_nonzero(registry_file, capsys):
    assert main(["--registry", str(registry_file), "resolve", "qwen3.70b"]) == 1
    assert "70b" in capsys.readouterr().err


def test_missing_registry_exits_nonzero(tmp_path, capsys):
    assert main(["--registry", str(tmp_path / "nope.toml"), "models"]) == 1
    assert "not found" in capsys.readouterr().err


def test_chat_prompt_uses_engine(registry_file, monkeypatch, capsys):
    created = {}

    class _Engine:
        last_stats = None
        closed = False

        def chat(self, prompt):
            yield "echo: "
            yield prompt

        def close(self):
            self.closed = True

    async def fake_create(model_id, config, *, registry, system_prompt):
        created.update(model_id=model_id, config=config, system_prompt=system_prompt)
        created["engine"] = _Engine()
        return created["engine"]

    monkeypatch.setattr(cli_main.TextGeneration, "create", fake_create)
    code = main(
        [
            "--registry",
            str(registry_file),
            "chat",
            "--prompt",
            "hi",
            "--temperature",
            "0",
            "--device",
            "cpu",
            "--system",
            "be brief",
        ]
    )
    assert code == 0
    assert capsys.readouterr().out == "echo: hi\n"
    assert created["model_id"] == "qwen3"
    assert created["config"].temperature == 0.0
    assert created["system_prompt"] == "be brief"
    assert created["engine"].closed is True


def test_chat_invalid_config_exits_nonzero(registry_file, capsys):
    assert main(["--registry", str(registry_file), "chat", "--prompt", "x", "--repeat-penalty", "0.5"]) == 1
    assert "repeat_penalty" in capsys.readouterr().err


def test_chat_once_reports_failures(capsys):
    class _Failing:
        last_stats = None

        def chat(self, prompt):
            yield "partial"
            raise InferenceError("backend died")

    assert chat_once(_Failing(), "x") == 1
    captured = capsys.readouterr()
    assert captured.out == "partial"
    assert "backend died" in captured.err
