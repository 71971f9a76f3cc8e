"""Hub entry records.

A registry file declares, per architecture, a set of variants. Each variant is
parsed into a mutable `HubEntryRaw` working copy; once tokenizer repos are
resolved it is frozen into a `HubEntry`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from .errors import ConfigurationError

DEFAULT_MODEL_FILE = "model.safetensors"

_RAW_FIELDS = {"model_repo", "model_file", "tokenizer_repo", "default"}


class ModelArch(str, Enum):
    QWEN3 = "qwen3"
    LLAMA = "llama"

    def __str__(self) -> str:
        return self.value


class ModelFormat(str, Enum):
    SAFETENSORS = "safetensors"
    GGUF = "gguf"


@dataclass
class HubEntryRaw:
    """A registry record as written in the config file (tokenizer repo optional)."""

    model_repo: str
    model_file: str = DEFAULT_MODEL_FILE
    tokenizer_repo: str | None = None
    default: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, where: str) -> "HubEntryRaw":
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"{where}: expected a table, got {type(data).__name__}")

        unknown = sorted(set(data) - _RAW_FIELDS)
        if unknown:
            raise ConfigurationError(f"{where}: unknown field(s): {', '.join(unknown)}")

        model_repo = data.get("model_repo")
        if not isinstance(model_repo, str) or not model_repo:
            raise ConfigurationError(f"{where}: 'model_repo' is required and must be a non-empty string")

        model_file = data.get("model_file", DEFAULT_MODEL_FILE)
        if not isinstance(model_file, str) or not model_file:
            raise ConfigurationError(f"{where}: 'model_file' must be a non-empty string")

        tokenizer_repo = data.get("tokenizer_repo")
        if tokenizer_repo is not None and (not isinstance(tokenizer_repo, str) or not tokenizer_repo):
            raise ConfigurationError(f"{where}: 'tokenizer_repo' must be a non-empty string")

        default = data.get("default", False)
        if not isinstance(default, bool):
            raise ConfigurationError(f"{where}: 'default' must be a boolean")

        return cls(
            model_repo=model_repo,
            model_file=model_file,
            tokenizer_repo=tokenizer_repo,
            default=default,
        )


@dataclass(frozen=True)
class HubEntry:
    """Resolved location of one model variant and its tokenizer."""

    arch: ModelArch
    model_repo: str
    model_file: str
    tokenizer_repo: str
    default: bool = False

    @classmethod
    def from_raw(cls, arch: ModelArch, raw: HubEntryRaw) -> "HubEntry":
        return cls(
            arch=arch,
            model_repo=raw.model_repo,
            model_file=raw.model_file,
            tokenizer_repo=raw.tokenizer_repo or raw.model_repo,
            default=raw.default,
        )

    @property
    def model_format(self) -> ModelFormat:
        if self.model_file.lower().endswith(".gguf") or "gguf" in self.model_repo.lower():
            return ModelFormat.GGUF
        return ModelFormat.SAFETENSORS
