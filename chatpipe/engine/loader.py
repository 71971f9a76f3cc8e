"""Model loader: turns a resolved hub entry into ready-to-use components."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .adapters import ModelInference, get_backend
from .artifacts import HubRepo
from .config import InferenceConfig
from .errors import ArtifactNotFound, ConfigurationError, MissingEosTokenError, TokenizerLoadError
from .hub import DEFAULT_MODEL_FILE, HubEntry, ModelFormat

logger = logging.getLogger(__name__)


@dataclass
class LoadedModel:
    """Everything the generation engine needs from the hub."""

    entry: HubEntry
    model: ModelInference
    tokenizer: Any
    eos_token_id: int


def _read_json(path: Path) -> dict[str, Any]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} must contain a JSON object")
    return data


def parse_eos_token_id(config: dict[str, Any]) -> int:
    """Extract ``eos_token_id`` from a model ``config.json`` payload.

    A list of ids (several stop tokens) resolves to its first element.
    """
    value = config.get("eos_token_id")
    if isinstance(value, list) and value:
        value = value[0]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MissingEosTokenError("eos_token_id not found in model config.json")
    return value


class ModelLoader:
    """Loads model weights, tokenizer and EOS id for one hub entry."""

    def __init__(self, *, token: str | None = None) -> None:
        self._token = token

    async def load(self, entry: HubEntry, config: InferenceConfig) -> LoadedModel:
        """Load all components at once."""
        if entry.model_format is ModelFormat.SAFETENSORS and entry.model_file != DEFAULT_MODEL_FILE:
            # transformers only picks up the standard weight names.
            raise ConfigurationError(
                f"{entry.model_repo}: unsupported weights file {entry.model_file!r}; dense checkpoints must use "
                f"{DEFAULT_MODEL_FILE!r} (or its sharded index), or a .gguf file"
            )

        model_repo = HubRepo(entry.model_repo, token=self._token)
        tokenizer_repo = HubRepo(entry.tokenizer_repo, token=self._token)

        if entry.model_format is ModelFormat.GGUF:
            model_task = self._load_gguf(model_repo, entry, config)
        else:
            model_task = self._load_safetensors(model_repo, entry, config)

        model, tokenizer, eos_token_id = await asyncio.gather(
            model_task,
            self.load_tokenizer(tokenizer_repo),
            self.load_eos_token_id(tokenizer_repo),
        )
        logger.info(
            "Loaded %s (%s) on %s, tokenizer from %s",
            entry.model_repo,
            entry.model_format.value,
            config.device,
            entry.tokenizer_repo,
        )
        return LoadedModel(entry=entry, model=model, tokenizer=tokenizer, eos_token_id=eos_token_id)

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    async def load_tokenizer(self, repo: HubRepo) -> Any:
        config_path = await repo.get("tokenizer_config.json")
        await repo.get("tokenizer.json")

        from transformers import AutoTokenizer

        try:
            return await asyncio.to_thread(AutoTokenizer.from_pretrained, str(config_path.parent))
        except (OSError, ValueError) as exc:
            raise TokenizerLoadError(f"Failed to load tokenizer from {repo.repo_id}: {exc}") from exc

    async def load_eos_token_id(self, repo: HubRepo) -> int:
        path = await repo.get("config.json")
        try:
            config = _read_json(path)
        except ValueError as exc:
            raise MissingEosTokenError(f"Unreadable config.json in {repo.repo_id}: {exc}") from exc
        return parse_eos_token_id(config)

    async def _load_gguf(self, repo: HubRepo, entry: HubEntry, config: InferenceConfig) -> ModelInference:
        path = await repo.get_gguf(entry.model_file)
        backend = get_backend(ModelFormat.GGUF)
        return await asyncio.to_thread(
            backend.from_pretrained,
            path.parent,
            device=config.device,
            gguf_file=path.name,
        )

    async def _load_safetensors(self, repo: HubRepo, entry: HubEntry, config: InferenceConfig) -> ModelInference:
        try:
            weights = [await repo.get(entry.model_file)]
        except ArtifactNotFound:
            # Single file absent: the checkpoint is sharded.
            weights = await repo.get_sharded_artifacts()
        logger.debug("Weights for %s: %s", entry.model_repo, [p.name for p in weights])

        config_path = await repo.get("config.json")
        model_type = _read_json(config_path).get("model_type")
        if model_type != entry.arch.value:
            logger.warning(
                "Registry lists %s under %r but its config.json declares model_type=%r",
                entry.model_repo,
                entry.arch.value,
                model_type,
            )

        backend = get_backend(ModelFormat.SAFETENSORS)
        return await asyncio.to_thread(
            backend.from_pretrained,
            config_path.parent,
            device=config.device,
            dtype=config.torch_dtype,
        )
