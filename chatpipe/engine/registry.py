"""Model registry.

Maps model identifiers (``"qwen3"`` or ``"qwen3.8b_q4"``) to resolved hub
entries. The registry is built once from a nested mapping (usually parsed from
``models.toml``) and is read-only afterwards.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Iterator, Mapping

from chatpipe.settings import read_toml, registry_path

from .errors import (
    AmbiguousDefault,
    ConfigurationError,
    NoDefaultAvailable,
    UnknownArchitecture,
    UnknownVariant,
    UnsupportedArchitecture,
)
from .hub import HubEntry, HubEntryRaw, ModelArch

logger = logging.getLogger(__name__)

BASE_SUFFIX = "_base"


def parse_arch(token: str) -> ModelArch:
    try:
        return ModelArch(token)
    except ValueError:
        raise UnknownArchitecture(token) from None


def fill_tokenizer_repos(models: dict[str, HubEntryRaw]) -> None:
    """Resolve missing tokenizer repos for one architecture, in place.

    Pass 1 gives every ``*_base`` variant its own model repo as tokenizer repo
    and records it under the stripped name (``8b_base`` -> ``8b``). Pass 2 lets
    every other variant inherit from the base matching its name minus the last
    ``_<suffix>`` segment (``8b_q4`` -> ``8b``). Explicit values are kept.
    """
    base_tokenizers: dict[str, str] = {}

    for variant, raw in models.items():
        if not variant.endswith(BASE_SUFFIX):
            continue
        if raw.tokenizer_repo is None:
            raw.tokenizer_repo = raw.model_repo
        base_tokenizers[variant[: -len(BASE_SUFFIX)]] = raw.tokenizer_repo

    for variant, raw in models.items():
        if variant.endswith(BASE_SUFFIX) or raw.tokenizer_repo is not None:
            continue
        base_key = variant.rsplit("_", 1)[0]
        tokenizer_repo = base_tokenizers.get(base_key)
        if tokenizer_repo is not None:
            raw.tokenizer_repo = tokenizer_repo
        else:
            logger.debug("No base variant for %r; using its own model repo as tokenizer repo", variant)


class ModelRegistry:
    """Resolved hub entries, grouped by architecture."""

    def __init__(self, models: Mapping[ModelArch, Mapping[str, HubEntry]]) -> None:
        self._models: dict[ModelArch, dict[str, HubEntry]] = {
            arch: dict(variants) for arch, variants in models.items()
        }

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ModelRegistry":
        """
        Build a registry from a nested ``{arch: {variant: record}}`` mapping.

        Args:
            raw: Parsed configuration, e.g. the result of ``tomllib.load``.

        Returns:
            A registry with every tokenizer repo resolved.

        Raises:
            UnknownArchitecture: If a top-level key is not a known architecture.
            AmbiguousDefault: If an architecture marks more than one default.
            ConfigurationError: If a record is malformed.
        """
        models: dict[ModelArch, dict[str, HubEntry]] = {}

        for arch_name, variants in raw.items():
            arch = parse_arch(arch_name)
            if not isinstance(variants, Mapping):
                raise ConfigurationError(f"[{arch_name}]: expected a table of variants")

            working = {
                name: HubEntryRaw.from_mapping(record, where=f"[{arch_name}.{name}]")
                for name, record in variants.items()
            }
            fill_tokenizer_repos(working)

            defaults = [name for name, entry in working.items() if entry.default]
            if len(defaults) > 1:
                raise AmbiguousDefault(arch_name, defaults)

            models[arch] = {name: HubEntry.from_raw(arch, entry) for name, entry in working.items()}

        return cls(models)

    @classmethod
    def load(cls, path: str | os.PathLike[str] | None = None) -> "ModelRegistry":
        """Load the registry from a TOML file ($CHATPIPE_MODELS or ./models.toml)."""
        p = registry_path(path)
        registry = cls.from_dict(read_toml(p))
        logger.debug("Loaded model registry from %s (%d architectures)", p, len(registry._models))
        return registry

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def resolve(self, model_id: str) -> HubEntry:
        """
        Resolve a model identifier to its hub entry.

        Args:
            model_id: ``"<arch>"`` for the architecture default, or
                ``"<arch>.<variant>"``. Only the first ``.`` separates.

        Raises:
            UnknownArchitecture: ``<arch>`` is not a known architecture.
            UnsupportedArchitecture: ``<arch>`` is known but not configured.
            UnknownVariant: ``<variant>`` is absent for that architecture.
            NoDefaultAvailable: No variant given and none marked default.
        """
        arch_name, sep, variant = model_id.partition(".")
        arch = parse_arch(arch_name)

        models = self._models.get(arch)
        if models is None:
            raise UnsupportedArchitecture(arch_name)

        if sep:
            entry = models.get(variant)
            if entry is None:
                raise UnknownVariant(arch_name, variant)
            return entry

        for entry in models.values():
            if entry.default:
                return entry
        raise NoDefaultAvailable(arch_name)

    def architectures(self) -> list[ModelArch]:
        return list(self._models)

    def variants(self, arch: ModelArch | str) -> dict[str, HubEntry]:
        if not isinstance(arch, ModelArch):
            arch = parse_arch(arch)
        models = self._models.get(arch)
        if models is None:
            raise UnsupportedArchitecture(arch.value)
        return dict(models)

    def __iter__(self) -> Iterator[tuple[str, HubEntry]]:
        """Iterate ``("arch.variant", entry)`` pairs in declaration order."""
        for arch, models in self._models.items():
            for variant, entry in models.items():
                yield f"{arch.value}.{variant}", entry

    def __repr__(self) -> str:
        counts = ", ".join(f"{arch.value}={len(m)}" for arch, m in self._models.items())
        return f"ModelRegistry({counts})"
