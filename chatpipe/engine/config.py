"""Inference (sampling/decoding) configuration."""

from __future__ import annotations

from dataclasses import dataclass, field

import torch

from chatpipe.runtime import dtype_from_string, resolve_device

from .errors import ConfigurationError


@dataclass(frozen=True)
class InferenceConfig:
    """Sampling and decoding parameters for one engine instance.

    Notes:
    - `temperature=0` selects greedy decoding; `seed` is then irrelevant.
    - `repeat_penalty=1.0` disables the repetition penalty.
    - `device=None` resolves to the first CUDA device, or CPU.
    """

    # The length of the sample to generate (in tokens).
    sample_len: int = 1000
    # The temperature used to generate samples, use 0 for greedy sampling.
    temperature: float = 0.8
    # Nucleus sampling probability cutoff.
    top_p: float | None = None
    # The seed to use when generating random samples.
    seed: int = 299792458
    # Penalty to be applied for repeating tokens, 1. means no penalty.
    repeat_penalty: float = 1.1
    # The context size (in answer tokens) to consider for the repeat penalty.
    repeat_last_n: int = 64
    device: torch.device | None = field(default=None)
    # Weights dtype for dense checkpoints.
    dtype: str = "bfloat16"

    def __post_init__(self) -> None:
        try:
            device = resolve_device(self.device)
        except RuntimeError as exc:
            raise ConfigurationError(f"Invalid device {self.device!r}: {exc}") from exc
        object.__setattr__(self, "device", device)

    def validate(self) -> None:
        if isinstance(self.sample_len, bool) or not isinstance(self.sample_len, int) or self.sample_len <= 0:
            raise ConfigurationError("'sample_len' must be a positive integer.")
        if self.temperature is None or self.temperature < 0:
            raise ConfigurationError("'temperature' must be >= 0.")
        if self.top_p is not None and not (0.0 < self.top_p <= 1.0):
            raise ConfigurationError("'top_p' must be in (0, 1].")
        if isinstance(self.seed, bool) or not isinstance(self.seed, int) or self.seed < 0:
            raise ConfigurationError("'seed' must be a non-negative integer.")
        if self.repeat_penalty < 1.0:
            raise ConfigurationError("'repeat_penalty' must be >= 1.")
        if isinstance(self.repeat_last_n, bool) or not isinstance(self.repeat_last_n, int) or self.repeat_last_n <= 0:
            raise ConfigurationError("'repeat_last_n' must be a positive integer.")
        try:
            dtype_from_string(self.dtype)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

    @property
    def torch_dtype(self) -> torch.dtype:
        return dtype_from_string(self.dtype)
