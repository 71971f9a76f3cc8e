"""Runtime environment checks and device/dtype helpers."""

from __future__ import annotations

import functools

import torch


@functools.lru_cache(maxsize=1)
def is_cuda_available() -> bool:
    """Check if CUDA is available."""
    return torch.cuda.is_available()


def default_device() -> torch.device:
    """First CUDA device when available, CPU otherwise."""
    if is_cuda_available():
        return torch.device("cuda", 0)
    return torch.device("cpu")


def resolve_device(device: str | torch.device | None) -> torch.device:
    if device is None:
        return default_device()
    if isinstance(device, torch.device):
        return device
    if device.strip().lower() == "auto":
        return default_device()
    return torch.device(device)


def dtype_from_string(dtype: str) -> torch.dtype:
    dt = dtype.strip().lower()
    if dt in {"fp16", "float16", "half"}:
        return torch.float16
    if dt in {"bf16", "bfloat16"}:
        return torch.bfloat16
    if dt in {"fp32", "float32", "float"}:
        return torch.float32
    raise ValueError(f"Unsupported dtype: {dtype!r}")
