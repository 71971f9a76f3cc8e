# Model backends
#
# Each backend implements the two-operation ModelInference interface:
#   - forward(input_ids, index_pos)  one decode step, returns logits
#   - reset_cache()                  start a fresh sequence
#
# The engine only ever talks to ModelInference; backends are picked by
# checkpoint format through the backend registry below.

from typing import Type

from ..hub import ModelFormat
from .base import ModelInference
from .causal_lm import CausalLMAdapter, GGUFCausalLMAdapter

_BACKEND_REGISTRY: dict[ModelFormat, Type[CausalLMAdapter]] = {
    ModelFormat.SAFETENSORS: CausalLMAdapter,
    ModelFormat.GGUF: GGUFCausalLMAdapter,
}


def get_backend(model_format: ModelFormat) -> Type[CausalLMAdapter]:
    """
    Get the backend class for a checkpoint format.

    Raises:
        ValueError: If no backend is registered for the format.
    """
    if model_format not in _BACKEND_REGISTRY:
        available = ", ".join(f.value for f in _BACKEND_REGISTRY)
        raise ValueError(f"No backend for format {model_format!r}. Available: {available}")
    return _BACKEND_REGISTRY[model_format]


__all__ = [
    "CausalLMAdapter",
    "GGUFCausalLMAdapter",
    "ModelInference",
    "get_backend",
]
