"""Backends for Hugging Face ``transformers`` causal language models."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from ..errors import EmptyPromptError, InferenceError, PositionError
from .base import ModelInference

if TYPE_CHECKING:
    import torch

logger = logging.getLogger(__name__)


class CausalLMAdapter(ModelInference):
    """
    Dense (safetensors) causal LM with an incremental ``DynamicCache``.

    Thread Safety:
        This adapter is NOT thread-safe. The cache is mutated by every
        `forward` call; the owning engine serializes access.

    Example:
        >>> model = CausalLMAdapter.from_pretrained("/path/to/snapshot", device="cuda")
        >>> logits = model.forward(torch.tensor([[1, 2, 3]], device="cuda"), 0)
        >>> logits = model.forward(torch.tensor([[4]], device="cuda"), 3)
    """

    def __init__(self, model: Any, *, model_path: str | None = None) -> None:
        self._model = model
        self._model_path = model_path
        self._cache: Any = None
        self._seen_tokens = 0

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    @classmethod
    def from_pretrained(
        cls,
        model_path: str | os.PathLike[str],
        *,
        device: torch.device | str = "cpu",
        dtype: torch.dtype | None = None,
        **kwargs: Any,
    ) -> "CausalLMAdapter":
        """Load weights from a local snapshot directory (config + safetensors)."""
        from transformers import AutoModelForCausalLM

        model = AutoModelForCausalLM.from_pretrained(
            str(model_path),
            torch_dtype=dtype,
            **kwargs,
        )
        model.to(device)
        model.eval()
        return cls(model, model_path=str(model_path))

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def model(self) -> Any:
        """Access the underlying model (for advanced use cases)."""
        return self._model

    @property
    def seen_tokens(self) -> int:
        """Number of positions currently held in the decode cache."""
        return self._seen_tokens

    @property
    def model_info(self) -> dict[str, Any]:
        config = getattr(self._model, "config", None)
        return {
            "model_path": self._model_path,
            "model_type": getattr(config, "model_type", None),
            "device": str(getattr(self._model, "device", "")),
            "dtype": str(getattr(self._model, "dtype", "")),
            "backend": type(self).__name__,
        }

    # -------------------------------------------------------------------------
    # ModelInference
    # -------------------------------------------------------------------------

    def reset_cache(self) -> None:
        self._cache = None
        self._seen_tokens = 0

    def forward(self, input_ids: torch.Tensor, index_pos: int) -> torch.Tensor:
        import torch

        if self._model is None:
            raise InferenceError("The model has been unloaded.")
        if input_ids.ndim != 2 or input_ids.shape[0] != 1:
            raise InferenceError(f"Expected input of shape (1, seq_len), got {tuple(input_ids.shape)}")
        seq_len = int(input_ids.shape[1])
        if seq_len == 0:
            raise EmptyPromptError("Cannot run a forward pass on an empty token batch.")
        if index_pos != self._seen_tokens:
            raise PositionError(
                f"Non-contiguous decode position {index_pos}; cache holds {self._seen_tokens} tokens."
            )

        if self._cache is None:
            from transformers import DynamicCache

            self._cache = DynamicCache()

        input_ids = input_ids.to(self._model.device)
        cache_position = torch.arange(index_pos, index_pos + seq_len, device=input_ids.device)

        try:
            with torch.no_grad():
                outputs = self._model(
                    input_ids,
                    past_key_values=self._cache,
                    cache_position=cache_position,
                    use_cache=True,
                )
        except Exception as exc:
            raise InferenceError(f"Forward pass failed at position {index_pos}: {exc}") from exc

        self._cache = outputs.past_key_values
        self._seen_tokens = index_pos + seq_len
        return outputs.logits[:, -1, :]

    def unload(self) -> None:
        import gc

        import torch

        self.reset_cache()
        del self._model
        self._model = None

        gc.collect()
        if torch.cuda.is_available():
            torch.cuda.empty_cache()


class GGUFCausalLMAdapter(CausalLMAdapter):
    """
    Quantized GGUF checkpoint, dequantized into a ``transformers`` model.

    Requires the ``gguf`` package. Decoding behaves exactly like the dense
    adapter.
    """

    def __init__(self, model: Any, *, model_path: str | None = None, gguf_file: str | None = None) -> None:
        super().__init__(model, model_path=model_path)
        self._gguf_file = gguf_file

    @classmethod
    def from_pretrained(
        cls,
        model_path: str | os.PathLike[str],
        *,
        device: torch.device | str = "cpu",
        dtype: torch.dtype | None = None,
        gguf_file: str | None = None,
        **kwargs: Any,
    ) -> "GGUFCausalLMAdapter":
        """Load a GGUF file; `model_path` may be the file itself or its directory."""
        from transformers import AutoModelForCausalLM

        path = os.fspath(model_path)
        if gguf_file is None:
            path, gguf_file = os.path.split(path)
        if not gguf_file:
            raise ValueError("GGUF backend needs a .gguf file name.")

        logger.info("Dequantizing GGUF checkpoint %s", gguf_file)
        model = AutoModelForCausalLM.from_pretrained(
            path,
            gguf_file=gguf_file,
            torch_dtype=dtype,
            **kwargs,
        )
        model.to(device)
        model.eval()
        return cls(model, model_path=path, gguf_file=gguf_file)

    @property
    def model_info(self) -> dict[str, Any]:
        info = super().model_info
        info["gguf_file"] = self._gguf_file
        return info
