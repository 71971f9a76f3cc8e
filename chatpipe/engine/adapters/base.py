"""Base interface for model backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import torch


class ModelInference(ABC):
    """
    Abstract base class for causal LM backends.

    The generation engine drives any backend through exactly two operations,
    without knowing model-specific details. Backends keep their own
    incremental decode state (KV cache) between `forward` calls.
    """

    @abstractmethod
    def forward(self, input_ids: torch.Tensor, index_pos: int) -> torch.Tensor:
        """
        Run one decode step.

        Args:
            input_ids: Token ids, shape (1, seq_len). The first call after
                `reset_cache()` carries the whole prompt; later calls carry a
                single token.
            index_pos: Absolute position of ``input_ids[0, 0]``. Must equal the
                number of tokens already in the decode cache.

        Returns:
            Logits for the last input position, shape (1, vocab_size).

        Raises:
            InferenceError: On numeric/backend failure.
            PositionError: If `index_pos` does not continue the cached sequence.
        """
        pass

    @abstractmethod
    def reset_cache(self) -> None:
        """
        Discard incremental decode state.

        The next `forward` call is treated as the start of a fresh sequence.
        """
        pass

    @property
    def model_info(self) -> dict[str, Any]:
        """Return metadata about the loaded model."""
        return {}

    def unload(self) -> None:
        """
        Free backend resources.

        Default implementation does nothing; override if cleanup is needed.
        """
        pass
