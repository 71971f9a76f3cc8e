"""Next-token sampling and repetition penalty."""

from __future__ import annotations

from collections import Counter
from typing import Sequence

import torch

# Temperatures below this are treated as greedy decoding.
_GREEDY_EPS = 1e-7


def apply_repeat_penalty(
    logits: torch.Tensor,
    penalty: float,
    context: Sequence[int],
) -> torch.Tensor:
    """Discount the scores of tokens seen in `context`.

    For a token occurring ``c`` times, a positive score is divided by
    ``penalty ** c`` and a negative score is multiplied by it, and a zero score
    becomes the smallest negative normal value of the dtype, so every score
    strictly decreases when ``penalty > 1``. Returns a new tensor; the
    input is never modified.

    Args:
        logits: 1-D scores over the vocabulary.
        penalty: Penalty factor; ``1.0`` returns `logits` unchanged.
        context: Recently generated token ids.
    """
    if penalty == 1.0 or not context:
        return logits
    if logits.ndim != 1:
        raise ValueError(f"Expected 1-D logits, got shape {tuple(logits.shape)}")

    vocab = logits.shape[0]
    counts = Counter(t for t in context if 0 <= t < vocab)
    if not counts:
        return logits

    out = logits.clone()
    ids = torch.tensor(list(counts.keys()), dtype=torch.long, device=logits.device)
    vals = out[ids].to(torch.promote_types(out.dtype, torch.float32))
    factors = torch.tensor(
        [float(penalty) ** c for c in counts.values()],
        dtype=vals.dtype,
        device=logits.device,
    )
    vals = torch.where(vals >= 0, vals / factors, vals * factors)
    # A zero score cannot be scaled; step it just below zero instead.
    vals = torch.where(vals == 0, torch.full_like(vals, -torch.finfo(out.dtype).tiny), vals)
    out[ids] = vals.to(out.dtype)
    return out


def top_p_filter(probs: torch.Tensor, top_p: float) -> torch.Tensor:
    """Zero out the tail of `probs` beyond cumulative mass `top_p` (top token always kept)."""
    if top_p >= 1.0:
        return probs
    sorted_probs, sorted_idx = torch.sort(probs, descending=True)
    cumulative = torch.cumsum(sorted_probs, dim=-1)
    # Drop a token once the mass *before* it already reaches top_p.
    remove = (cumulative - sorted_probs) >= top_p
    remove[0] = False
    sorted_probs = sorted_probs.masked_fill(remove, 0.0)
    filtered = torch.zeros_like(probs)
    filtered.scatter_(0, sorted_idx, sorted_probs)
    return filtered


class LogitsProcessor:
    """Seeded sampler over 1-D logits.

    One instance lives for the whole engine, so successive turns continue the
    same random stream; two processors built with the same seed produce the
    same draws.
    """

    def __init__(self, seed: int, temperature: float | None, top_p: float | None = None) -> None:
        if temperature is not None and temperature < 0:
            raise ValueError(f"Temperature must be >= 0, got {temperature}")
        if top_p is not None and not (0.0 < top_p <= 1.0):
            raise ValueError(f"top_p must be in (0, 1], got {top_p}")
        self._temperature = temperature
        self._top_p = top_p
        self._generator = torch.Generator(device="cpu")
        self._generator.manual_seed(int(seed))

    @property
    def greedy(self) -> bool:
        return self._temperature is None or self._temperature < _GREEDY_EPS

    def sample(self, logits: torch.Tensor) -> int:
        """Pick the next token id from 1-D logits."""
        logits = logits.detach().float().cpu()
        if logits.ndim != 1:
            raise ValueError(f"Expected 1-D logits, got shape {tuple(logits.shape)}")

        if self.greedy:
            return int(torch.argmax(logits).item())

        # Softmax in fp32 for numerical stability at low temperature.
        probs = torch.softmax(logits / float(self._temperature), dim=-1)
        if self._top_p is not None:
            probs = top_p_filter(probs, self._top_p)

        if not torch.isfinite(probs).all() or float(probs.sum()) <= 0:
            return int(torch.argmax(logits).item())

        return int(torch.multinomial(probs, 1, generator=self._generator).item())
