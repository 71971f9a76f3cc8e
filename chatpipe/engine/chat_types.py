"""Core chat value types.

These types are internal to the library and carry no CLI or transport
concerns.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Role = Literal["system", "user", "assistant"]

ROLES: frozenset[str] = frozenset({"system", "user", "assistant"})


@dataclass(frozen=True)
class ChatMessage:
    """A single conversation turn."""

    role: Role
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown chat role: {self.role!r}")
        if not isinstance(self.content, str):
            raise TypeError("ChatMessage.content must be a string")

    def to_template(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class GenerationStats:
    """Throughput report for one completed generation."""

    prompt_tokens: int
    completion_tokens: int
    elapsed_s: float
    finish_reason: Literal["stop", "length"]

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def tok_per_s(self) -> float | None:
        if self.elapsed_s <= 0:
            return None
        return self.completion_tokens / self.elapsed_s
