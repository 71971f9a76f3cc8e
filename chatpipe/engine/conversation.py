"""Conversation context: ordered turns plus prompt rendering.

Rendering is delegated to a chat template. By default this is the tokenizer's
own template (``apply_chat_template``); any callable taking the template
message list and returning a prompt string can be used instead.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from .chat_types import ChatMessage, Role
from .errors import RenderError

logger = logging.getLogger(__name__)

TemplateRenderer = Callable[[list[dict[str, str]]], str]


def tokenizer_renderer(tokenizer: Any, **template_kwargs: Any) -> TemplateRenderer:
    """Render with ``tokenizer.apply_chat_template`` (text only, generation prompt appended)."""
    apply_chat_template = getattr(tokenizer, "apply_chat_template", None)
    if not callable(apply_chat_template):
        raise RenderError("Tokenizer does not support apply_chat_template().")
    if getattr(tokenizer, "chat_template", None) is None:
        raise RenderError("Tokenizer has no chat template configured.")

    def render(messages: list[dict[str, str]]) -> str:
        return apply_chat_template(
            messages,
            tokenize=False,
            add_generation_prompt=True,
            **template_kwargs,
        )

    return render


class ChatContext:
    """Ordered message history owned by one generation engine.

    The history is append-only. Turns produced during a generation are passed
    to `render()` as `pending` and only appended via `commit()` once the
    answer is complete.
    """

    def __init__(self, renderer: TemplateRenderer, *, system_prompt: str | None = None) -> None:
        self._renderer = renderer
        self._messages: list[ChatMessage] = []
        if system_prompt:
            self._messages.append(ChatMessage(role="system", content=system_prompt))

    @classmethod
    def from_tokenizer(
        cls,
        tokenizer: Any,
        *,
        system_prompt: str | None = None,
        **template_kwargs: Any,
    ) -> "ChatContext":
        return cls(tokenizer_renderer(tokenizer, **template_kwargs), system_prompt=system_prompt)

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def push_turn(self, role: Role, content: str) -> None:
        self._messages.append(ChatMessage(role=role, content=content))

    def commit(self, *turns: ChatMessage) -> None:
        self._messages.extend(turns)

    def render(self, pending: Sequence[ChatMessage] = ()) -> str:
        """Render the history (plus `pending` turns) into a prompt string."""
        template_messages = [m.to_template() for m in (*self._messages, *pending)]
        try:
            prompt = self._renderer(template_messages)
        except RenderError:
            raise
        except Exception as exc:
            raise RenderError(f"Failed to render chat template: {exc}") from exc
        if not isinstance(prompt, str):
            raise RenderError(f"Chat template returned {type(prompt).__name__}, expected str.")
        logger.debug("Rendered %d messages into %d chars", len(template_messages), len(prompt))
        return prompt
