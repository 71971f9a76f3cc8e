"""Incremental detokenization.

Decoding one token at a time is wrong for byte-level vocabularies: a single
character may span several tokens, and spaces depend on neighbours. The
stream below re-decodes a short window and only emits text once it is stable.
"""

from __future__ import annotations

from typing import Any

_INCOMPLETE = "�"


class TokenOutputStream:
    """Turn a sequence of token ids into text fragments as they arrive."""

    def __init__(self, tokenizer: Any) -> None:
        self._tokenizer = tokenizer
        self._tokens: list[int] = []
        self._prev_index = 0
        self._current_index = 0

    @property
    def tokenizer(self) -> Any:
        return self._tokenizer

    def _decode(self, tokens: list[int]) -> str:
        return self._tokenizer.decode(tokens, skip_special_tokens=True)

    def next_token(self, token: int) -> str | None:
        """Feed one token; return newly completed text, if any."""
        prev_text = ""
        if self._tokens:
            prev_text = self._decode(self._tokens[self._prev_index : self._current_index])
        self._tokens.append(int(token))
        text = self._decode(self._tokens[self._prev_index :])

        if len(text) > len(prev_text) and not text.endswith(_INCOMPLETE):
            self._prev_index = self._current_index
            self._current_index = len(self._tokens)
            return text[len(prev_text) :]
        return None

    def decode_rest(self) -> str | None:
        """Flush whatever is still buffered (may contain replacement chars)."""
        prev_text = ""
        if self._tokens:
            prev_text = self._decode(self._tokens[self._prev_index : self._current_index])
        text = self._decode(self._tokens[self._prev_index :])
        if len(text) > len(prev_text):
            return text[len(prev_text) :]
        return None

    def decode_all(self) -> str:
        return self._decode(self._tokens)

    def clear(self) -> None:
        self._tokens.clear()
        self._prev_index = 0
        self._current_index = 0
