"""Streaming multi-turn text generation (single model, single-flight).

This module provides the core engine:
- conversation rendering -> prompt tokens
- autoregressive decode loop over a ModelInference backend
- repetition penalty + seeded sampling
- incremental detokenization into a lazy stream of text fragments

Each `chat()` call returns a generator. Nothing runs until the caller pulls
the first fragment, and the conversation is only updated once the generator
runs to completion.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, AsyncIterator, Iterator, Sequence

import torch

from chatpipe.settings import load_hf_token

from .adapters import ModelInference
from .chat_types import ChatMessage, GenerationStats
from .config import InferenceConfig
from .conversation import ChatContext
from .errors import EmptyPromptError, GenerationInProgressError
from .loader import ModelLoader
from .registry import ModelRegistry
from .sampling import LogitsProcessor, apply_repeat_penalty
from .token_stream import TokenOutputStream

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ID = "qwen3"

_DONE = object()


class TextGeneration:
    """Multi-turn chat generation over one model.

    Thread-safety:
        The model, decode cache and conversation are owned by this engine and
        are not thread-safe. At most one `chat()` stream may be in flight; a
        second one raises GenerationInProgressError.
    """

    def __init__(
        self,
        model: ModelInference,
        tokenizer: Any,
        context: ChatContext,
        config: InferenceConfig,
        eos_token_id: int,
    ) -> None:
        config.validate()
        self._model = model
        self._tos = TokenOutputStream(tokenizer)
        self._logits_processor = LogitsProcessor(config.seed, config.temperature, config.top_p)
        self._ctx = context
        self._config = config
        self._eos_token_id = int(eos_token_id)
        self._lock = threading.Lock()
        self._last_stats: GenerationStats | None = None

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    async def create(
        cls,
        model_id: str,
        config: InferenceConfig | None = None,
        *,
        registry: ModelRegistry | None = None,
        loader: ModelLoader | None = None,
        system_prompt: str | None = None,
        chat_template_kwargs: dict[str, Any] | None = None,
    ) -> "TextGeneration":
        """
        Resolve `model_id`, fetch model + tokenizer and build an engine.

        Args:
            model_id: ``"<arch>"`` or ``"<arch>.<variant>"``.
            config: Sampling/decoding parameters (default: ``InferenceConfig()``).
            registry: Model registry (default: loaded from models.toml).
            loader: Model loader (default: one using the configured hub token).
            system_prompt: Optional first system turn.
            chat_template_kwargs: Extra keyword arguments for the chat template.
        """
        config = config or InferenceConfig()
        config.validate()
        registry = registry or ModelRegistry.load()
        entry = registry.resolve(model_id)
        logger.info("Resolved %r -> %s/%s", model_id, entry.model_repo, entry.model_file)

        loader = loader or ModelLoader(token=load_hf_token())
        loaded = await loader.load(entry, config)

        context = ChatContext.from_tokenizer(
            loaded.tokenizer,
            system_prompt=system_prompt,
            **(chat_template_kwargs or {}),
        )
        return cls(loaded.model, loaded.tokenizer, context, config, loaded.eos_token_id)

    @classmethod
    async def with_default_config(cls, model_id: str) -> "TextGeneration":
        return await cls.create(model_id, InferenceConfig())

    @classmethod
    async def default(cls) -> "TextGeneration":
        return await cls.with_default_config(DEFAULT_MODEL_ID)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> InferenceConfig:
        return self._config

    @property
    def history(self) -> tuple[ChatMessage, ...]:
        return self._ctx.messages

    @property
    def last_stats(self) -> GenerationStats | None:
        """Throughput of the last completed `chat()` call."""
        return self._last_stats

    @property
    def model_info(self) -> dict[str, Any]:
        return self._model.model_info

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def chat(self, prompt: str) -> Iterator[str]:
        """Stream the assistant answer to `prompt`, one text fragment at a time.

        On success the user turn and the full answer are appended to the
        conversation. If the stream fails or is abandoned, no turn is recorded.
        """
        if not self._lock.acquire(blocking=False):
            raise GenerationInProgressError("A generation is already in progress on this engine.")
        try:
            yield from self._run(prompt)
        finally:
            self._tos.clear()
            self._lock.release()

    def _run(self, prompt: str) -> Iterator[str]:
        user_turn = ChatMessage(role="user", content=prompt)
        # A new turn always starts a fresh autoregressive pass.
        self._model.reset_cache()

        rendered = self._ctx.render(pending=[user_turn])
        ctx_tokens = self._str2tokens(rendered)
        if not ctx_tokens:
            raise EmptyPromptError("The rendered prompt tokenized to an empty sequence.")

        started = time.monotonic()
        ans_start_idx = len(ctx_tokens)
        answer_parts: list[str] = []
        finish_reason = "length"

        try:
            for index in range(self._config.sample_len):
                if index == 0:
                    next_token = self._gen_next_token(ctx_tokens, 0, None)
                else:
                    next_token = self._gen_next_token(ctx_tokens, ans_start_idx + index - 1, ans_start_idx)
                ctx_tokens.append(next_token)

                text = self._tos.next_token(next_token)
                if text:
                    answer_parts.append(text)
                    yield text

                if next_token == self._eos_token_id:
                    finish_reason = "stop"
                    break

            rest = self._tos.decode_rest()
            if rest:
                answer_parts.append(rest)
                yield rest
        except Exception:
            logger.warning(
                "Generation failed after %d tokens; discarding %d chars of partial answer",
                len(ctx_tokens) - ans_start_idx,
                sum(len(p) for p in answer_parts),
            )
            raise

        answer = "".join(answer_parts)
        self._ctx.commit(user_turn, ChatMessage(role="assistant", content=answer))

        stats = GenerationStats(
            prompt_tokens=ans_start_idx,
            completion_tokens=len(ctx_tokens) - ans_start_idx,
            elapsed_s=time.monotonic() - started,
            finish_reason=finish_reason,
        )
        self._last_stats = stats
        tok_per_s = stats.tok_per_s
        logger.info(
            "speed: %s token/s, total tokens: %d (%s)",
            f"{tok_per_s:.2f}" if tok_per_s is not None else "n/a",
            stats.total_tokens,
            finish_reason,
        )

    def _str2tokens(self, text: str) -> list[int]:
        # The chat template already carries BOS/role markers.
        ids = self._tos.tokenizer.encode(text, add_special_tokens=False)
        return [int(t) for t in ids]

    def _gen_next_token(
        self,
        ctx_tokens: Sequence[int],
        idx_pos: int,
        ans_start_idx: int | None,
    ) -> int:
        input_arr = list(ctx_tokens) if ans_start_idx is None else [ctx_tokens[-1]]
        input_ids = torch.tensor([input_arr], dtype=torch.long, device=self._config.device)

        logits = self._model.forward(input_ids, idx_pos)
        logits = logits.reshape(-1, logits.shape[-1])[-1]

        # No penalty on the first step; afterwards only over answer tokens.
        if ans_start_idx is not None and self._config.repeat_penalty != 1.0:
            ans_tokens = ctx_tokens[ans_start_idx:]
            start_at = max(len(ans_tokens) - self._config.repeat_last_n, 0)
            logits = apply_repeat_penalty(logits, self._config.repeat_penalty, ans_tokens[start_at:])

        return self._logits_processor.sample(logits)

    async def achat(self, prompt: str) -> AsyncIterator[str]:
        """Async variant of `chat()`.

        Each fragment is pulled from the decode loop on a worker thread only
        when the consumer asks for it. If the consumer stops early, nothing
        more is decoded and nothing is committed.
        """
        loop = asyncio.get_running_loop()
        # One worker, so `close()` runs after any step still in flight.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chatpipe-gen")
        stream = self.chat(prompt)
        try:
            while True:
                item = await loop.run_in_executor(executor, next, stream, _DONE)
                if item is _DONE:
                    break
                yield item
        finally:
            await loop.run_in_executor(executor, stream.close)
            executor.shutdown(wait=False)

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Free the model's resources. The engine cannot generate afterwards."""
        if not self._lock.acquire(blocking=False):
            raise GenerationInProgressError("Cannot close the engine while a generation is in progress.")
        try:
            self._model.unload()
        finally:
            self._lock.release()
