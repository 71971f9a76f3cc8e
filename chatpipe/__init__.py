"""
chatpipe - streaming multi-turn chat over local LLMs pulled from the Hugging Face Hub.

Quick Start:
    import asyncio
    from chatpipe import TextGeneration

    async def main():
        engine = await TextGeneration.create("qwen3.4b_q4")
        for fragment in engine.chat("Why is the sky blue?"):
            print(fragment, end="", flush=True)

    asyncio.run(main())

Submodules:
    - chatpipe.engine: Registry, loader, sampling and the generation engine
    - chatpipe.settings: models.toml / config.toml locations and the hub token
    - chatpipe.runtime: Device and dtype helpers

Environment Variables:
    CHATPIPE_MODELS: Path to the model registry (default: ./models.toml)
    CHATPIPE_CONFIG: Path to config.toml holding ``[huggingface] token``
    HF_TOKEN: Hub access token (takes precedence over config.toml)
"""

__version__ = "0.1.0"

from chatpipe.engine.config import InferenceConfig
from chatpipe.engine.errors import ChatpipeError
from chatpipe.engine.registry import ModelRegistry
from chatpipe.engine.text_generation import TextGeneration

__all__ = [
    "__version__",
    "ChatpipeError",
    "InferenceConfig",
    "ModelRegistry",
    "TextGeneration",
]
