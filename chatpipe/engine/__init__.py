# Local chat inference engine
#
# This package turns a registry model id into a streaming, multi-turn chat
# over a single causal LM.
#
# Key components:
#   - hub.py              Registry record types (arch, repos, file, format)
#   - registry.py         models.toml loading, tokenizer inheritance, resolution
#   - artifacts.py        Hub file provider (cache first, then download)
#   - loader.py           Model + tokenizer + EOS id loading
#   - adapters/           ModelInference backends (safetensors, GGUF)
#   - conversation.py     Chat history and template rendering
#   - sampling.py         Repetition penalty and seeded sampling
#   - token_stream.py     Incremental detokenization
#   - text_generation.py  The generation engine
