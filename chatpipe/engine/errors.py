"""Error taxonomy for the engine.

Configuration errors are raised for bad registry/config input and are never
retried. Resource errors wrap hub/tokenizer failures. Inference errors come
from the model backend. Input errors are rejected before the model runs.
"""

from __future__ import annotations


class ChatpipeError(Exception):
    """Base class for all chatpipe errors."""


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


class ConfigurationError(ChatpipeError, ValueError):
    pass


class UnknownArchitecture(ConfigurationError):
    def __init__(self, arch: str) -> None:
        super().__init__(f"Unknown model architecture: {arch!r}")
        self.arch = arch


class UnsupportedArchitecture(ConfigurationError):
    def __init__(self, arch: str) -> None:
        super().__init__(f"Model architecture {arch!r} is not configured in the registry")
        self.arch = arch


class UnknownVariant(ConfigurationError):
    def __init__(self, arch: str, variant: str) -> None:
        super().__init__(f"Model variant {variant!r} does not exist for architecture {arch!r}")
        self.arch = arch
        self.variant = variant


class NoDefaultAvailable(ConfigurationError):
    def __init__(self, arch: str) -> None:
        super().__init__(f"Architecture {arch!r} has no default model")
        self.arch = arch


class AmbiguousDefault(ConfigurationError):
    def __init__(self, arch: str, variants: list[str]) -> None:
        super().__init__(
            f"Architecture {arch!r} has more than one default model: {', '.join(variants)}"
        )
        self.arch = arch
        self.variants = variants


class MissingEosTokenError(ConfigurationError):
    pass


# -----------------------------------------------------------------------------
# Resources
# -----------------------------------------------------------------------------


class ResourceError(ChatpipeError, RuntimeError):
    pass


class ArtifactNotFound(ResourceError):
    def __init__(self, repo_id: str, filename: str, detail: str | None = None) -> None:
        msg = f"Artifact {filename!r} not found in {repo_id!r}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.repo_id = repo_id
        self.filename = filename


class ArtifactDownloadError(ResourceError):
    pass


class TokenizerLoadError(ResourceError):
    pass


# -----------------------------------------------------------------------------
# Inference / input
# -----------------------------------------------------------------------------


class InferenceError(ChatpipeError, RuntimeError):
    pass


class InputError(ChatpipeError, ValueError):
    pass


class EmptyPromptError(InputError):
    pass


class PositionError(InputError):
    pass


class RenderError(ChatpipeError, RuntimeError):
    pass


class GenerationInProgressError(ChatpipeError, RuntimeError):
    pass
