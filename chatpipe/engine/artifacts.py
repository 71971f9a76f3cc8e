"""Hub artifact provider.

Thin async wrapper over ``huggingface_hub``: files are served from the local
cache when present and downloaded otherwise. Blocking hub calls run in a
worker thread so engine construction can await them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from huggingface_hub import HfApi, hf_hub_download, try_to_load_from_cache
from huggingface_hub.errors import (
    EntryNotFoundError,
    HfHubHTTPError,
    LocalEntryNotFoundError,
    RepositoryNotFoundError,
)

from .errors import ArtifactDownloadError, ArtifactNotFound

logger = logging.getLogger(__name__)

SAFETENSORS_INDEX = "model.safetensors.index.json"
GGUF_SUFFIX = ".gguf"


class HubRepo:
    """One model repository on the hub."""

    def __init__(self, repo_id: str, *, token: str | None = None, revision: str | None = None) -> None:
        self.repo_id = repo_id
        self._token = token
        self._revision = revision

    def __repr__(self) -> str:
        return f"HubRepo({self.repo_id!r})"

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def get(self, filename: str) -> Path:
        """
        Return a local path for `filename`, downloading it if not cached.

        Raises:
            ArtifactNotFound: The repo or file does not exist.
            ArtifactDownloadError: Any other hub/network failure.
        """
        cached = try_to_load_from_cache(self.repo_id, filename, revision=self._revision)
        if isinstance(cached, str):
            logger.debug("Cache hit for %s/%s", self.repo_id, filename)
            return Path(cached)

        logger.info("Downloading %s/%s", self.repo_id, filename)
        try:
            path = await asyncio.to_thread(
                hf_hub_download,
                self.repo_id,
                filename,
                revision=self._revision,
                token=self._token,
            )
        except LocalEntryNotFoundError as exc:
            raise ArtifactDownloadError(
                f"{self.repo_id}/{filename} is not cached and the hub is unreachable: {exc}"
            ) from exc
        except EntryNotFoundError as exc:
            raise ArtifactNotFound(self.repo_id, filename) from exc
        except RepositoryNotFoundError as exc:
            raise ArtifactNotFound(self.repo_id, filename, "repository not found") from exc
        except (HfHubHTTPError, OSError) as exc:
            raise ArtifactDownloadError(f"Failed to download {self.repo_id}/{filename}: {exc}") from exc
        return Path(path)

    async def list_remote_files(self) -> list[str]:
        """List every file name in the remote repository."""
        api = HfApi(token=self._token)
        try:
            return await asyncio.to_thread(api.list_repo_files, self.repo_id, revision=self._revision)
        except RepositoryNotFoundError as exc:
            raise ArtifactNotFound(self.repo_id, "*", "repository not found") from exc
        except (HfHubHTTPError, OSError) as exc:
            raise ArtifactDownloadError(f"Failed to list files of {self.repo_id}: {exc}") from exc

    async def get_sharded_artifacts(self) -> list[Path]:
        """Fetch every shard listed in ``model.safetensors.index.json``."""
        index_path = await self.get(SAFETENSORS_INDEX)
        try:
            index = json.loads(index_path.read_text(encoding="utf-8"))
            weight_map = index["weight_map"]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise ArtifactDownloadError(f"Invalid {SAFETENSORS_INDEX} in {self.repo_id}: {exc}") from exc

        shards = sorted(set(weight_map.values()))
        if not shards:
            raise ArtifactNotFound(self.repo_id, SAFETENSORS_INDEX, "index lists no shards")

        logger.info("Fetching %d safetensors shards from %s", len(shards), self.repo_id)
        return list(await asyncio.gather(*(self.get(name) for name in shards)))

    async def get_gguf(self, filename: str) -> Path:
        """
        Fetch a single-file GGUF checkpoint.

        `filename` may be given with or without the ``.gguf`` suffix. Uploads
        split into several ``<stem>-0000N-of-0000M.gguf`` parts are rejected:
        they must be merged into one file before they can be loaded.
        """
        stem = filename[: -len(GGUF_SUFFIX)] if filename.endswith(GGUF_SUFFIX) else filename
        target = stem + GGUF_SUFFIX

        cached = try_to_load_from_cache(self.repo_id, target, revision=self._revision)
        if isinstance(cached, str):
            return Path(cached)

        remote = await self.list_remote_files()
        if target in remote:
            return await self.get(target)

        parts = sorted(f for f in remote if f.startswith(stem) and f.endswith(GGUF_SUFFIX))
        if parts:
            raise ArtifactNotFound(
                self.repo_id,
                target,
                f"checkpoint is split into {len(parts)} parts ({', '.join(parts)}); "
                "merge them into one file with llama.cpp `gguf-split --merge`",
            )
        raise ArtifactNotFound(self.repo_id, target)
