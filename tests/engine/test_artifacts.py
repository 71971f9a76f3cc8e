import asyncio
import json

import pytest

pytest.importorskip("huggingface_hub", reason="huggingface_hub not installed")

from huggingface_hub.errors import EntryNotFoundError, LocalEntryNotFoundError

from chatpipe.engine import artifacts
from chatpipe.engine.artifacts import HubRepo
from chatpipe.engine.errors import ArtifactDownloadError, ArtifactNotFound


class _FakeHub:
    """In-memory stand-in for the hub download functions."""

    def __init__(self, root, files, *, cached=()) -> None:
        self.root = root
        self.files = dict(files)
        self.cached = set(cached)
        self.downloads = []

    def _write(self, filename):
        path = self.root / filename
        path.write_text(self.files[filename], encoding="utf-8")
        return str(path)

    def try_to_load_from_cache(self, repo_id, filename, revision=None):
        if filename in self.cached:
            return self._write(filename)
        return None

    def hf_hub_download(self, repo_id, filename, revision=None, token=None):
        self.downloads.append(filename)
        if filename not in self.files:
            raise EntryNotFoundError(f"{filename} not found")
        return self._write(filename)

    def list_repo_files(self, repo_id, revision=None):
        return sorted(self.files)


@pytest.fixture
def fake_hub(tmp_path, monkeypatch):
    def install(files, *, cached=()):
        hub = _FakeHub(tmp_path, files, cached=cached)
        monkeypatch.setattr(artifacts, "try_to_load_from_cache", hub.try_to_load_from_cache)
        monkeypatch.setattr(artifacts, "hf_hub_download", hub.hf_hub_download)

        class _Api:
            def __init__(self, token=None):
                pass

            def list_repo_files(self, repo_id, revision=None):
                return hub.list_repo_files(repo_id, revision=revision)

        monkeypatch.setattr(artifacts, "HfApi", _Api)
        return hub

    return install


def test_get_downloads_when_not_cached(fake_hub):
    hub = fake_hub({"config.json": "{}"})
    path = asyncio.run(HubRepo("Org/M").get("config.json"))
    assert path.read_text(encoding="utf-8") == "{}"
    assert hub.downloads == ["config.json"]


def test_get_prefers_cache(fake_hub):
    hub = fake_hub({"config.json": "{}"}, cached={"config.json"})
    asyncio.run(HubRepo("Org/M").get("config.json"))
    assert hub.downloads == []


def test_missing_file_is_artifact_not_found(fake_hub):
    fake_hub({})
    with pytest.raises(ArtifactNotFound) as exc_info:
        asyncio.run(HubRepo("Org/M").get("model.safetensors"))
    assert exc_info.value.filename == "model.safetensors"


def test_offline_miss_is_download_error(monkeypatch):
    monkeypatch.setattr(artifacts, "try_to_load_from_cache", lambda *a, **k: None)

    def offline(*args, **kwargs):
        raise LocalEntryNotFoundError("offline")

    monkeypatch.setattr(artifacts, "hf_hub_download", offline)
    with pytest.raises(ArtifactDownloadError):
        asyncio.run(HubRepo("Org/M").get("config.json"))


def test_sharded_artifacts_fetches_unique_shards(fake_hub):
    index = {
        "weight_map": {
            "a.weight": "model-00001-of-00002.safetensors",
            "b.weight": "model-00002-of-00002.safetensors",
            "c.weight": "model-00001-of-00002.safetensors",
        }
    }
    hub = fake_hub(
        {
            "model.safetensors.index.json": json.dumps(index),
            "model-00001-of-00002.safetensors": "1",
            "model-00002-of-00002.safetensors": "2",
        }
    )
    paths = asyncio.run(HubRepo("Org/M").get_sharded_artifacts())
    assert [p.name for p in paths] == ["model-00001-of-00002.safetensors", "model-00002-of-00002.safetensors"]
    assert sorted(hub.downloads) == sorted(
        ["model.safetensors.index.json", "model-00001-of-00002.safetensors", "model-00002-of-00002.safetensors"]
    )


def test_invalid_index_is_download_error(fake_hub):
    fake_hub({"model.safetensors.index.json": "[]"})
    with pytest.raises(ArtifactDownloadError):
        asyncio.run(HubRepo("Org/M").get_sharded_artifacts())


@pytest.mark.parametrize("name", ["m-Q4_K_M", "m-Q4_K_M.gguf"])
def test_gguf_name_with_or_without_suffix(fake_hub, name):
    fake_hub({"m-Q4_K_M.gguf": "gguf"})
    path = asyncio.run(HubRepo("Org/M-GGUF").get_gguf(name))
    assert path.name == "m-Q4_K_M.gguf"


def test_split_gguf_is_rejected(fake_hub):
    fake_hub(
        {
            "m-Q8_0-00001-of-00002.gguf": "1",
            "m-Q8_0-00002-of-00002.gguf": "2",
        }
    )
    with pytest.raises(ArtifactNotFound, match="split into 2 parts") as exc_info:
        asyncio.run(HubRepo("Org/M-GGUF").get_gguf("m-Q8_0.gguf"))
    assert "gguf-split --merge" in str(exc_info.value)


def test_missing_gguf(fake_hub):
    fake_hub({"other.gguf": "x"})
    with pytest.raises(ArtifactNotFound):
        asyncio.run(HubRepo("Org/M-GGUF").get_gguf("m-Q4_K_M"))
