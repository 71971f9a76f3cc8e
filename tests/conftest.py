import os
import sys

import pytest

# Make `chatpipe` and the `apps.cli` entrypoint importable without an editable install.
_REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    """Keep tests away from the developer's registry, settings file and hub token."""
    monkeypatch.delenv("HF_TOKEN", raising=False)
    monkeypatch.delenv("CHATPIPE_MODELS", raising=False)
    monkeypatch.setenv("CHATPIPE_CONFIG", str(tmp_path / "config.toml"))
