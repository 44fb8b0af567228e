import pytest

from codebench.core.api import ProviderSettings


@pytest.fixture
def settings():
    return ProviderSettings(provider="anthropic", api_key="test-key", model_id="default-model")


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "pyproject.toml").write_text('[project]\nname = "demo"\n')
    pkg = tmp_path / "demo"
    pkg.mkdir()
    (pkg / "client.py").write_text("import httpx\n\n\ndef fetch(url):\n    return httpx.get(url)\n")
    (pkg / "cache.py").write_text("class LRU:\n    pass\n")
    return tmp_path
