import pytest

from common import config


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def history_file(tmp_path, monkeypatch):
    path = tmp_path / "history.json"
    path.write_text("[]")
    monkeypatch.setattr(config, "STORAGE_BACKEND", "local")
    monkeypatch.setattr(config, "LOCAL_HISTORY_FILE", path)
    return path
