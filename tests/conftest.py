import pytest


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ('BLU_DEVICE', 'BLU_DISCOVER_TIMEOUT', 'BLU_CACHE_PATH',
                 'BLU_LOG_LEVEL', 'BLU_CONFIG'):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('XDG_CONFIG_HOME', str(tmp_path / 'config'))
    monkeypatch.setenv('XDG_CACHE_HOME', str(tmp_path / 'cache'))
    monkeypatch.chdir(tmp_path)
