import os

import pytest


@pytest.fixture(autouse=True)
def restore_environ():
    """Keep global environment stable across CLI invocations."""
    original = os.environ.copy()
    try:
        yield
    finally:
        os.environ.clear()
        os.environ.update(original)


@pytest.fixture(autouse=True)
def clean_cce_env(monkeypatch):
    """Drop variables from the developer's own shell that change cce behaviour."""
    for var in [
        "CCE_SHELL_INTEGRATION",
        "CCE_SHELL_DIALECT",
        "CCE_WRAPPED",
        "CCE_CONFIG_DIR",
        "ANTHROPIC_AUTH_TOKEN",
        "ANTHROPIC_BASE_URL",
        "ANTHROPIC_MODEL",
        "ANTHROPIC_DEFAULT_OPUS_MODEL",
        "ANTHROPIC_DEFAULT_SONNET_MODEL",
        "ANTHROPIC_DEFAULT_HAIKU_MODEL",
    ]:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture()
def temp_home(tmp_path, monkeypatch):
    """Put HOME (and with it ~/.cce and the shell profiles) in a temp location."""
    from pathlib import Path

    home_dir = tmp_path / "home"
    home_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.setenv("USERPROFILE", str(home_dir))
    monkeypatch.setattr(Path, "home", lambda: home_dir)

    return home_dir


@pytest.fixture()
def config_path(temp_home):
    return temp_home / ".cce" / "config.toml"
