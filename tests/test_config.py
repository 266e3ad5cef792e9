"""Tests for settings and env file loading."""

import os
from pathlib import Path

import pytest

from override_proxy.config import DEFAULT_TARGET, Settings, load_env_files
from override_proxy.errors import ConfigError


def test_defaults() -> None:
    settings = Settings(environ={})

    assert settings.proxy_target == DEFAULT_TARGET
    assert settings.port == 4000
    assert settings.host == "127.0.0.1"
    assert settings.cors_origins is None
    assert settings.rules_dir == "rules"
    assert settings.override_timeout is None
    assert settings.snapshot() == {
        "PROXY_TARGET": DEFAULT_TARGET,
        "PORT": 4000,
        "CORS_ORIGINS": None,
    }


def test_values_from_environment() -> None:
    settings = Settings(environ={
        "PROXY_TARGET": "http://localhost:8000/v1/",
        "PORT": "4100",
        "CORS_ORIGINS": "http://a.test,http://b.test",
        "RULES_DIR": "mocks",
        "OVERRIDE_TIMEOUT": "2.5",
        "LOG_LEVEL": "debug",
    })

    assert settings.proxy_target == "http://localhost:8000/v1/"
    assert settings.port == 4100
    assert settings.cors_origins == ["http://a.test", "http://b.test"]
    assert settings.rules_dir == "mocks"
    assert settings.override_timeout == 2.5
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("environ", [
    {"PORT": "abc"},
    {"PORT": "70000"},
    {"PROXY_TARGET": "ftp://example.com"},
    {"PROXY_TARGET": "not a url"},
    {"OVERRIDE_TIMEOUT": "soon"},
])
def test_invalid_values(environ) -> None:
    with pytest.raises(ConfigError):
        Settings(environ=environ)


def test_env_file_precedence(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    local = tmp_path / ".env.local"
    default = tmp_path / ".env.default"
    local.write_text("PORT=4200\n")
    default.write_text("PORT=4000\nPROXY_TARGET=http://upstream.test/\nRULES_DIR=from-default\n")
    monkeypatch.setattr(os, "environ", {"RULES_DIR": "from-shell"})

    loaded = load_env_files([local, default, tmp_path / ".env.missing"])
    settings = Settings()

    assert loaded == [str(local), str(default)]
    assert settings.port == 4200
    assert settings.proxy_target == "http://upstream.test/"
    assert settings.rules_dir == "from-shell"
