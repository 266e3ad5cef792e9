import os
from typing import Final, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv

from .cors import parse_origins
from .errors import ConfigError

# .env.local holds private overrides, .env.default the committed defaults
ENV_FILES = ('.env.local', '.env.default')
DEFAULT_TARGET = 'https://pokeapi.co/api/v2/'
DEFAULT_PORT = 4000


def load_env_files(paths=ENV_FILES):
    """Load env files into os.environ. Variables already set always win,
    and an earlier file wins over a later one."""
    loaded = []
    for path in paths:
        if load_dotenv(path, override=False):
            loaded.append(str(path))
    return loaded


def env_snapshot(target, port, cors_origins_raw) -> dict:
    """Non-sensitive view of the active settings, served on /__env"""
    return {
        'PROXY_TARGET': target,
        'PORT': port,
        'CORS_ORIGINS': cors_origins_raw,
    }


def _int(environ, key, default) -> int:
    raw = environ.get(key)
    if raw in (None, ''):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _float(environ, key) -> Optional[float]:
    raw = environ.get(key)
    if raw in (None, ''):
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number of seconds, got {raw!r}") from None
    return value if value > 0 else None


class Settings:
    """
    Proxy settings read from environment variables.

    Call load_env_files() first so values from .env.local / .env.default
    are visible here.
    """

    def __init__(self, environ=None) -> None:
        environ = os.environ if environ is None else environ

        # Upstream every unmatched request is forwarded to
        self.proxy_target: Final[str] = environ.get('PROXY_TARGET') or DEFAULT_TARGET
        parsed = urlsplit(self.proxy_target)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ConfigError(f"PROXY_TARGET must be an http(s) URL, got {self.proxy_target!r}")

        # Listen address; the port is a preference, the next 9 are tried too
        self.host: Final[str] = environ.get('HOST') or '127.0.0.1'
        self.port: Final[int] = _int(environ, 'PORT', DEFAULT_PORT)
        if not 0 < self.port < 65536:
            raise ConfigError(f"PORT out of range: {self.port}")

        # Comma separated allow list; unset reflects any origin
        self.cors_origins_raw: Final[Optional[str]] = environ.get('CORS_ORIGINS') or None
        self.cors_origins: Final[Optional[list]] = parse_origins(self.cors_origins_raw)

        self.rules_dir: Final[str] = environ.get('RULES_DIR') or 'rules'
        self.override_timeout: Final[Optional[float]] = _float(environ, 'OVERRIDE_TIMEOUT')
        self.log_level: Final[str] = (environ.get('LOG_LEVEL') or 'INFO').upper()

    def snapshot(self) -> dict:
        return env_snapshot(self.proxy_target, self.port, self.cors_origins_raw)
