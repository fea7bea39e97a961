from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from typing import Optional

from .utils import CONNECT_TIMEOUT, DEFAULT_HOST, DEFAULT_PORT, IO_TIMEOUT

SECTION = "single_instance"
ENV_PREFIX = "SINGLE_INSTANCE_"

DROP_TIMEOUT = 0.5
ACCEPT_POLL_INTERVAL = 0.1


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class SingleInstanceCfg:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    connect_timeout: float = CONNECT_TIMEOUT
    io_timeout: float = IO_TIMEOUT
    release_timeout: float = DROP_TIMEOUT
    accept_poll_interval: float = ACCEPT_POLL_INTERVAL


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _parse_float(name: str, raw: str) -> float:
    try:
        value = float(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def load_config(ini_path: Optional[str] = None) -> SingleInstanceCfg:
    """
    Carga la configuración desde el INI (sección [single_instance]) y luego
    aplica las variables de entorno SINGLE_INSTANCE_*.
    """
    values = {}

    if ini_path is not None:
        path = os.path.abspath(ini_path)
        if not os.path.exists(path):
            raise ConfigError(f"INI file not found: {path}")
        cp = configparser.ConfigParser()
        cp.read(path)
        if cp.has_section(SECTION):
            values.update({k.strip(): v for k, v in cp[SECTION].items()})

    for key in ("host", "port", "connect_timeout", "io_timeout",
                "release_timeout", "accept_poll_interval"):
        env_value = os.getenv(ENV_PREFIX + key.upper())
        if env_value is not None and env_value.strip():
            values[key] = env_value

    defaults = SingleInstanceCfg()
    port = _parse_int("port", values["port"]) if "port" in values else defaults.port
    if not 1 <= port <= 65535:
        raise ConfigError(f"port out of range (1-65535): {port}")

    host = values.get("host", defaults.host).strip() or defaults.host

    def _timeout(key: str, fallback: float) -> float:
        return _parse_float(key, values[key]) if key in values else fallback

    return SingleInstanceCfg(
        host=host,
        port=port,
        connect_timeout=_timeout("connect_timeout", defaults.connect_timeout),
        io_timeout=_timeout("io_timeout", defaults.io_timeout),
        release_timeout=_timeout("release_timeout", defaults.release_timeout),
        accept_poll_interval=_timeout("accept_poll_interval", defaults.accept_poll_interval),
    )
