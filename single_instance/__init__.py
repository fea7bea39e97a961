"""
Single instance coordination for local processes.

Detects whether another copy of a program is already running by binding a
local TCP port, and lets later copies forward a small payload to the running
one instead of starting a duplicate.
"""

from .instance_flow import (
    ElectionResult,
    InstanceRole,
    SingleInstance,
    elect,
    request,
    request_default,
)
from .config import (
    DROP_TIMEOUT,
    ConfigError,
    SingleInstanceCfg,
    load_config,
)
from .utils import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    AddressInUseError,
    ConnectionHandler,
    SingleInstanceError,
    connect_to_primary,
    notify_primary,
    read_line,
    try_bind,
    write_line,
)

__all__ = [
    'SingleInstance',
    'InstanceRole',
    'ElectionResult',
    'elect',
    'request',
    'request_default',
    'SingleInstanceCfg',
    'ConfigError',
    'load_config',
    'DEFAULT_HOST',
    'DEFAULT_PORT',
    'DROP_TIMEOUT',
    'ConnectionHandler',
    'SingleInstanceError',
    'AddressInUseError',
    'try_bind',
    'connect_to_primary',
    'notify_primary',
    'read_line',
    'write_line',
]
