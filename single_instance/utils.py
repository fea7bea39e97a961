"""
Socket helpers for single instance coordination.

The listening socket bound on the coordination port is the lock: the OS lets a
single process bind a given (host, port) pair, so whoever binds first is the
primary instance and everyone else connects to it as a secondary.
"""

import errno
import logging
import socket
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3273
CONNECT_TIMEOUT = 1.0
IO_TIMEOUT = 5.0
LISTEN_BACKLOG = 5

ConnectionHandler = Callable[[socket.socket], None]


class SingleInstanceError(OSError):
    """Base error for the single instance lock."""


class AddressInUseError(SingleInstanceError):
    """The coordination port is already held by another process."""


def validate_port(port: int) -> int:
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {port!r}")
    if not 1 <= port <= 65535:
        raise ValueError(f"port out of range (1-65535): {port}")
    return port


def _set_exclusive(sock: socket.socket) -> None:
    # On Windows SO_REUSEADDR allows a second listener on the same port
    if hasattr(socket, "SO_EXCLUSIVEADDRUSE"):
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_EXCLUSIVEADDRUSE, 1)
    else:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)


def try_bind(port: int, host: str = DEFAULT_HOST,
             backlog: int = LISTEN_BACKLOG) -> socket.socket:
    """
    Bind and listen on host:port.

    Returns the listening socket when this process now holds the port.
    Raises AddressInUseError when another process already holds it. There
    are no retries: a failed bind means a primary instance exists.
    """
    validate_port(port)
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        _set_exclusive(sock)
        sock.bind((host, port))
        sock.listen(backlog)
    except OSError as e:
        sock.close()
        if e.errno in (errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", None)):
            raise AddressInUseError(e.errno, f"port {port} already bound on {host}") from e
        raise
    return sock


def connect_to_primary(port: int, host: str = DEFAULT_HOST,
                       timeout: float = CONNECT_TIMEOUT) -> socket.socket:
    """Open a client connection to the primary instance listening on host:port."""
    return socket.create_connection((host, port), timeout=timeout)


def notify_primary(port: int,
                   request_handler: Optional[ConnectionHandler] = None,
                   host: str = DEFAULT_HOST,
                   timeout: float = CONNECT_TIMEOUT,
                   io_timeout: float = IO_TIMEOUT) -> bool:
    """
    Connect to the running primary and run request_handler on the connection.

    Returns True if the primary was reached, False if the connection could
    not be made (for example the primary exited right after our bind
    failed). Exceptions raised by request_handler propagate to the caller
    once the connection has been closed.
    """
    try:
        sock = connect_to_primary(port, host, timeout=timeout)
    except OSError as e:
        logger.debug(f"Could not reach primary instance at {host}:{port}: {e}")
        return False

    with sock:
        sock.settimeout(io_timeout)
        if request_handler is not None:
            request_handler(sock)
    logger.debug(f"Notified primary instance at {host}:{port}")
    return True


def write_line(sock: socket.socket, text: str, encoding: str = "utf-8") -> None:
    """Send text followed by a newline."""
    sock.sendall(text.encode(encoding) + b"\n")


def read_line(sock: socket.socket, encoding: str = "utf-8",
              max_size: int = 65536) -> Optional[str]:
    """
    Read one newline-terminated line from sock.

    Returns the line without its terminator, or None if the peer closed the
    connection before sending anything. Raises ValueError if no newline
    arrives within max_size bytes.
    """
    buf = bytearray()
    while b"\n" not in buf:
        if len(buf) >= max_size:
            raise ValueError(f"line exceeds {max_size} bytes")
        chunk = sock.recv(1024)
        if not chunk:
            break
        buf.extend(chunk)
    if not buf:
        return None
    line = bytes(buf).split(b"\n", 1)[0]
    if len(line) > max_size:
        raise ValueError(f"line exceeds {max_size} bytes")
    return line.rstrip(b"\r").decode(encoding)
