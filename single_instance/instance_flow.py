"""
Election flow for single instance coordination.

A process calls request() (or elect() for the detailed outcome) once at
startup. If it manages to bind the coordination port it becomes the primary
instance: a SingleInstance is returned and a background responder thread
starts accepting connections from later invocations. If the port is already
bound, the process is a secondary: it connects to the primary, lets the
request handler send whatever it needs (e.g. a file to open) and gets None
back, meaning it should not continue as primary.
"""

import logging
import socket
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .config import SingleInstanceCfg
from .utils import (
    AddressInUseError,
    ConnectionHandler,
    notify_primary,
    try_bind,
    validate_port,
)


logger = logging.getLogger(__name__)


class InstanceRole(Enum):
    """Outcome of an election attempt."""
    PRIMARY = "primary"
    SECONDARY = "secondary"


class _ListenerHandle:
    """Owns the listening socket; closing it is thread safe and idempotent."""

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def settimeout(self, timeout: Optional[float]):
        self._sock.settimeout(timeout)

    def accept(self) -> Tuple[socket.socket, tuple]:
        return self._sock.accept()

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
        # shutdown wakes a blocked accept() on platforms where close() alone does not
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"Shutdown of listening socket failed: {e}")
        try:
            self._sock.close()
        except OSError as e:
            logger.debug(f"Error closing listening socket: {e}")


class SingleInstance:
    """
    Handle for the primary instance.

    Holds the listening socket on the coordination port and the responder
    thread serving it. Instances are only created by a successful election;
    call release() (or leave a ``with`` block) to free the port so another
    process can become primary.
    """

    def __init__(self,
                 server_socket: socket.socket,
                 port: int,
                 response_handler: Optional[ConnectionHandler] = None,
                 config: Optional[SingleInstanceCfg] = None):
        self._port = port
        self._response_handler = response_handler
        self._config = config or SingleInstanceCfg()
        self._listener = _ListenerHandle(server_socket)

        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()
        self._released = False
        self._responder_thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self._port

    def get_port(self) -> int:
        """Get the port where the instance is established."""
        return self._port

    def is_active(self) -> bool:
        """
        True while the responder thread is alive.

        After release() this can stay True for a while if a response handler
        is still running, even though the port is already free; use
        is_released() to know whether the port is held.
        """
        thread = self._responder_thread
        return thread is not None and thread.is_alive()

    def is_released(self) -> bool:
        """True once release() has been called."""
        with self._state_lock:
            return self._released

    def _start(self):
        """Start the responder thread."""
        self._listener.settimeout(self._config.accept_poll_interval)
        self._responder_thread = threading.Thread(
            target=self._serve,
            daemon=True,
            name=f"SingleInstanceResponder-{self._port}"
        )
        self._responder_thread.start()
        logger.info(f"Primary instance established on port {self._port}")

    def _serve(self):
        """Accept connections one at a time until the listening socket is closed."""
        try:
            while not self._stop_event.is_set():
                try:
                    client_sock, addr = self._listener.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._stop_event.is_set() or self._listener.closed:
                        logger.debug(f"Responder on port {self._port} stopping: listener closed")
                    else:
                        logger.error(f"Error accepting connection on port {self._port}: {e}")
                    break
                self._handle_connection(client_sock, addr)
        finally:
            self._listener.close()
            logger.debug(f"Responder on port {self._port} stopped")

    def _handle_connection(self, client_sock: socket.socket, addr):
        """Run the response handler on an accepted connection, then close it."""
        logger.debug(f"Accepted instance connection from {addr} on port {self._port}")
        with client_sock:
            if self._response_handler is None:
                return
            try:
                client_sock.settimeout(self._config.io_timeout)
                self._response_handler(client_sock)
            except Exception as e:
                logger.error(f"Error in response handler, dropping connection from {addr}: {e}",
                             exc_info=True)

    def release(self):
        """
        Free the instance so that a new one can be established.

        Closes the listening socket and waits up to release_timeout seconds
        for the responder thread to exit. A thread still running after that
        is left behind; the port itself is already free. Calling release()
        again does nothing.
        """
        with self._state_lock:
            if self._released:
                return
            self._released = True

        self._stop_event.set()
        self._listener.close()

        thread = self._responder_thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout=self._config.release_timeout)
        if thread.is_alive():
            logger.warning(
                "Responder thread for port %s did not stop within %.2fs",
                self._port,
                self._config.release_timeout,
            )
        else:
            logger.info(f"Primary instance on port {self._port} released")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def __repr__(self):
        state = "released" if self.is_released() else "active"
        return f"SingleInstance(port={self._port}, {state})"


@dataclass(frozen=True)
class ElectionResult:
    role: InstanceRole
    instance: Optional[SingleInstance] = None
    notified: bool = False
    bind_error: Optional[AddressInUseError] = None

    @property
    def is_primary(self) -> bool:
        return self.role == InstanceRole.PRIMARY


def elect(port: Optional[int] = None,
          request_handler: Optional[ConnectionHandler] = None,
          response_handler: Optional[ConnectionHandler] = None,
          config: Optional[SingleInstanceCfg] = None) -> ElectionResult:
    """
    Try to become the primary instance on port.

    Algorithm:
    1. Bind the port. Success makes this process primary: the responder
       thread starts and the result carries the SingleInstance.
    2. Otherwise connect to the primary and run request_handler on the
       connection. A failed connect (the primary may have just exited) is
       not an error; ``notified`` is False in that case.

    Args:
        port: Coordination port; defaults to the configured port
        request_handler: Called with the connection when another instance is running
        response_handler: Called by the primary for each incoming connection
        config: Host and timeouts; defaults to SingleInstanceCfg()

    Returns:
        ElectionResult describing the role taken
    """
    cfg = config or SingleInstanceCfg()
    port = validate_port(cfg.port if port is None else port)

    try:
        server_socket = try_bind(port, cfg.host)
    except OSError as e:
        bind_error = e
        if not isinstance(e, AddressInUseError):
            logger.warning(
                "Bind on %s:%s failed with errno %s (%s), treating port as in use",
                cfg.host,
                port,
                e.errno,
                e.strerror or e,
            )
            bind_error = AddressInUseError(e.errno, f"port {port} unavailable on {cfg.host}")
        logger.info(f"Instance already running on port {port} (errno {bind_error.errno}), notifying it")
        notified = notify_primary(
            port,
            request_handler,
            host=cfg.host,
            timeout=cfg.connect_timeout,
            io_timeout=cfg.io_timeout,
        )
        return ElectionResult(role=InstanceRole.SECONDARY, notified=notified,
                              bind_error=bind_error)

    instance = SingleInstance(server_socket, port, response_handler, cfg)
    instance._start()
    return ElectionResult(role=InstanceRole.PRIMARY, instance=instance)


def request(port: Optional[int] = None,
            request_handler: Optional[ConnectionHandler] = None,
            response_handler: Optional[ConnectionHandler] = None,
            config: Optional[SingleInstanceCfg] = None) -> Optional[SingleInstance]:
    """
    Request an instance representation.

    Returns the SingleInstance when this process is the primary, or None if
    another instance is already running (whether or not it could be
    notified).

    Example:
        >>> instance = request(request_handler=send_args, response_handler=open_args)
        >>> if instance is None:
        ...     sys.exit(0)
        >>> try:
        ...     run_app()
        ... finally:
        ...     instance.release()
    """
    return elect(port, request_handler, response_handler, config).instance


def request_default(config: Optional[SingleInstanceCfg] = None) -> Optional[SingleInstance]:
    """Request an instance on the default port, without handlers."""
    return request(config=config)
