import socket
import threading

import pytest  # type: ignore[import-not-found]

from single_instance import SingleInstanceCfg, read_line


def _pick_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def free_port():
    return _pick_free_port()


@pytest.fixture
def fast_cfg(free_port):
    # timeouts cortos para que los tests no esperen de más
    return SingleInstanceCfg(
        port=free_port,
        connect_timeout=1.0,
        io_timeout=2.0,
        release_timeout=0.5,
        accept_poll_interval=0.05,
    )


# ---------- fakes ----------
class LineCollector:
    """Response handler that records one line per connection."""

    def __init__(self):
        self.lines = []
        self.received = threading.Event()

    def __call__(self, sock):
        self.lines.append(read_line(sock))
        self.received.set()


@pytest.fixture
def collector():
    return LineCollector()
