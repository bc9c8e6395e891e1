import socket

import pytest

from udp2serial.bridge import ForwardObserver
from udp2serial.config import Configuration


class FakeSerial:
    """Stands in for an open ``serial.Serial``; records every write."""

    def __init__(self, fail_on_write=None):
        self.written = bytearray()
        self.writes = []
        self.is_open = True
        self.fail_on_write = fail_on_write

    def write(self, data):
        if self.fail_on_write is not None:
            raise self.fail_on_write
        self.writes.append(bytes(data))
        self.written.extend(data)
        return len(data)

    def close(self):
        self.is_open = False


class RecordingObserver(ForwardObserver):
    def __init__(self):
        self.events = []

    def connection_attempt(self, udp_port):
        self.events.append(("attempt", udp_port))

    def connection_established(self, address):
        self.events.append(("established", address[1]))

    def connection_exception(self, udp_port, exc):
        self.events.append(("exception", udp_port))

    def connection_terminated(self, udp_port):
        self.events.append(("terminated", udp_port))

    def receive_exception(self, exc):
        self.events.append(("receive_exception", str(exc)))

    def progress(self, bytes_forwarded, udp_port):
        self.events.append(("progress", bytes_forwarded))

    def names(self):
        return [event[0] for event in self.events]


def free_udp_port():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def config():
    return Configuration(udp_port=free_udp_port(), serial_port_id="COM7", interface_ip="127.0.0.1")


@pytest.fixture
def fake_serial():
    return FakeSerial()


@pytest.fixture
def observer():
    return RecordingObserver()
