"""
Shared fakes: a scriptable serial handle and a recording stream writer.
"""

from collections import deque

import pytest
import serial

from serialfork.serial_link import SerialLink


class FakeSerial:
    """Stands in for ``serial.Serial``.

    ``feed()`` queues chunks for ``read``; ``fail()`` makes the next
    ``in_waiting`` raise like an unplugged USB device.
    """

    def __init__(self):
        self.chunks = deque()
        self.written = []
        self.closed = False
        self._fail = False

    def feed(self, data: bytes):
        self.chunks.append(data)

    def fail(self):
        self._fail = True

    @property
    def in_waiting(self):
        if self._fail:
            raise serial.SerialException("device disconnected")
        return len(self.chunks[0]) if self.chunks else 0

    def read(self, size=1):
        if not self.chunks:
            return b""
        chunk = self.chunks.popleft()
        if len(chunk) > size:
            self.chunks.appendleft(chunk[size:])
            chunk = chunk[:size]
        return chunk

    def write(self, data):
        self.written.append(bytes(data))
        return len(data)

    def close(self):
        self.closed = True


class FakeWriter:
    """Minimal ``asyncio.StreamWriter`` that records what was written."""

    def __init__(self, ip="10.0.0.5", port=40000, fail=False):
        self.peer = (ip, port)
        self.data = bytearray()
        self.closed = False
        self.fail = fail

    def get_extra_info(self, name, default=None):
        return self.peer if name == "peername" else default

    def write(self, data):
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.data.extend(data)

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


@pytest.fixture
def fake_serial():
    return FakeSerial()


@pytest.fixture
def make_serial():
    return FakeSerial


@pytest.fixture
def make_writer():
    return FakeWriter


@pytest.fixture
def link(fake_serial, monkeypatch):
    """A SerialLink on Linux whose device always resolves and opens ``fake_serial``."""
    monkeypatch.setattr("serialfork.serial_link.glob.glob", lambda pattern: [pattern])

    async def no_sleep(_delay):
        pass

    link = SerialLink(
        "/dev/ttyFAKE0",
        115200,
        opener=lambda port, baud: fake_serial,
        sleep=no_sleep,
        platform="linux",
    )
    return link
