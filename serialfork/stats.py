"""Relay counters and the periodic status line."""

import asyncio
import logging
import sys
import threading
import time
from datetime import datetime
from typing import Callable, Optional, TextIO

from serialfork.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

TTY_INTERVAL = 0.1
LOG_INTERVAL = 10.0


class _Counter:
    def __init__(self):
        self._lock = threading.Lock()
        self._value = 0

    def add(self, n: int = 1) -> None:
        with self._lock:
            self._value += n

    def store(self, value: int) -> None:
        with self._lock:
            self._value = value

    def load(self) -> int:
        with self._lock:
            return self._value


class StatusReporter:
    """Packet and client counters plus a read-only view of the registry."""

    def __init__(self, registry: ConnectionRegistry):
        self._registry = registry
        self._packets = _Counter()
        self._clients = _Counter()

    @property
    def num_packets(self) -> int:
        return self._packets.load()

    @property
    def num_clients(self) -> int:
        return self._clients.load()

    def increment_packets(self) -> None:
        self._packets.add()

    def set_clients(self, n: int) -> None:
        self._clients.store(n)

    def snapshot(self) -> dict:
        _, addrs = self._registry.snapshot()
        return {
            "addrs": addrs,
            "num_clients": self.num_clients,
            "num_packets": self.num_packets,
        }

    def status_line(self) -> str:
        return f"Num Clients: {self.num_clients}\tNum Packets: {self.num_packets}"


class StatusLogger:
    """Emit the status line: in place on a terminal, rate-limited to the log otherwise."""

    def __init__(
        self,
        reporter: StatusReporter,
        stream: Optional[TextIO] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.reporter = reporter
        self.stream = stream if stream is not None else sys.stdout
        self.interactive = self.stream.isatty()
        self.interval = TTY_INTERVAL if self.interactive else LOG_INTERVAL
        self._clock = clock
        self._last = clock()

    def tick(self) -> bool:
        """Emit if the interval has passed since the last emission."""
        now = self._clock()
        if now - self._last < self.interval:
            return False
        self._last = now
        if self.interactive:
            stamp = datetime.now().strftime("%Y/%m/%d %H:%M:%S")
            self.stream.write(f"\r{stamp} {self.reporter.status_line()}  ")
            self.stream.flush()
        else:
            logger.info(self.reporter.status_line())
        return True

    async def run(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(TTY_INTERVAL)
