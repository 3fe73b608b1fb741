"""Live TCP connections and the per-IP counts that gate UDP-to-serial forwarding."""

import asyncio
import threading
from typing import Dict, List, Tuple


class Connection:
    """One accepted TCP stream, identified by object identity."""

    def __init__(self, ip: str, port: int, writer: asyncio.StreamWriter):
        self.ip = ip
        self.port = port
        self.writer = writer

    @classmethod
    def from_writer(cls, writer: asyncio.StreamWriter) -> "Connection":
        peer = writer.get_extra_info("peername") or ("?", 0)
        return cls(peer[0], peer[1], writer)

    async def send(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    def __repr__(self):
        return f"Connection({self.ip}:{self.port})"


class ConnectionRegistry:
    """Thread-safe set of sinks plus ``ip -> open connection count``.

    The count for an IP always equals the number of registered connections
    from it; an IP with no connections has no entry at all.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sinks = set()
        self._ip_counts: Dict[str, int] = {}

    def add_connection(self, conn: Connection) -> None:
        with self._lock:
            if conn in self._sinks:
                return
            self._sinks.add(conn)
            self._ip_counts[conn.ip] = self._ip_counts.get(conn.ip, 0) + 1

    def remove_connection(self, conn: Connection) -> None:
        with self._lock:
            if conn not in self._sinks:
                return
            self._sinks.discard(conn)
            remaining = self._ip_counts[conn.ip] - 1
            if remaining:
                self._ip_counts[conn.ip] = remaining
            else:
                del self._ip_counts[conn.ip]

    def is_authorized(self, ip: str) -> bool:
        with self._lock:
            return self._ip_counts.get(ip, 0) > 0

    def sinks(self) -> List[Connection]:
        with self._lock:
            return list(self._sinks)

    def snapshot(self) -> Tuple[int, Dict[str, int]]:
        with self._lock:
            return len(self._sinks), dict(self._ip_counts)

    def __len__(self):
        with self._lock:
            return len(self._sinks)
