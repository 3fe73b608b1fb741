"""Asyncio relay between one serial device, many TCP clients and UDP port 14550.

Everything read from the serial port is copied to every connected TCP client
and, by UDP, to port 14550 on each client's IP. Bytes from TCP clients go
straight to the serial port; UDP datagrams go to the serial port only when the
sender's IP has at least one TCP connection open.

A TCP client that stops reading stalls the relay for everyone until its
``drain()`` completes or fails; there is no per-client queue.
"""

import asyncio
import logging
from typing import List, Optional

from serialfork.registry import Connection, ConnectionRegistry
from serialfork.serial_link import SerialLink, SerialLinkError
from serialfork.stats import StatusLogger, StatusReporter
from serialfork.web import serve_status

logger = logging.getLogger(__name__)

UDP_PORT = 14550
CHUNK_SIZE = 1024
POLL_INTERVAL = 0.01
UDP_QUEUE_SIZE = 64


class UdpInbound(asyncio.DatagramProtocol):
    """Hands every datagram on the shared UDP socket to the server."""

    def __init__(self, server: "ForkingServer"):
        self.server = server

    def datagram_received(self, data: bytes, addr):
        self.server.on_datagram(data, addr[0])

    def error_received(self, exc: Exception):
        logger.debug("UDP error: %s", exc)


class ForkingServer:
    """Owns the serial link and forks its byte stream to every client."""

    def __init__(
        self,
        link: SerialLink,
        registry: Optional[ConnectionRegistry] = None,
        reporter: Optional[StatusReporter] = None,
        udp_port: int = UDP_PORT,
        udp_target_port: int = UDP_PORT,
        chunk_size: int = CHUNK_SIZE,
    ):
        self.link = link
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.reporter = reporter if reporter is not None else StatusReporter(self.registry)
        self.udp_port = udp_port
        self.udp_target_port = udp_target_port
        self.chunk_size = chunk_size
        self.udp_transport: Optional[asyncio.DatagramTransport] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._udp_queue: asyncio.Queue = asyncio.Queue(maxsize=UDP_QUEUE_SIZE)
        self._tasks: List[asyncio.Task] = []

    # -- serial -> everyone -------------------------------------------------

    async def relay_once(self) -> Optional[bytes]:
        """Read one chunk from the serial port and fan it out.

        Returns the chunk, or ``None`` when nothing was read (timeout or a
        device failure, after which the next call reopens the device).
        """
        async with self.link.lock:
            if not self.link.connected:
                await self.link.open()
            try:
                chunk = await self.link.read(self.chunk_size)
            except SerialLinkError as e:
                logger.warning("%s", e)
                return None
        if not chunk:
            return None
        self.reporter.set_clients(len(self.registry))
        self.reporter.increment_packets()
        await self.fan_out(chunk)
        return chunk

    async def fan_out(self, chunk: bytes) -> None:
        """Copy ``chunk`` to every sink and to UDP on each sink's IP.

        A failed TCP write is logged and skipped; the connection is torn down
        by its own read loop, not here.
        """
        for conn in self.registry.sinks():
            try:
                await conn.send(chunk)
            except OSError as e:
                logger.debug("Write to %r failed: %s", conn, e)
            self.send_udp(chunk, conn.ip)

    def send_udp(self, data: bytes, ip: str) -> None:
        if self.udp_transport is None:
            return
        try:
            self.udp_transport.sendto(data, (ip, self.udp_target_port))
        except OSError as e:
            logger.debug("UDP send to %s failed: %s", ip, e)

    async def run_relay(self) -> None:
        while True:
            if await self.relay_once() is None:
                await asyncio.sleep(POLL_INTERVAL)

    # -- clients -> serial --------------------------------------------------

    async def handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ):
        """Register one TCP client and copy its bytes to the serial port until EOF."""
        conn = Connection.from_writer(writer)
        self.registry.add_connection(conn)
        self.reporter.set_clients(len(self.registry))
        logger.info("TCP client connected: %s:%s", conn.ip, conn.port)
        try:
            while True:
                data = await reader.read(self.chunk_size)
                if not data:
                    break
                await self.link.write(data)
        except OSError as e:
            logger.debug("Read from %r failed: %s", conn, e)
        finally:
            self.registry.remove_connection(conn)
            self.reporter.set_clients(len(self.registry))
            logger.info("TCP client disconnected: %s:%s", conn.ip, conn.port)
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    def on_datagram(self, data: bytes, ip: str) -> bool:
        """Queue a UDP payload for the serial port if ``ip`` has a TCP connection open.

        Datagrams arriving while the device is gone, or while the queue is
        full, are dropped rather than replayed later.
        """
        if not data or not self.registry.is_authorized(ip):
            logger.debug("Dropping %d byte datagram from %s", len(data), ip)
            return False
        if not self.link.connected:
            logger.debug("Serial disconnected, dropping datagram from %s", ip)
            return False
        try:
            self._udp_queue.put_nowait(data)
        except asyncio.QueueFull:
            logger.debug("UDP queue full, dropping datagram from %s", ip)
            return False
        return True

    async def run_udp_writer(self) -> None:
        """Write queued datagrams to the serial port in arrival order."""
        while True:
            data = await self._udp_queue.get()
            try:
                await self.link.write(data)
            finally:
                self._udp_queue.task_done()

    # -- lifecycle ----------------------------------------------------------

    async def start(self, listen: str, tcp_port: int) -> None:
        """Bind UDP and TCP, then start the relay and UDP writer tasks.

        Bind failures raise ``OSError`` to the caller.
        """
        loop = asyncio.get_running_loop()
        self.udp_transport, _ = await loop.create_datagram_endpoint(
            lambda: UdpInbound(self), local_addr=(listen, self.udp_port)
        )
        self._server = await asyncio.start_server(self.handle_client, listen, tcp_port)
        logger.info("TCP server listening on %s:%s", listen, self.tcp_port)
        logger.info("UDP listening on %s:%s", listen, self.udp_port)
        self._tasks = [
            asyncio.create_task(self.run_relay(), name="relay"),
            asyncio.create_task(self.run_udp_writer(), name="udp_writer"),
        ]
        for task in self._tasks:
            task.add_done_callback(_log_task_failure)

    @property
    def tasks(self) -> List[asyncio.Task]:
        return list(self._tasks)

    @property
    def tcp_port(self) -> Optional[int]:
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def serve_forever(self) -> None:
        await self._server.serve_forever()

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if self._server is not None:
            self._server.close()
            for conn in self.registry.sinks():
                conn.writer.close()
            await self._server.wait_closed()
        if self.udp_transport is not None:
            self.udp_transport.close()
            self.udp_transport = None
        self.link.close()
        logger.info("Serial closed")


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("%s task failed", task.get_name(), exc_info=exc)


async def run_bridge_async(
    device: str,
    baud: int,
    listen: str,
    tcp_port: int,
    web_port: int = 0,
):
    """Start the relay, the status line and (if ``web_port``) the HTTP status endpoint."""
    server = ForkingServer(SerialLink(device, baud))
    await server.start(listen, tcp_port)
    tasks = [
        asyncio.create_task(server.serve_forever(), name="tcp_server"),
        asyncio.create_task(StatusLogger(server.reporter).run(), name="status_logger"),
    ] + server.tasks
    if web_port:
        logger.info("Starting web server on port %d", web_port)
        tasks.append(
            asyncio.create_task(
                serve_status(server.reporter, listen, web_port), name="web"
            )
        )
    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await server.stop()


def run_bridge(
    device: str,
    baud: int,
    listen: str,
    tcp_port: int,
    web_port: int = 0,
    verbose: bool = False,
):
    """Synchronous entry: run the asyncio bridge until interrupted."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        asyncio.run(run_bridge_async(device, baud, listen, tcp_port, web_port))
    except KeyboardInterrupt:
        pass
