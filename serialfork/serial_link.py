"""Serial device ownership: resolve, open with retry, and exclusive read/write."""

import asyncio
import glob
import logging
import sys
from typing import Awaitable, Callable, Optional

import serial

logger = logging.getLogger(__name__)

RETRY_DELAY = 1.0
READ_TIMEOUT = 0.1


class SerialLinkError(Exception):
    """The serial device failed; the handle has been dropped and must be reopened."""


class DeviceNotFoundError(SerialLinkError):
    """No device matches the configured identifier."""


def open_serial(port: str, baud: int) -> serial.Serial:
    """Open the serial port with the given settings."""
    return serial.Serial(port=port, baudrate=baud, timeout=READ_TIMEOUT)


def resolve_device(device: str, platform: str = sys.platform) -> str:
    """Turn the configured device identifier into a concrete port name.

    On Windows the identifier must already be a ``COMn`` name. Everywhere else
    it is treated as a glob pattern (a plain path is a pattern matching itself)
    and the first match wins, so ``/dev/ttyACM*`` survives the device coming
    back under a new number after a replug.
    """
    if platform == "win32":
        if not device.startswith("COM"):
            raise ValueError("Windows port must start with COM")
        return device
    matches = sorted(glob.glob(device))
    if not matches:
        raise DeviceNotFoundError(f'No devices found matching "{device}"')
    return matches[0]


class SerialLink:
    """The single owner of the serial handle.

    Every read and write happens with ``lock`` held. A handle of ``None``
    means the link is disconnected and the next reader must call ``open()``.
    """

    def __init__(
        self,
        device: str,
        baud: int,
        retry_delay: float = RETRY_DELAY,
        opener: Callable[[str, int], serial.Serial] = open_serial,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        platform: str = sys.platform,
    ):
        self.device = device
        self.baud = baud
        self.retry_delay = retry_delay
        self.lock = asyncio.Lock()
        self._opener = opener
        self._sleep = sleep
        self._platform = platform
        self._handle: Optional[serial.Serial] = None

    @property
    def connected(self) -> bool:
        return self._handle is not None

    async def open(self) -> None:
        """Open the device, retrying every ``retry_delay`` seconds until it works.

        There is no retry limit. Call with ``lock`` held.
        """
        while self._handle is None:
            try:
                port = resolve_device(self.device, self._platform)
                self._handle = await asyncio.to_thread(self._opener, port, self.baud)
            except (SerialLinkError, serial.SerialException, OSError) as e:
                logger.warning("Error opening serial port: %s", e)
                await self._sleep(self.retry_delay)
            else:
                logger.info("Serial opened: %s @ %s baud", port, self.baud)

    async def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes. Call with ``lock`` held on a connected link.

        Returns ``b""`` when nothing arrived within the read timeout. Raises
        ``SerialLinkError`` after dropping the handle if the device failed.
        """
        handle = self._handle
        try:
            n = handle.in_waiting
            return await asyncio.to_thread(handle.read, min(n, size) if n else 1)
        except (serial.SerialException, OSError) as e:
            self.close()
            raise SerialLinkError(f"Error reading serial port: {e}") from e

    async def write(self, data: bytes) -> None:
        """Write all of ``data`` to the device under the link lock.

        Bytes written while the device is gone are dropped without waiting for
        the lock, which the relay loop holds while reopening. A failing write
        drops the handle so the relay loop reopens it.
        """
        if self._handle is None:
            logger.debug("Serial disconnected, dropping %d bytes", len(data))
            return
        async with self.lock:
            handle = self._handle
            if handle is None:
                logger.debug("Serial disconnected, dropping %d bytes", len(data))
                return
            try:
                await asyncio.to_thread(handle.write, data)
            except (serial.SerialException, OSError) as e:
                logger.warning("Error writing serial port: %s", e)
                self.close()

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except (serial.SerialException, OSError) as e:
            logger.debug("Error closing serial port: %s", e)
