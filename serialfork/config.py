"""Configuration and command-line argument parsing for the serial fork server."""

import argparse
import sys

DEFAULT_BAUD = 115200
DEFAULT_LISTEN = "0.0.0.0"
DEFAULT_TCP_PORT = 5050
DEFAULT_WEB_PORT = 8080


def parse_args(argv=None):
    """Parse command-line arguments and return a validated namespace."""
    parser = argparse.ArgumentParser(
        prog="serialfork",
        description=(
            "Share one serial device with any number of TCP clients and "
            "UDP port 14550."
        ),
    )
    parser.add_argument(
        "device",
        help="Serial device: a path or glob such as /dev/ttyACM* (COMn on Windows)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=DEFAULT_TCP_PORT,
        help=f"The port to listen on (default: {DEFAULT_TCP_PORT})",
    )
    parser.add_argument(
        "--webport",
        type=int,
        default=DEFAULT_WEB_PORT,
        help=f"The port for the JSON status page, 0 to disable (default: {DEFAULT_WEB_PORT})",
    )
    parser.add_argument(
        "--baud",
        type=int,
        default=DEFAULT_BAUD,
        help=f"Baud rate (default: {DEFAULT_BAUD})",
    )
    parser.add_argument(
        "--listen",
        default=DEFAULT_LISTEN,
        help=f"Listen address for TCP, UDP and HTTP (default: {DEFAULT_LISTEN})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging (dropped datagrams, client errors)",
    )
    args = parser.parse_args(argv)
    _validate(args)
    return args


def _validate(args, platform=sys.platform):
    """Validate parsed arguments; raise ValueError on invalid values."""
    if not (args.device and args.device.strip()):
        raise ValueError("Serial device must be non-empty")
    if platform == "win32" and not args.device.startswith("COM"):
        raise ValueError("Windows port must start with COM")
    if args.baud <= 0:
        raise ValueError("Baud rate (--baud) must be positive")
    if not (1 <= args.port <= 65535):
        raise ValueError("TCP port (--port) must be between 1 and 65535")
    if not (0 <= args.webport <= 65535):
        raise ValueError("Web port (--webport) must be between 0 and 65535")
