"""Serial fork: share one serial device with many TCP clients and UDP port 14550."""

from serialfork.bridge import ForkingServer, run_bridge

__all__ = ["ForkingServer", "run_bridge"]
