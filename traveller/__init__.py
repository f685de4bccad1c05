"""Actor devices, a select-based event loop, socket helpers and a RESP-style service server."""

__version__ = "0.1.0"

__all__ = [
    "actor",
    "device",
    "poller",
    "eventloop",
    "anet",
    "protocol",
    "server",
    "services",
]