"""Built-in services that answer commands received on a connection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from traveller.server import Snode

logger = logging.getLogger(__name__)

TEST_PEER_ADDR = "127.0.0.1"
TEST_PEER_PORT = 1091


def service_test(snode: "Snode") -> None:
    """Reply with a fixed array and ask a local peer to close."""
    snode.add_reply_multi("osdinc", "21oi4", "oaiwef")
    peer = snode.server.connect(TEST_PEER_ADDR, TEST_PEER_PORT)
    if peer is not None:
        peer.add_reply_multi("close", "so;iafnonaioient")


def service_msg(snode: "Snode") -> None:
    """Log a message sent by the peer."""
    argv = snode.argv
    text = argv[1].decode("utf-8", "replace") if len(argv) > 1 else ""
    logger.debug("recv msg [%d]:%s", snode.fd, text)


def service_close(snode: "Snode") -> None:
    """Answer with a message and close the connection once it is sent."""
    logger.debug("closed by other people")
    snode.add_reply_multi("msg", "21oi4oaiwef")
    snode.close_after_reply = True


def default_services() -> dict[str, Callable[["Snode"], Any]]:
    """The services every server offers, keyed by command name."""
    return {
        "test": service_test,
        "msg": service_msg,
        "close": service_close,
    }