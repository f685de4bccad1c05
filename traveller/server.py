"""Connections speaking the RESP-style protocol, and the server that owns them."""

from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from traveller import anet
from traveller.anet import AnetError
from traveller.eventloop import EventLoop, EventLoopError
from traveller.poller import READABLE, WRITABLE
from traveller.protocol import (
    Data,
    Message,
    ProtocolError,
    RecvType,
    RespParser,
    encode_array,
    encode_bulk,
    encode_error,
)
from traveller.services import default_services

logger = logging.getLogger(__name__)

TCP_BACKLOG = 1024
MAX_SNODES = 1024 * 24
TCP_KEEPALIVE = 0
MAX_ACCEPTS_PER_CALL = 1000
IOBUF_LEN = 1024
MAX_QUERYBUF_LEN = 1024 * 1024 * 1024

_CTX_POOL_GROW = 20
_CTX_POOL_LIMIT = 200
_CTX_POOL_TRIM = 100

_MAX_SNODES_REPLY = b"-ERR max number of snodes reached\r\n"

SnodeProc = Callable[["Snode"], Any]


@dataclass(eq=False)
class RequestContext:
    """State kept while waiting for a remote peer to answer a script request."""

    request_id: int = 0
    script: Any = None
    callback_url: str = ""
    callback_arg: str = ""

    def reset(self) -> None:
        self.callback_url = ""
        self.callback_arg = ""
        self.script = None


def _to_bytes(data: Data) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


class Snode:
    """One connection: it parses incoming messages and buffers replies."""

    def __init__(self, server: Any, sock: Optional[socket.socket] = None) -> None:
        self.server = server
        self.sock = sock
        self.fd = sock.fileno() if sock is not None else -1
        self.fdstr = str(self.fd)
        self.parser = RespParser()
        self.writebuf = bytearray()
        self.close_after_reply = False
        self.recv_type: Optional[RecvType] = None
        self.message: Optional[Message] = None
        self.response_proc: Optional[SnodeProc] = None
        self.hup_proc: Optional[SnodeProc] = None
        self.request_ctxs: list[RequestContext] = []
        self.request_ctx_max_id = 0
        self.write_mode = False
        self.closed = False
        self.last_interaction = time.time()

    @property
    def argv(self) -> list[bytes]:
        """Arguments of the message being handled."""
        return self.message.argv if self.message is not None else []

    def _start_write_mode(self) -> None:
        if self.write_mode or self.sock is None or self.closed:
            return
        self.server.loop.create_file_event(self.fd, WRITABLE, self._on_writable, self)
        self.write_mode = True

    def _append(self, data: bytes) -> None:
        self._start_write_mode()
        self.writebuf += data

    def add_reply_bulk(self, data: Data) -> None:
        """Queue one bulk string."""
        self._append(encode_bulk(data))

    def add_reply_raw(self, data: Data) -> None:
        """Queue bytes exactly as given."""
        self._append(_to_bytes(data))

    def add_reply_multi(self, *args: Data) -> None:
        """Queue an array of bulk strings."""
        self._append(encode_array(args))

    def add_reply_error(self, message: Data) -> None:
        """Queue an error reply."""
        self._append(encode_error(message))

    def handle_input(self, data: bytes) -> list[Message]:
        """Parse ``data`` and dispatch every complete message; returns them."""
        if self.close_after_reply:
            return []
        error: Optional[ProtocolError] = None
        try:
            messages = self.parser.feed(data)
        except ProtocolError as exc:
            messages = exc.messages
            error = exc
        handled = []
        for message in messages:
            if self.closed:
                break
            self._dispatch(message)
            handled.append(message)
        if error is not None and not self.closed:
            if error.reply:
                self.add_reply_error(str(error))
            self.close_after_reply = True
        return handled

    def _dispatch(self, message: Message) -> None:
        self.message = message
        self.recv_type = message.type
        if self.response_proc is not None:
            self.response_proc(self)
            return
        proc = None
        if message.command is not None:
            proc = self.server._find_service(message.command)
        if proc is None:
            self.add_reply_error("command not found")
            return
        proc(self)

    def flush(self) -> int:
        """Send as much of the reply buffer as the socket takes; returns bytes sent."""
        if self.sock is None or self.closed:
            return 0
        written = 0
        with memoryview(self.writebuf) as view:
            while written < len(view):
                try:
                    sent = self.sock.send(view[written:])
                except BlockingIOError:
                    break
                except OSError:
                    hang_up = True
                    break
                if sent == 0:
                    break
                written += sent
            else:
                hang_up = False
            if written < len(view) and "hang_up" in locals() and hang_up:
                pass
        if locals().get("hang_up"):
            self._hang_up()
            return written
        del self.writebuf[:written]
        if not self.writebuf:
            if self.write_mode:
                self.server.loop.delete_file_event(self.fd, WRITABLE)
                self.write_mode = False
            if self.close_after_reply:
                self.server.free_snode(self)
        return written

    def _hang_up(self) -> None:
        self.recv_type = RecvType.HUP
        if self.hup_proc is not None:
            self.hup_proc(self)
        self.server.free_snode(self)

    def _on_writable(self, loop: Any, fd: int, client_data: Any, mask: int) -> None:
        self.flush()

    def _on_readable(self, loop: Any, fd: int, client_data: Any, mask: int) -> None:
        if self.close_after_reply or self.closed:
            return
        self.server.current_snode = self
        try:
            chunk = self.sock.recv(IOBUF_LEN)
        except BlockingIOError:
            return
        except OSError as exc:
            logger.debug("Reading from client: %s", exc)
            self.server.free_snode(self)
            return
        if not chunk:
            self.server.free_snode(self)
            return
        self.last_interaction = time.time()
        self.handle_input(chunk)


class RespServer:
    """Accepts and opens connections and routes their commands to services."""

    def __init__(self, loop: Optional[EventLoop] = None) -> None:
        self.loop = loop if loop is not None else EventLoop()
        self.unixtime = -1
        self.max_snodes = MAX_SNODES
        self.bindaddr = "0.0.0.0"
        self.port = 0
        self.tcp_backlog = TCP_BACKLOG
        self.listeners: list[socket.socket] = []
        self.stat_rejected_conn = 0
        self.stat_num_connections = 0
        self.snodes: dict[str, Snode] = {}
        self.snode_max_querybuf_len = MAX_QUERYBUF_LEN
        self.tcpkeepalive = TCP_KEEPALIVE
        self.current_snode: Optional[Snode] = None
        self.request_ctx_pool: list[RequestContext] = []
        self.services: dict[str, SnodeProc] = {}
        for name, proc in default_services().items():
            self.register_service(name, proc)

    def prepare(self, port: int) -> None:
        """Listen on ``port`` over IPv4 and, where possible, IPv6."""
        if port <= 0:
            raise ValueError(f"invalid listen port {port}")
        self.port = port
        self.listeners = []
        for family in (socket.AF_INET, socket.AF_INET6):
            try:
                sock = anet.peer_socket(port, self.bindaddr, family)
            except AnetError:
                continue
            try:
                anet.peer_listen(sock, self.tcp_backlog)
            except AnetError:
                sock.close()
                continue
            self.listeners.append(sock)
        if not self.listeners:
            logger.error("Listen to port err")
            raise AnetError(f"unable to listen on port {port}")
        for sock in self.listeners:
            try:
                self.loop.create_file_event(
                    sock.fileno(), READABLE, self._accept_tcp, sock
                )
            except EventLoopError:
                logger.error("Unrecoverable error creating listener file event.")
        logger.info("listening on port %d", port)

    def register_service(self, name: str, proc: SnodeProc) -> None:
        """Route commands named ``name`` (in any letter case) to ``proc``."""
        self.services[name.lower()] = proc

    def _find_service(self, command: bytes) -> Optional[SnodeProc]:
        return self.services.get(command.decode("utf-8", "replace").lower())

    def _create_snode(self, sock: socket.socket) -> Snode:
        for configure in (anet.set_nonblock, anet.enable_tcp_no_delay):
            try:
                configure(sock)
            except AnetError:
                pass
        if self.tcpkeepalive:
            try:
                anet.keep_alive(sock, self.tcpkeepalive)
            except AnetError:
                pass
        snode = Snode(self, sock)
        try:
            self.loop.create_file_event(snode.fd, READABLE, snode._on_readable, snode)
        except EventLoopError:
            sock.close()
            raise
        self.stat_num_connections += 1
        self.snodes.setdefault(snode.fdstr, snode)
        return snode

    def _accept_common(self, conn: socket.socket) -> None:
        try:
            snode = self._create_snode(conn)
        except (AnetError, EventLoopError) as exc:
            logger.warning("Error registering fd event for the new snode: %s", exc)
            conn.close()
            return
        if len(self.snodes) > self.max_snodes:
            try:
                conn.send(_MAX_SNODES_REPLY)
            except OSError:
                pass
            self.stat_rejected_conn += 1
            self.free_snode(snode)

    def _accept_tcp(self, loop: Any, fd: int, listener: socket.socket, mask: int) -> None:
        for _ in range(MAX_ACCEPTS_PER_CALL):
            try:
                conn, _, _ = anet.tcp_accept(listener)
            except AnetError as exc:
                if not isinstance(exc.__cause__, BlockingIOError):
                    logger.warning("Accepting snode connection: %s", exc)
                return
            self._accept_common(conn)

    def connect(self, addr: str, port: int) -> Optional[Snode]:
        """Open a connection to a peer; None when it cannot be made."""
        sock: Optional[socket.socket] = None
        try:
            sock = anet.peer_socket(0, "0.0.0.0", socket.AF_INET)
            anet.peer_connect(sock, addr, port)
        except AnetError:
            if sock is not None:
                sock.close()
            logger.warning("Unable to connect to %s", addr)
            return None
        try:
            return self._create_snode(sock)
        except EventLoopError:
            return None

    def get_snode(self, fdstr: str) -> Optional[Snode]:
        """Return the connection registered under ``fdstr``, if any."""
        return self.snodes.get(fdstr)

    def free_snode(self, snode: Snode) -> None:
        """Close a connection and release everything it holds."""
        if snode.closed:
            return
        snode.closed = True
        logger.debug("Free snode %d", snode.fd)
        if snode.sock is not None:
            self.loop.delete_file_event(snode.fd, READABLE | WRITABLE)
            snode.write_mode = False
            snode.sock.close()
        if self.snodes.get(snode.fdstr) is snode:
            del self.snodes[snode.fdstr]
            self.stat_num_connections -= 1
        for ctx in snode.request_ctxs:
            self.recycle_request_ctx(ctx)
        snode.request_ctxs.clear()
        if self.current_snode is snode:
            self.current_snode = None

    def new_request_ctx(self) -> RequestContext:
        """Take a cleared request context from the pool."""
        if not self.request_ctx_pool:
            self.request_ctx_pool.extend(RequestContext() for _ in range(_CTX_POOL_GROW))
        ctx = self.request_ctx_pool.pop(0)
        ctx.reset()
        return ctx

    def recycle_request_ctx(self, ctx: RequestContext) -> None:
        """Return a request context to the pool, trimming a large pool."""
        if len(self.request_ctx_pool) > _CTX_POOL_LIMIT:
            del self.request_ctx_pool[:_CTX_POOL_TRIM]
        self.request_ctx_pool.append(ctx)