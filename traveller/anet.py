"""Basic TCP and Unix socket helpers that raise :class:`AnetError` on failure."""

from __future__ import annotations

import errno
import logging
import os
import socket
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

KEEPALIVE_PROBES = 3


class AnetError(OSError):
    """A socket operation failed; the message says which step and why."""


def _reason(exc: Optional[BaseException]) -> str:
    if exc is None:
        return "no address available"
    if isinstance(exc, OSError) and exc.strerror:
        return exc.strerror
    return str(exc)


@contextmanager
def _reporting(what: str) -> Iterator[None]:
    try:
        yield
    except AnetError:
        raise
    except OSError as exc:
        raise AnetError(f"{what}: {_reason(exc)}") from exc


def _getaddrinfo(host, port, family, flags=0):
    try:
        return socket.getaddrinfo(host, port, family, socket.SOCK_STREAM, 0, flags)
    except socket.gaierror as exc:
        raise AnetError(_reason(exc)) from exc


def _split_address(family: int, address) -> tuple[str, int]:
    if family in (socket.AF_INET, socket.AF_INET6):
        return address[0].split("%", 1)[0], address[1]
    return (address if isinstance(address, str) else "?"), 0


def set_nonblock(sock: socket.socket) -> None:
    """Put the socket in non-blocking mode."""
    with _reporting("fcntl(F_SETFL,O_NONBLOCK)"):
        sock.setblocking(False)


def keep_alive(sock: socket.socket, interval: int) -> None:
    """Enable keepalive probing; where supported, probe after ``interval`` seconds."""
    with _reporting("setsockopt SO_KEEPALIVE"):
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    if hasattr(socket, "TCP_KEEPIDLE"):
        with _reporting("setsockopt TCP_KEEPIDLE"):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, interval)
    if hasattr(socket, "TCP_KEEPINTVL"):
        # Three probes are sent before the peer is declared dead.
        with _reporting("setsockopt TCP_KEEPINTVL"):
            sock.setsockopt(
                socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, max(interval // 3, 1)
            )
    if hasattr(socket, "TCP_KEEPCNT"):
        with _reporting("setsockopt TCP_KEEPCNT"):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPCNT, KEEPALIVE_PROBES)


def _set_tcp_no_delay(sock: socket.socket, value: int) -> None:
    with _reporting("setsockopt TCP_NODELAY"):
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, value)


def enable_tcp_no_delay(sock: socket.socket) -> None:
    """Disable Nagle's algorithm."""
    _set_tcp_no_delay(sock, 1)


def disable_tcp_no_delay(sock: socket.socket) -> None:
    """Re-enable Nagle's algorithm."""
    _set_tcp_no_delay(sock, 0)


def set_send_buffer(sock: socket.socket, size: int) -> None:
    """Set the kernel send buffer size."""
    with _reporting("setsockopt SO_SNDBUF"):
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, size)


def tcp_keep_alive(sock: socket.socket) -> None:
    """Turn on SO_KEEPALIVE with the system's default timings."""
    with _reporting("setsockopt SO_KEEPALIVE"):
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)


def _generic_resolve(host: str, flags: int) -> str:
    infos = _getaddrinfo(host, None, socket.AF_UNSPEC, flags)
    family, _, _, _, address = infos[0]
    return _split_address(family, address)[0]


def resolve(host: str) -> str:
    """Resolve a host name to the textual form of its first address."""
    return _generic_resolve(host, 0)


def resolve_ip(host: str) -> str:
    """Validate and normalise a numeric IPv4 or IPv6 address."""
    return _generic_resolve(host, socket.AI_NUMERICHOST)


def _set_reuse_addr(sock: socket.socket) -> None:
    with _reporting("setsockopt SO_REUSEADDR"):
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)


def _create_socket(family: int) -> socket.socket:
    with _reporting("creating socket"):
        sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        _set_reuse_addr(sock)
    except AnetError:
        sock.close()
        raise
    return sock


def _bind_source(sock: socket.socket, source_addr: str) -> None:
    last: Optional[OSError] = None
    for *_, address in _getaddrinfo(source_addr, None, socket.AF_UNSPEC):
        try:
            sock.bind(address)
            return
        except OSError as exc:
            last = exc
    raise AnetError(f"bind: {_reason(last)}")


def _tcp_generic_connect(
    addr: str, port: int, source_addr: Optional[str], nonblock: bool
) -> socket.socket:
    last: Optional[OSError] = None
    for family, type_, proto, _, address in _getaddrinfo(addr, port, socket.AF_UNSPEC):
        try:
            sock = socket.socket(family, type_, proto)
        except OSError as exc:
            last = exc
            continue
        try:
            _set_reuse_addr(sock)
            if nonblock:
                set_nonblock(sock)
            if source_addr is not None:
                _bind_source(sock, source_addr)
        except AnetError:
            sock.close()
            raise
        try:
            sock.connect(address)
        except OSError as exc:
            if nonblock and exc.errno == errno.EINPROGRESS:
                return sock
            sock.close()
            last = exc
            continue
        return sock
    raise AnetError(f"creating socket: {_reason(last)}")


def tcp_connect(addr: str, port: int) -> socket.socket:
    """Open a blocking TCP connection to ``addr:port``."""
    return _tcp_generic_connect(addr, port, None, False)


def tcp_nonblock_connect(addr: str, port: int) -> socket.socket:
    """Start a non-blocking TCP connection; it may still be in progress."""
    return _tcp_generic_connect(addr, port, None, True)


def tcp_nonblock_bind_connect(addr: str, port: int, source_addr: str) -> socket.socket:
    """Like :func:`tcp_nonblock_connect`, bound locally to ``source_addr``."""
    return _tcp_generic_connect(addr, port, source_addr, True)


def _unix_generic_connect(path: str, nonblock: bool) -> socket.socket:
    sock = _create_socket(socket.AF_UNIX)
    try:
        if nonblock:
            set_nonblock(sock)
        sock.connect(path)
    except AnetError:
        sock.close()
        raise
    except OSError as exc:
        if nonblock and exc.errno == errno.EINPROGRESS:
            return sock
        sock.close()
        raise AnetError(f"connect: {_reason(exc)}") from exc
    return sock


def unix_connect(path: str) -> socket.socket:
    """Connect to a Unix domain stream socket."""
    return _unix_generic_connect(path, False)


def unix_nonblock_connect(path: str) -> socket.socket:
    """Connect to a Unix domain stream socket without blocking."""
    return _unix_generic_connect(path, True)


def read_exact(sock: socket.socket, count: int) -> bytes:
    """Read ``count`` bytes, or fewer if the peer closes first."""
    chunks = bytearray()
    while len(chunks) < count:
        chunk = sock.recv(count - len(chunks))
        if not chunk:
            break
        chunks += chunk
    return bytes(chunks)


def write_all(sock: socket.socket, data: bytes) -> int:
    """Write all of ``data`` unless the socket stops accepting; returns bytes sent."""
    view = memoryview(data)
    total = 0
    while total < len(view):
        sent = sock.send(view[total:])
        if sent == 0:
            break
        total += sent
    return total


def _listen(sock: socket.socket, address, backlog: int) -> None:
    try:
        with _reporting("bind"):
            sock.bind(address)
        with _reporting("listen"):
            sock.listen(backlog)
    except AnetError:
        sock.close()
        raise


def _set_v6_only(sock: socket.socket) -> None:
    try:
        with _reporting("setsockopt"):
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
    except AnetError:
        sock.close()
        raise


def _tcp_server(port: int, bindaddr: Optional[str], family: int, backlog: int):
    infos = _getaddrinfo(bindaddr, port, family, socket.AI_PASSIVE)
    for fam, type_, proto, _, address in infos:
        try:
            sock = socket.socket(fam, type_, proto)
        except OSError:
            continue
        if family == socket.AF_INET6:
            _set_v6_only(sock)
        try:
            _set_reuse_addr(sock)
        except AnetError:
            sock.close()
            raise
        _listen(sock, address, backlog)
        return sock
    raise AnetError("unable to bind socket")


def tcp_server(port: int, bindaddr: Optional[str], backlog: int) -> socket.socket:
    """Create a listening IPv4 TCP socket."""
    return _tcp_server(port, bindaddr, socket.AF_INET, backlog)


def tcp6_server(port: int, bindaddr: Optional[str], backlog: int) -> socket.socket:
    """Create a listening IPv6-only TCP socket."""
    return _tcp_server(port, bindaddr, socket.AF_INET6, backlog)


def unix_server(path: str, perm: int, backlog: int) -> socket.socket:
    """Create a listening Unix domain socket; ``perm`` (if non-zero) is applied."""
    sock = _create_socket(socket.AF_UNIX)
    _listen(sock, path, backlog)
    if perm:
        os.chmod(path, perm)
    return sock


def _accept(server: socket.socket):
    with _reporting("accept"):
        return server.accept()


def tcp_accept(server: socket.socket) -> tuple[socket.socket, str, int]:
    """Accept a TCP connection; returns the socket, peer address and port."""
    conn, address = _accept(server)
    ip, port = _split_address(conn.family, address)
    return conn, ip, port


def unix_accept(server: socket.socket) -> socket.socket:
    """Accept a Unix domain connection."""
    conn, _ = _accept(server)
    return conn


def peer_to_string(sock: socket.socket) -> tuple[str, int]:
    """Return the peer's address and port."""
    with _reporting("getpeername"):
        address = sock.getpeername()
    return _split_address(sock.family, address)


def sock_name(sock: socket.socket) -> tuple[str, int]:
    """Return the local address and port."""
    with _reporting("getsockname"):
        address = sock.getsockname()
    return _split_address(sock.family, address)


def peer_socket(port: int, bindaddr: Optional[str], family: int) -> socket.socket:
    """Create a bound, non-blocking socket usable for listening or connecting.

    A ``port`` of zero or less lets the system choose one.
    """
    infos = _getaddrinfo(bindaddr, port if port > 0 else 0, family, socket.AI_PASSIVE)
    for fam, type_, proto, _, address in infos:
        try:
            sock = socket.socket(fam, type_, proto)
        except OSError:
            continue
        if family == socket.AF_INET6:
            _set_v6_only(sock)
        try:
            _set_reuse_addr(sock)
            set_nonblock(sock)
        except AnetError:
            sock.close()
            raise
        try:
            sock.bind(address)
        except OSError as exc:
            logger.warning("bind fail")
            sock.close()
            raise AnetError(f"bind: {_reason(exc)}") from exc
        return sock
    raise AnetError("unable to bind socket")


def peer_connect(sock: socket.socket, addr: str, port: int) -> socket.socket:
    """Connect an existing socket; a connection still in progress is accepted."""
    infos = _getaddrinfo(addr, port, sock.family)
    if not infos:
        raise AnetError(f"no address for {addr}")
    *_, address = infos[0]
    code = sock.connect_ex(address)
    if code in (0, errno.EINPROGRESS, errno.EOPNOTSUPP):
        return sock
    logger.info("%d", code)
    raise AnetError(f"connect: {os.strerror(code)}")


def peer_listen(sock: socket.socket, backlog: int) -> socket.socket:
    """Start listening on a socket made by :func:`peer_socket`."""
    with _reporting("getsockname"):
        sock.getsockname()
    with _reporting("listen"):
        sock.listen(backlog)
    return sock