import os
import select
import socket

import pytest

from traveller import anet
from traveller.anet import AnetError


@pytest.fixture
def server():
    sock = anet.tcp_server(0, "127.0.0.1", 16)
    yield sock
    sock.close()


def _free_port():
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def test_resolve_ip_numeric_ipv4():
    assert anet.resolve_ip("127.0.0.1") == "127.0.0.1"


def test_resolve_ip_rejects_names():
    with pytest.raises(AnetError):
        anet.resolve_ip("localhost")


def test_resolve_localhost():
    assert anet.resolve("localhost") in ("127.0.0.1", "::1")


def test_tcp_server_is_listening(server):
    ip, port = anet.sock_name(server)
    assert ip == "127.0.0.1"
    assert port > 0


def test_connect_accept_round_trip(server):
    _, port = anet.sock_name(server)
    client = anet.tcp_connect("127.0.0.1", port)
    conn, ip, peer_port = anet.tcp_accept(server)
    try:
        assert ip == "127.0.0.1"
        assert peer_port == anet.sock_name(client)[1]
        assert anet.peer_to_string(client) == ("127.0.0.1", port)
        assert anet.write_all(client, b"hello world") == 11
        assert anet.read_exact(conn, 11) == b"hello world"
    finally:
        client.close()
        conn.close()


def test_read_exact_stops_at_eof(server):
    _, port = anet.sock_name(server)
    client = anet.tcp_connect("127.0.0.1", port)
    conn, _, _ = anet.tcp_accept(server)
    try:
        anet.write_all(client, b"abc")
        client.close()
        assert anet.read_exact(conn, 10) == b"abc"
    finally:
        conn.close()


def test_tcp_connect_refused():
    with pytest.raises(AnetError):
        anet.tcp_connect("127.0.0.1", _free_port())


def test_tcp_server_port_in_use(server):
    _, port = anet.sock_name(server)
    with pytest.raises(AnetError):
        anet.tcp_server(port, "127.0.0.1", 16)


def test_nonblock_connect(server):
    _, port = anet.sock_name(server)
    client = anet.tcp_nonblock_connect("127.0.0.1", port)
    try:
        assert client.getblocking() is False
    finally:
        client.close()


def test_nonblock_bind_connect_uses_source(server):
    _, port = anet.sock_name(server)
    client = anet.tcp_nonblock_bind_connect("127.0.0.1", port, "127.0.0.1")
    try:
        assert anet.sock_name(client)[0] == "127.0.0.1"
    finally:
        client.close()


def test_set_nonblock():
    sock = socket.socket()
    try:
        anet.set_nonblock(sock)
        assert sock.getblocking() is False
    finally:
        sock.close()


def test_tcp_no_delay_toggles():
    sock = socket.socket()
    try:
        anet.enable_tcp_no_delay(sock)
        assert sock.getsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY) != 0
        anet.disable_tcp_no_delay(sock)
        assert sock.getsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY) == 0
    finally:
        sock.close()


def test_keep_alive_options():
    sock = socket.socket()
    try:
        anet.keep_alive(sock, 30)
        assert sock.getsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE) != 0
    finally:
        sock.close()
    with pytest.raises(AnetError):
        anet.keep_alive(sock, 30)


def test_tcp_keep_alive():
    sock = socket.socket()
    try:
        anet.tcp_keep_alive(sock)
        assert sock.getsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE) != 0
    finally:
        sock.close()
    with pytest.raises(AnetError):
        anet.tcp_keep_alive(sock)


def test_set_send_buffer():
    sock = socket.socket()
    try:
        anet.set_send_buffer(sock, 65536)
        assert sock.getsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF) >= 65536
    finally:
        sock.close()


def test_unix_round_trip(tmp_path):
    path = str(tmp_path / "s.sock")
    server = anet.unix_server(path, 0o600, 5)
    try:
        assert os.stat(path).st_mode & 0o777 == 0o600
        client = anet.unix_connect(path)
        conn = anet.unix_accept(server)
        try:
            anet.write_all(client, b"ping")
            assert anet.read_exact(conn, 4) == b"ping"
        finally:
            client.close()
            conn.close()
    finally:
        server.close()


def test_unix_connect_missing(tmp_path):
    with pytest.raises(AnetError):
        anet.unix_connect(str(tmp_path / "missing.sock"))


def test_peer_to_string_unconnected():
    sock = socket.socket()
    try:
        with pytest.raises(AnetError):
            anet.peer_to_string(sock)
    finally:
        sock.close()


def test_peer_socket_listen_connect():
    listener = anet.peer_socket(0, "127.0.0.1", socket.AF_INET)
    try:
        assert listener.getblocking() is False
        assert anet.peer_listen(listener, 8) is listener
        _, port = anet.sock_name(listener)
        client = anet.peer_socket(0, "0.0.0.0", socket.AF_INET)
        try:
            assert anet.peer_connect(client, "127.0.0.1", port) is client
            ready, _, _ = select.select([listener], [], [], 5)
            assert ready == [listener]
            conn, ip, peer_port = anet.tcp_accept(listener)
            try:
                assert ip == "127.0.0.1"
                assert peer_port == anet.sock_name(client)[1]
            finally:
                conn.close()
        finally:
            client.close()
    finally:
        listener.close()


def test_peer_socket_port_in_use(server):
    _, port = anet.sock_name(server)
    with pytest.raises(AnetError):
        anet.peer_socket(port, "127.0.0.1", socket.AF_INET)