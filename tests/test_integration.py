import socket
import time
from pathlib import Path

from hfServer import hfServer


def _get(port: int, path: str, timeout: float = 2.0) -> bytes:
    s = socket.create_connection(("127.0.0.1", port), timeout=timeout)
    try:
        s.sendall(f"GET {path} HTTP/1.1\r\nHost: 127.0.0.1\r\nConnection: close\r\n\r\n".encode("utf-8"))
        resp = b""
        while True:
            part = s.recv(4096)
            if not part:
                break
            resp += part
        return resp
    finally:
        s.close()


def test_integration_two_bindings(tmp_path: Path):
    site_a = tmp_path / "a"
    site_b = tmp_path / "b"
    for site in (site_a, site_b):
        site.mkdir()
        (site / "sub").mkdir()
    (site_a / "name.txt").write_text("site-a")
    (site_b / "name.txt").write_text("site-b")

    server = hfServer({"127.0.0.1:0": str(site_a), "localhost:0": str(site_b)})
    server.start()
    try:
        port_a = server.addresses["127.0.0.1:0"][1]
        port_b = server.addresses["localhost:0"][1]
        assert port_a != port_b

        # an idle connection on one listener does not hold up the other
        idle = socket.create_connection(("127.0.0.1", port_a), timeout=2.0)
        try:
            started = time.monotonic()
            resp = _get(port_b, "/name.txt")
            assert b"200 OK" in resp
            assert resp.endswith(b"site-b")
            # nor other connections to the same listener
            resp = _get(port_a, "/name.txt")
            assert resp.endswith(b"site-a")
            assert time.monotonic() - started < 2.0
        finally:
            idle.close()

        for port in (port_a, port_b):
            resp = _get(port, "/sub/")
            assert b" 403 " in resp.split(b"\r\n", 1)[0]
            assert resp.endswith(b"Forbidden\n")
    finally:
        server.stop()


def test_integration_listing_enabled_for_every_binding(tmp_path: Path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "x.bin").write_bytes(b"x")
    server = hfServer({"127.0.0.1:0": str(tmp_path)}, dir_listing=True)
    server.start()
    try:
        port = server.addresses["127.0.0.1:0"][1]
        resp = _get(port, "/sub/")
        assert b"200 OK" in resp
        assert b"x.bin" in resp
        assert b"Last-Modified" not in resp
    finally:
        server.stop()
