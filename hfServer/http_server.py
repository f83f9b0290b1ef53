from __future__ import annotations

import datetime
import email.utils
import html
import io
import logging
import re
import socket
import sys
import threading
import urllib.parse
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, BinaryIO, Callable, Optional, Tuple, Union

from .filesystem import INDEX_NAME, Dir, File, FileInfoShim, FileSystem, Forbidden

LOG = logging.getLogger(__name__)

_RANGE_RE = re.compile(r"bytes=(\d*)-(\d*)$")


class RangeNotSatisfiable(ValueError):
    pass


def parse_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """
    Parse a single `bytes=start-end` range into inclusive offsets.

    Returns None when the header is absent, malformed or asks for several
    ranges, in which case the whole body is sent. Raises RangeNotSatisfiable
    when the range lies outside the body.
    """
    if not header:
        return None
    m = _RANGE_RE.match(header.strip())
    if not m:
        return None
    start_s, end_s = m.groups()
    if start_s == "" and end_s == "":
        return None
    if start_s == "":
        # suffix length
        length = int(end_s)
        if length == 0 or size == 0:
            raise RangeNotSatisfiable(header)
        return max(0, size - length), size - 1
    start = int(start_s)
    end = size - 1 if end_s == "" else int(end_s)
    if end < start:
        return None
    if start >= size:
        raise RangeNotSatisfiable(header)
    return start, min(end, size - 1)


class _LimitedReader:
    def __init__(self, f: File, remaining: int) -> None:
        self._f = f
        self._remaining = remaining

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        if size < 0 or size > self._remaining:
            size = self._remaining
        data = self._f.read(size)
        self._remaining -= len(data)
        return data

    def close(self) -> None:
        self._f.close()


Body = Union[File, _LimitedReader, BinaryIO]


class FileRequestHandler(SimpleHTTPRequestHandler):
    """
    Static file handler that resolves every request through a FileSystem
    instead of touching the OS directly, so the handles it sees can veto
    listings and rewrite metadata.
    """

    def __init__(self, *args: Any, filesystem: FileSystem, **kwargs: Any) -> None:
        self.filesystem = filesystem
        super().__init__(*args, directory=str(filesystem.root), **kwargs)

    # ensure thread-safe logging
    def log_message(self, format: str, *args: Any) -> None:
        LOG.info("%s - - %s", self.client_address[0], format % args)

    def request_name(self) -> str:
        path = self.path.split("?", 1)[0].split("#", 1)[0]
        try:
            return urllib.parse.unquote(path, errors="surrogatepass")
        except UnicodeDecodeError:
            return urllib.parse.unquote(path)

    def send_head(self) -> Optional[Body]:
        name = self.request_name()
        try:
            f = self.filesystem.open(name)
        except OSError as exc:
            self.send_os_error(exc)
            return None
        try:
            info = f.stat()
            if not info.is_dir:
                if name.endswith("/"):
                    f.close()
                    self.send_error(HTTPStatus.NOT_FOUND, "File not found")
                    return None
                return self.send_file(f, info)
            parts = urllib.parse.urlsplit(self.path)
            if not parts.path.endswith("/"):
                f.close()
                self.send_response(HTTPStatus.MOVED_PERMANENTLY)
                new_parts = (parts[0], parts[1], parts[2] + "/", parts[3], parts[4])
                self.send_header("Location", urllib.parse.urlunsplit(new_parts))
                self.send_header("Content-Length", "0")
                self.end_headers()
                return None
            index = self.open_index(name)
            if index is not None:
                f.close()
                f, info = index
                return self.send_file(f, info)
            try:
                return self.send_listing(f, name)
            except OSError as exc:
                self.send_os_error(exc)
                return None
            finally:
                f.close()
        except Exception:
            f.close()
            raise

    def open_index(self, name: str) -> Optional[Tuple[File, FileInfoShim]]:
        try:
            f = self.filesystem.open(name.rstrip("/") + "/" + INDEX_NAME)
        except OSError:
            return None
        try:
            info = f.stat()
        except OSError:
            f.close()
            return None
        if info.is_dir:
            f.close()
            return None
        return f, info

    def send_os_error(self, exc: OSError) -> None:
        if isinstance(exc, PermissionError):
            self.send_error(HTTPStatus.FORBIDDEN, "Permission denied")
        elif isinstance(exc, (FileNotFoundError, NotADirectoryError)):
            self.send_error(HTTPStatus.NOT_FOUND, "File not found")
        else:
            LOG.warning("cannot open %s: %s", self.path, exc)
            self.send_error(HTTPStatus.INTERNAL_SERVER_ERROR, "Internal Server Error")

    def not_modified(self, mtime: float) -> bool:
        if "If-Modified-Since" not in self.headers or "If-None-Match" in self.headers:
            return False
        try:
            ims = email.utils.parsedate_to_datetime(self.headers["If-Modified-Since"])
        except (TypeError, IndexError, OverflowError, ValueError):
            return False
        if ims.tzinfo is None:
            ims = ims.replace(tzinfo=datetime.timezone.utc)
        if ims.tzinfo is not datetime.timezone.utc:
            return False
        last_modif = datetime.datetime.fromtimestamp(mtime, datetime.timezone.utc).replace(microsecond=0)
        return last_modif <= ims

    def send_file(self, f: File, info: FileInfoShim) -> Optional[Body]:
        mtime = info.mtime
        if mtime is not None and self.not_modified(mtime):
            f.close()
            self.send_response(HTTPStatus.NOT_MODIFIED)
            self.end_headers()
            return None
        size = info.size
        try:
            rng = parse_range(self.headers.get("Range"), size)
        except RangeNotSatisfiable:
            f.close()
            self.send_response(HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE)
            self.send_header("Content-Range", f"bytes */{size}")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return None
        if rng is None:
            self.send_response(HTTPStatus.OK)
            length = size
        else:
            start, end = rng
            length = end - start + 1
            f.seek(start)
            self.send_response(HTTPStatus.PARTIAL_CONTENT)
            self.send_header("Content-Range", f"bytes {start}-{end}/{size}")
        self.send_header("Content-type", self.guess_type(info.name))
        self.send_header("Content-Length", str(length))
        self.send_header("Accept-Ranges", "bytes")
        if mtime is not None:
            self.send_header("Last-Modified", self.date_time_string(mtime))
        self.end_headers()
        if rng is None:
            return f
        return _LimitedReader(f, length)

    def send_listing(self, f: File, name: str) -> BinaryIO:
        entries = f.readdir(0)
        enc = sys.getfilesystemencoding()
        title = f"Directory listing for {html.escape(name, quote=False)}"
        r = [
            "<!DOCTYPE HTML>",
            '<html lang="en">',
            "<head>",
            f'<meta charset="{enc}">',
            f"<title>{title}</title>",
            "</head>",
            "<body>",
            f"<h1>{title}</h1>",
            "<hr>",
            "<ul>",
        ]
        for entry in entries:
            display = entry.name + "/" if entry.is_dir else entry.name
            link = urllib.parse.quote(display, errors="surrogatepass")
            r.append(f'<li><a href="{link}">{html.escape(display, quote=False)}</a></li>')
        r.extend(["</ul>", "<hr>", "</body>", "</html>", ""])
        encoded = "\n".join(r).encode(enc, "surrogateescape")
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-type", f"text/html; charset={enc}")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        return io.BytesIO(encoded)


class ForbiddenRecoveryMixIn:
    """
    Answers 403 when a Forbidden signal escapes send_head. Other exceptions
    propagate to the server's handle_error.
    """

    FORBIDDEN_BODY = b"Forbidden\n"

    def send_head(self) -> Optional[Body]:
        try:
            return super().send_head()  # type: ignore[misc]
        except Forbidden:
            self.send_forbidden()
            return None

    def send_forbidden(self) -> None:
        body = self.FORBIDDEN_BODY
        self.send_response(HTTPStatus.FORBIDDEN)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("X-Content-Type-Options", "nosniff")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)


class StaticFileHandler(ForbiddenRecoveryMixIn, FileRequestHandler):
    pass


class _HTTPServer(ThreadingHTTPServer):
    def handle_error(self, request: Any, client_address: Any) -> None:
        LOG.exception("Error handling request from %s", client_address[0] if client_address else "?")


class _HTTPServer6(_HTTPServer):
    address_family = socket.AF_INET6


ExitCallback = Callable[["HttpFileServer", Optional[BaseException]], None]


class HttpFileServer:
    def __init__(
        self,
        root_dir: str | Path,
        host: str = "",
        port: int = 8000,
        dir_listing: bool = False,
        logger: Optional[logging.Logger] = None,
        on_exit: Optional[ExitCallback] = None,
    ) -> None:
        self.root_dir = Path(root_dir).resolve()
        self.host = host
        self.port = port
        self.dir_listing = dir_listing
        self.logger = logger or LOG
        self.on_exit = on_exit
        self.filesystem = FileSystem(Dir(self.root_dir), dir_listing=dir_listing)
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._serve_done = threading.Event()
        self.sock_port: Optional[int] = None

    def start(self) -> None:
        if self._server:
            return
        if not self.root_dir.is_dir():
            self.logger.warning("root directory does not exist: %s", self.root_dir)
        server_cls = _HTTPServer6 if ":" in self.host else _HTTPServer
        filesystem = self.filesystem
        server = server_cls((self.host, self.port), lambda *args, **kwargs: StaticFileHandler(*args, filesystem=filesystem, **kwargs))
        self._server = server
        self.sock_port = server.server_address[1]
        self.logger.info("HTTP server serving %s on %s:%d (listing %s)", self.root_dir, self.host, self.sock_port, "on" if self.dir_listing else "off")
        self._serve_done.clear()
        thr = threading.Thread(target=self._serve, args=(server,), daemon=True)
        self._thread = thr
        thr.start()

    def _serve(self, server: ThreadingHTTPServer) -> None:
        error: Optional[BaseException] = None
        try:
            server.serve_forever()
        except Exception as exc:
            error = exc
            self.logger.exception("HTTP server on %s:%s failed", self.host, self.sock_port)
        finally:
            self._serve_done.set()
            if self.on_exit is not None:
                self.on_exit(self, error)

    def stop(self) -> None:
        if self._server:
            # shutdown() blocks forever once the serve loop is gone
            if not self._serve_done.is_set():
                try:
                    self._server.shutdown()
                except Exception:
                    self.logger.exception("Error shutting down HTTP server")
            try:
                self._server.server_close()
            except Exception:
                self.logger.exception("Error closing HTTP server")
            self._server = None
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
            self._thread = None
        self.sock_port = None
