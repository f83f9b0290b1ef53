from __future__ import annotations

import logging
import threading
from typing import Dict, List, Mapping, Optional, Tuple

from .config import parse_address
from .http_server import HttpFileServer

LOG = logging.getLogger(__name__)


class hfServer:
    """
    Runs one HttpFileServer per binding (listen address -> root directory).

    Listeners are independent: each serves from its own thread. A listener
    whose serve loop dies records a fatal error that wait() re-raises, and
    the caller is expected to stop everything.
    """

    def __init__(
        self,
        bindings: Mapping[str, str],
        dir_listing: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.bindings = dict(bindings)
        self.dir_listing = dir_listing
        self.logger = logger or LOG
        self._servers: Dict[str, HttpFileServer] = {}
        self._cond = threading.Condition()
        self._running = 0
        self._error: Optional[BaseException] = None

    @property
    def addresses(self) -> Dict[str, Tuple[str, int]]:
        """Configured address -> actually bound (host, port)."""
        return {addr: (srv.host, srv.sock_port) for addr, srv in self._servers.items() if srv.sock_port is not None}

    def start(self) -> None:
        """Bind and start every listener. Any failure stops those already started and re-raises."""
        if self._servers:
            return
        # parse everything first so a bad address starts nothing
        listeners: List[Tuple[str, str, int, str]] = []
        for address, root_dir in self.bindings.items():
            host, port = parse_address(address)
            listeners.append((address, host, port, root_dir))

        with self._cond:
            self._error = None
        for address, host, port, root_dir in listeners:
            srv = HttpFileServer(
                root_dir,
                host=host,
                port=port,
                dir_listing=self.dir_listing,
                logger=self.logger,
                on_exit=self._on_exit,
            )
            with self._cond:
                self._running += 1
            try:
                srv.start()
            except Exception:
                with self._cond:
                    self._running -= 1
                self.logger.error("Cannot listen on %s", address)
                self.stop()
                raise
            self._servers[address] = srv

    def _on_exit(self, srv: HttpFileServer, error: Optional[BaseException]) -> None:
        with self._cond:
            self._running -= 1
            if error is not None and self._error is None:
                self._error = error
            self._cond.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every listener has exited or one of them failed.

        Re-raises the first listener failure. Returns True once no listener is
        running, False when `timeout` expired first.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._error is not None or self._running <= 0, timeout)
            if self._error is not None:
                raise self._error
            return self._running <= 0

    def stop(self) -> None:
        """Stop all listeners and release ports."""
        for address, srv in list(self._servers.items()):
            try:
                srv.stop()
            except Exception:
                self.logger.exception("Error stopping HTTP server on %s", address)
        self._servers.clear()
