from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import Optional

from . import hfServer
from .config import DEFAULT_CONFIG_PATH, ConfigError, load_bindings

LOG = logging.getLogger("hfServer.cli")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="hf", description="Serve static files from directories, one listen address per directory")
    p.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH, help="Config file with '<address> <directory>' lines")
    p.add_argument("-d", "--dir-listing", dest="dir_listing", action="store_true", help="Enable directory listing")
    p.add_argument("--log-level", default="INFO", help="Logging level")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        bindings = load_bindings(args.config)
    except ConfigError as exc:
        LOG.error("%s", exc)
        return 1

    server = hfServer(bindings, dir_listing=bool(args.dir_listing), logger=LOG)

    # graceful shutdown handling
    stop_requested = False

    def _on_signal(signum, frame):
        nonlocal stop_requested
        LOG.info("Received signal %s, stopping...", signum)
        stop_requested = True

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    try:
        server.start()
        for address, root_dir in sorted(server.bindings.items()):
            LOG.info("Serving %s on %s", root_dir, address)
        # wait until signal or until a listener dies
        while not stop_requested:
            if server.wait(timeout=0.5):
                break
    except KeyboardInterrupt:
        LOG.info("Keyboard interrupt received, stopping servers")
    except (ConfigError, OSError) as exc:
        LOG.error("%s", exc)
        return 1
    except Exception:
        LOG.exception("Server failed")
        return 1
    finally:
        server.stop()
        LOG.info("Servers stopped")

    return 0


if __name__ == "__main__":
    sys.exit(main())
