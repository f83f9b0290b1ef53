from __future__ import annotations

import logging
import socket
from pathlib import Path
from typing import Dict, Iterable, Tuple

LOG = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/hf.conf"
DEFAULT_BINDINGS: Dict[str, str] = {":8000": "."}


class ConfigError(Exception):
    pass


def parse_bindings(lines: Iterable[str], source: str = "<config>") -> Dict[str, str]:
    """
    Parse config lines into an address -> directory mapping.

    Each meaningful line is `<address> <directory>`, split at the first run of
    whitespace. Blank lines and lines starting with '#' are skipped. A later
    line for the same address replaces the earlier one.
    """
    bindings: Dict[str, str] = {}
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        fields = line.split(None, 1)
        if len(fields) != 2:
            raise ConfigError(f"bad config file: {source}:{lineno}: expected '<address> <directory>'")
        address, root_dir = fields[0].strip(), fields[1].strip()
        if address in bindings:
            LOG.warning("%s:%d: address %s configured twice, using %s", source, lineno, address, root_dir)
        bindings[address] = root_dir
    return bindings


def load_bindings(path: str | Path = DEFAULT_CONFIG_PATH) -> Dict[str, str]:
    """Read bindings from `path`. A missing file means serving '.' on ':8000'."""
    config_path = Path(path).expanduser()
    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        LOG.debug("config file %s not found, using defaults", config_path)
        return dict(DEFAULT_BINDINGS)
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"cannot read config file {config_path}: {exc}") from exc
    return parse_bindings(text.splitlines(), source=str(config_path))


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split a `host:port` listen address. An empty host (":8000") binds every
    interface; IPv6 hosts are written in brackets ("[::1]:8000"). The port may
    be a TCP service name (":http").
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ConfigError(f"address {address}: missing port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ConfigError(f"address {address}: too many colons")
    if port.isdecimal():
        port_num = int(port)
    else:
        # service names such as "http"
        try:
            port_num = socket.getservbyname(port, "tcp")
        except OSError:
            raise ConfigError(f"address {address}: invalid port {port!r}") from None
    if not 0 <= port_num <= 65535:
        raise ConfigError(f"address {address}: port out of range")
    return host, port_num
