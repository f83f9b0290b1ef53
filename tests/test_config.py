from __future__ import annotations

import socket
from pathlib import Path

import pytest

from hfServer.config import DEFAULT_BINDINGS, ConfigError, load_bindings, parse_address, parse_bindings


def test_missing_config_yields_default_binding(tmp_path: Path) -> None:
    """No config file means serving '.' on ':8000'."""
    bindings = load_bindings(tmp_path / "absent.conf")
    assert bindings == {":8000": "."}
    # callers may mutate the result without touching the defaults
    bindings["x"] = "y"
    assert DEFAULT_BINDINGS == {":8000": "."}


def test_fields_are_trimmed() -> None:
    assert parse_bindings(["  :9000   ./public  "]) == {":9000": "./public"}


def test_comments_and_blank_lines_skipped(tmp_path: Path) -> None:
    conf = tmp_path / "hf.conf"
    conf.write_text("# sites\n\n:8001 /srv/a\n   \n  # indented comment\n127.0.0.1:8002\t/srv/b c\n")
    assert load_bindings(conf) == {":8001": "/srv/a", "127.0.0.1:8002": "/srv/b c"}


def test_line_without_separator_is_fatal() -> None:
    with pytest.raises(ConfigError) as ei:
        parse_bindings([":8000 .", "nodirectory"], source="hf.conf")
    assert "bad config file" in str(ei.value)
    assert "hf.conf:2" in str(ei.value)


def test_later_line_replaces_earlier_address() -> None:
    assert parse_bindings([":8000 a", ":8000 b"]) == {":8000": "b"}


def test_unreadable_config_is_an_error(tmp_path: Path) -> None:
    """A config path that exists but cannot be read is not treated as absent."""
    with pytest.raises(ConfigError):
        load_bindings(tmp_path)


def test_config_path_expands_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    (tmp_path / "hf.conf").write_text(":7000 site\n")
    assert load_bindings("~/hf.conf") == {":7000": "site"}


@pytest.mark.parametrize(
    "address, expected",
    [
        (":8000", ("", 8000)),
        ("127.0.0.1:9000", ("127.0.0.1", 9000)),
        ("localhost:0", ("localhost", 0)),
        ("[::1]:8080", ("::1", 8080)),
    ],
)
def test_parse_address(address: str, expected: tuple[str, int]) -> None:
    assert parse_address(address) == expected


@pytest.mark.parametrize("address", ["8000", "::1:80", ":70000", "host:"])
def test_parse_address_rejects(address: str) -> None:
    with pytest.raises(ConfigError):
        parse_address(address)


def test_parse_address_service_name(monkeypatch: pytest.MonkeyPatch) -> None:
    services = {("http", "tcp"): 80}

    def _getservbyname(name: str, proto: str) -> int:
        try:
            return services[(name, proto)]
        except KeyError:
            raise OSError("service/proto not found") from None

    monkeypatch.setattr(socket, "getservbyname", _getservbyname)
    assert parse_address(":http") == ("", 80)
    with pytest.raises(ConfigError, match="invalid port"):
        parse_address(":no-such-service")
