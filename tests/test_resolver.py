"""Endpoint resolution tests."""
from __future__ import annotations

import socket
from typing import Any

import pytest

from bootagent.net import InvalidArgument, ResolutionError, resolve_endpoints


def _fake_getaddrinfo(table: dict[str, list[str]]) -> Any:
    calls: list[tuple[Any, ...]] = []

    def getaddrinfo(host: str, port: int, *args: Any) -> list[tuple[Any, ...]]:
        calls.append((host, port, *args))
        if host not in table:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return [
            (socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", (ip, port))
            for ip in table[host]
        ]

    getaddrinfo.calls = calls  # type: ignore[attr-defined]
    return getaddrinfo


def _no_shuffle(items: list[Any]) -> None:
    return None


def test_maps_each_address_to_its_hostname() -> None:
    """Every resolved address remembers the hostname it came from."""
    lookup = _fake_getaddrinfo(
        {
            "a.example.com": ["10.0.0.1", "10.0.0.2"],
            "b.example.com": ["10.0.1.1"],
        }
    )

    ips = resolve_endpoints(
        ["a.example.com", "b.example.com"],
        getaddrinfo=lookup,
        shuffle=_no_shuffle,
    )

    assert ips == {
        "10.0.0.1": "a.example.com",
        "10.0.0.2": "a.example.com",
        "10.0.1.1": "b.example.com",
    }
    assert lookup.calls[0] == (
        "a.example.com",
        443,
        socket.AF_INET,
        socket.SOCK_STREAM,
        socket.IPPROTO_TCP,
    )


def test_accepts_single_hostname_string() -> None:
    """A bare string is treated as one hostname."""
    lookup = _fake_getaddrinfo({"only.example.com": ["192.0.2.10"]})

    assert resolve_endpoints("only.example.com", getaddrinfo=lookup, shuffle=_no_shuffle) == {
        "192.0.2.10": "only.example.com"
    }


def test_addresses_are_shuffled_per_host() -> None:
    """The shuffle hook receives each host's address list."""
    lookup = _fake_getaddrinfo({"a.example.com": ["10.0.0.1", "10.0.0.2", "10.0.0.3"]})
    seen: list[list[str]] = []

    def reverse(items: list[Any]) -> None:
        seen.append(list(items))
        items.reverse()

    ips = resolve_endpoints(["a.example.com"], getaddrinfo=lookup, shuffle=reverse)

    assert seen == [["10.0.0.1", "10.0.0.2", "10.0.0.3"]]
    assert list(ips) == ["10.0.0.3", "10.0.0.2", "10.0.0.1"]


@pytest.mark.parametrize("hostnames", [[], [""], ["  "]])
def test_empty_hostnames_rejected(hostnames: list[str]) -> None:
    """Resolution needs at least one hostname."""
    with pytest.raises(InvalidArgument):
        resolve_endpoints(hostnames, getaddrinfo=_fake_getaddrinfo({}))


def test_unresolvable_hostname_aborts() -> None:
    """One lookup failure fails the whole resolution."""
    lookup = _fake_getaddrinfo({"a.example.com": ["10.0.0.1"]})

    with pytest.raises(ResolutionError) as excinfo:
        resolve_endpoints(["a.example.com", "missing.example.com"], getaddrinfo=lookup)

    assert excinfo.value.hostname == "missing.example.com"
    assert "Failed to resolve missing.example.com" in str(excinfo.value)


def test_no_addresses_is_a_resolution_error() -> None:
    """An empty address list counts as a failure."""
    lookup = _fake_getaddrinfo({"empty.example.com": []})

    with pytest.raises(ResolutionError, match="no addresses"):
        resolve_endpoints("empty.example.com", getaddrinfo=lookup)
