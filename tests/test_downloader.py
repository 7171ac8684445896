"""Abstract downloader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from bootagent.net import (
    AllEndpointsFailed,
    Downloader,
    RetryableTransferError,
    TransferHTTPError,
    sanitize_resource,
    scale,
)


class FakeDownloader(Downloader):
    """Downloader writing canned payloads, failing on selected endpoints."""

    def __init__(
        self,
        ips: dict[str, str],
        payload: bytes = b"x" * 2048,
        failures: dict[str, BaseException] | None = None,
    ) -> None:
        super().__init__(list(dict.fromkeys(ips.values())), resolver=lambda names: dict(ips))
        self.payload = payload
        self.failures = dict(failures or {})
        self.calls: list[tuple[str, str, str]] = []

    def _download(self, endpoint: str, hostname: str, resource: str, destination: Path) -> int:
        self.calls.append((endpoint, hostname, resource))
        if endpoint in self.failures:
            raise self.failures[endpoint]
        destination.write_bytes(self.payload)
        return len(self.payload)


@pytest.mark.parametrize(
    "value, expected",
    [
        (0, (0, "B")),
        (1023, (1023, "B")),
        (1024, (1, "KB")),
        (1024**2 - 1, (1023, "KB")),
        (1024**2, (1, "MB")),
        (5 * 1024**2 + 10, (5, "MB")),
        (1024**3 - 1, (1023, "MB")),
        (1024**3, (1, "GB")),
        (3 * 1024**4, (3072, "GB")),
    ],
)
def test_scale_boundaries(value: int, expected: tuple[int, str]) -> None:
    """Values pick the largest unit they fill and round down."""
    assert scale(value) == expected


def test_sanitize_resource_drops_query() -> None:
    """Query strings (signatures, tokens) never reach logs."""
    assert sanitize_resource("/bundles/app.tgz?signature=abc&expires=1") == "/bundles/app.tgz"
    assert sanitize_resource("/bundles/app.tgz") == "/bundles/app.tgz"
    assert sanitize_resource("/a?b?c") == "/a"


def test_download_records_size_and_details(tmp_path: Path) -> None:
    """A successful download records size, speed and a sanitised summary."""
    downloader = FakeDownloader({"10.0.0.1": "repo.example.com"})
    target = tmp_path / "out.bin"

    result = downloader.download("/bundles/app.tgz?token=secret", target)

    assert result == target
    assert target.read_bytes() == b"x" * 2048
    assert downloader.calls == [("10.0.0.1", "repo.example.com", "/bundles/app.tgz?token=secret")]
    assert downloader.size == 2048
    assert downloader.speed > 0
    assert downloader.sanitized_resource == "/bundles/app.tgz"
    details = downloader.details()
    assert details.startswith("Downloaded '/bundles/app.tgz' (2 KB) at ")
    assert details.endswith("/s")
    assert "secret" not in details


def test_download_fails_over_to_next_address(tmp_path: Path) -> None:
    """The hostname paired with each address is handed to the transfer."""
    downloader = FakeDownloader(
        {"10.0.0.1": "a.example.com", "10.0.1.1": "b.example.com"},
        failures={"10.0.0.1": RetryableTransferError("reset")},
    )

    downloader.download("/file", tmp_path / "file")

    assert [call[:2] for call in downloader.calls] == [
        ("10.0.0.1", "a.example.com"),
        ("10.0.1.1", "b.example.com"),
    ]


def test_failed_download_keeps_previous_metrics(tmp_path: Path) -> None:
    """size and speed keep describing the last successful download."""
    downloader = FakeDownloader({"10.0.0.1": "repo.example.com"}, payload=b"y" * 10)
    downloader.download("/first", tmp_path / "first")
    size, speed = downloader.size, downloader.speed

    downloader.failures["10.0.0.1"] = RetryableTransferError("reset")
    with pytest.raises(AllEndpointsFailed):
        downloader.download("/second?x=1", tmp_path / "second")

    assert (downloader.size, downloader.speed) == (size, speed)
    assert downloader.sanitized_resource == "/first"
    assert downloader.last_attempt == "/second"
    assert downloader.details().startswith("Downloaded '/first' (10 B) at ")


def test_fatal_error_propagates(tmp_path: Path) -> None:
    """A 403 is not retried against other addresses."""
    downloader = FakeDownloader(
        {"10.0.0.1": "a.example.com", "10.0.0.2": "a.example.com"},
        failures={"10.0.0.1": TransferHTTPError(403, "Forbidden")},
    )

    with pytest.raises(TransferHTTPError):
        downloader.download("/file", tmp_path / "file")

    assert len(downloader.calls) == 1


def test_details_before_any_download() -> None:
    """details() works before the first download."""
    downloader = FakeDownloader({"10.0.0.1": "repo.example.com"})

    assert downloader.details() == "Downloaded 'None' (0 B) at 0 B/s"
