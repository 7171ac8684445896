"""Endpoint discovery, failover and download helpers."""
from __future__ import annotations

from .balancer import BalancingPolicy, RequestBalancer, StickyPolicy
from .classifier import DEFAULT_FATAL_EXCEPTIONS, http_status, is_fatal
from .downloader import Downloader, sanitize_resource, scale
from .errors import (
    AllEndpointsFailed,
    FatalTransferError,
    InvalidArgument,
    ResolutionError,
    RetryableTransferError,
    TransferError,
    TransferHTTPError,
)
from .http import HttpDownloader
from .resolver import resolve_endpoints

__all__ = [
    # resolution
    "resolve_endpoints",
    # classification
    "DEFAULT_FATAL_EXCEPTIONS",
    "http_status",
    "is_fatal",
    # balancing
    "BalancingPolicy",
    "RequestBalancer",
    "StickyPolicy",
    # downloads
    "Downloader",
    "HttpDownloader",
    "sanitize_resource",
    "scale",
    # errors
    "AllEndpointsFailed",
    "FatalTransferError",
    "InvalidArgument",
    "ResolutionError",
    "RetryableTransferError",
    "TransferError",
    "TransferHTTPError",
]
