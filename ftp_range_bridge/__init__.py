"""HTTP byte-range bridge for files on FTP servers."""

from .app import create_app
from .bridge import BridgeSettings, ConnectionParams, FtpRangeBridge
from .ranges import RangeRequest, ResolvedRange, parse_range_header, resolve_range
from .upstream import FileMeta, FtpSession, UpstreamSession

__all__ = [
    "BridgeSettings",
    "ConnectionParams",
    "FileMeta",
    "FtpRangeBridge",
    "FtpSession",
    "RangeRequest",
    "ResolvedRange",
    "UpstreamSession",
    "create_app",
    "parse_range_header",
    "resolve_range",
]
