from __future__ import annotations

import re

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]+")
_MAX_DETAIL_LENGTH = 200


def sanitize_upstream_text(text: object) -> str:
    """Make upstream reply text safe to echo back to a client."""
    cleaned = _CONTROL_CHARS.sub(" ", str(text))
    cleaned = " ".join(cleaned.split())
    if len(cleaned) > _MAX_DETAIL_LENGTH:
        cleaned = cleaned[: _MAX_DETAIL_LENGTH - 3].rstrip() + "..."
    return cleaned


class BridgeError(Exception):
    """Base class for failures that end a request with an error response."""

    status_code = 500

    def __init__(self, message: str, detail: object | None = None):
        self.message = message
        self.detail = None if detail is None else sanitize_upstream_text(detail)
        super().__init__(self.describe())

    def describe(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class ConfigError(BridgeError):
    status_code = 400


class AuthError(BridgeError):
    status_code = 401


class NotFoundError(BridgeError):
    status_code = 404


class RangeNotSatisfiableError(BridgeError):
    status_code = 416

    def __init__(self, start: int, total_size: int):
        self.start = start
        self.total_size = total_size
        super().__init__(
            f"Range start {start} is beyond the file size ({total_size} bytes)"
        )


class UpstreamConnectionError(BridgeError):
    status_code = 502


class TransferModeError(BridgeError):
    status_code = 502


class UpstreamTimeoutError(BridgeError):
    status_code = 504
