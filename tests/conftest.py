from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import pytest
from ftp_range_bridge import BridgeSettings, FileMeta
from ftp_range_bridge.errors import (
    AuthError,
    NotFoundError,
    TransferModeError,
    UpstreamConnectionError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@dataclass
class FakeFtpServer:
    """In-memory stand-in for an FTP server, handing out recording sessions."""

    files: dict[str, bytes] = field(default_factory=dict)
    credentials: dict[str, str] | None = None
    reachable: bool = True
    binary_mode_supported: bool = True
    chunk_size: int = 64
    truncate_to: int | None = None
    sessions: list[FakeSession] = field(default_factory=list)

    def session_factory(self, settings: BridgeSettings) -> FakeSession:
        session = FakeSession(self)
        self.sessions.append(session)
        return session


class FakeSession:
    def __init__(self, server: FakeFtpServer):
        self.server = server
        self.calls: list[tuple] = []
        self.closed = False
        self.stream_closed = False
        self.bytes_read = 0

    async def connect(self, address: str, port: int) -> None:
        self.calls.append(("connect", address, port))
        if not self.server.reachable:
            msg = "Connection failed"
            raise UpstreamConnectionError(msg, "[Errno 111] Connection refused")

    async def authenticate(self, user: str, password: str) -> None:
        self.calls.append(("authenticate", user, password))
        credentials = self.server.credentials
        if credentials is not None and credentials.get(user) != password:
            msg = "Login failed"
            raise AuthError(msg, "530 Login incorrect.")

    async def set_binary_mode(self) -> None:
        self.calls.append(("binary",))
        if not self.server.binary_mode_supported:
            msg = "Failed to set transfer type"
            raise TransferModeError(msg, "504 Command not implemented")

    async def query_size(self, path: str) -> FileMeta:
        self.calls.append(("size", path))
        if path not in self.server.files:
            msg = "File not found"
            raise NotFoundError(msg, "550 No such file or directory.")
        return FileMeta(total_size=len(self.server.files[path]))

    async def retrieve_from_offset(
        self, path: str, offset: int
    ) -> AsyncGenerator[bytes, None]:
        self.calls.append(("retrieve", path, offset))
        data = self.server.files[path]
        if self.server.truncate_to is not None:
            data = data[: self.server.truncate_to]
        return self._stream(data[offset:])

    async def _stream(self, data: bytes) -> AsyncGenerator[bytes, None]:
        size = self.server.chunk_size
        try:
            for position in range(0, len(data), size):
                chunk = data[position : position + size]
                self.bytes_read += len(chunk)
                yield chunk
        finally:
            self.stream_closed = True

    async def close(self) -> None:
        self.calls.append(("close",))
        self.closed = True

    @property
    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def file_content() -> bytes:
    """Return 1000 bytes whose values encode their own offset."""
    return bytes(i % 251 for i in range(1000))


@pytest.fixture
def ftp_server(file_content: bytes) -> FakeFtpServer:
    return FakeFtpServer(
        files={
            "file.bin": file_content,
            "pub/empty.txt": b"",
            "pub/docs/report.pdf": b"%PDF-1.4 tiny",
        }
    )


@pytest.fixture
def settings() -> BridgeSettings:
    return BridgeSettings()
