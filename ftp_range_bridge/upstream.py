from __future__ import annotations

import ftplib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from anyio import CancelScope, to_thread

from .errors import (
    AuthError,
    BridgeError,
    NotFoundError,
    TransferModeError,
    UpstreamConnectionError,
    UpstreamTimeoutError,
)

if TYPE_CHECKING:
    import socket
    from collections.abc import AsyncGenerator, Callable

LOG = logging.getLogger("ftp_range_bridge.upstream")


async def _run_sync(func: Callable[..., Any], /, *args: Any) -> Any:
    return await to_thread.run_sync(func, *args)


@dataclass(frozen=True)
class FileMeta:
    total_size: int


class UpstreamSession(Protocol):
    """One upstream connection, owned by a single request."""

    async def connect(self, address: str, port: int) -> None: ...

    async def authenticate(self, user: str, password: str) -> None: ...

    async def set_binary_mode(self) -> None: ...

    async def query_size(self, path: str) -> FileMeta: ...

    async def retrieve_from_offset(
        self, path: str, offset: int
    ) -> AsyncGenerator[bytes, None]: ...

    async def close(self) -> None: ...


class FtpSession:
    """UpstreamSession backed by a blocking ``ftplib.FTP`` run in worker threads.

    The socket timeout applies to every control and data operation, so a
    stalled server fails the request instead of holding it forever.
    """

    def __init__(self, timeout: float = 30.0, chunk_size: int = 64 * 1024):
        self._timeout = timeout
        self._chunk_size = chunk_size
        self._ftp: ftplib.FTP | None = None
        self._connected = False
        self._transfer_open = False

    async def connect(self, address: str, port: int) -> None:
        self._ftp = ftplib.FTP(timeout=self._timeout)
        welcome = await self._call(
            UpstreamConnectionError,
            "Connection failed",
            self._ftp.connect,
            address,
            port,
        )
        self._connected = True
        LOG.debug("connected to %s:%s (%s)", address, port, welcome)

    async def authenticate(self, user: str, password: str) -> None:
        ftp = self._require_connection()
        try:
            await _run_sync(ftp.login, user, password)
        except ftplib.error_perm as error:
            raise AuthError("Login failed", error) from error
        except TimeoutError as error:
            raise UpstreamTimeoutError("Login failed", "timed out") from error
        except ftplib.all_errors as error:
            raise UpstreamConnectionError("Login failed", error) from error
        LOG.debug("logged in as %s", user)

    async def set_binary_mode(self) -> None:
        ftp = self._require_connection()
        await self._call(
            TransferModeError,
            "Failed to set transfer type",
            ftp.voidcmd,
            "TYPE I",
        )

    async def query_size(self, path: str) -> FileMeta:
        ftp = self._require_connection()
        try:
            size = await self._call(NotFoundError, "File not found", ftp.size, path)
        except ValueError as error:
            raise UpstreamConnectionError("Malformed SIZE reply", error) from error
        if size is None:
            raise NotFoundError("File not found", f"no size reported for {path}")
        return FileMeta(total_size=size)

    async def retrieve_from_offset(
        self, path: str, offset: int
    ) -> AsyncGenerator[bytes, None]:
        ftp = self._require_connection()
        # transfercmd sends REST ahead of RETR on this control connection.
        conn = await self._call(
            NotFoundError,
            "File not found",
            ftp.transfercmd,
            f"RETR {path}",
            offset or None,
        )
        self._transfer_open = True
        LOG.debug("retrieving %s from offset %d", path, offset)
        return self._read_data(conn)

    async def close(self) -> None:
        ftp, self._ftp = self._ftp, None
        if ftp is None:
            return
        with CancelScope(shield=True):
            await _run_sync(self._disconnect, ftp)

    async def _read_data(self, conn: socket.socket) -> AsyncGenerator[bytes, None]:
        drained = False
        try:
            while True:
                try:
                    chunk = await _run_sync(conn.recv, self._chunk_size)
                except TimeoutError as error:
                    raise UpstreamTimeoutError(
                        "Transfer stalled", "timed out"
                    ) from error
                if not chunk:
                    drained = True
                    break
                yield chunk
        finally:
            with CancelScope(shield=True):
                await _run_sync(self._end_transfer, conn, drained)

    def _end_transfer(self, conn: socket.socket, drained: bool) -> None:
        conn.close()
        if not drained or self._ftp is None:
            return
        try:
            self._ftp.voidresp()
        except ftplib.all_errors as error:
            LOG.debug("transfer did not complete cleanly: %s", error)
            return
        self._transfer_open = False

    def _disconnect(self, ftp: ftplib.FTP) -> None:
        try:
            if self._connected and not self._transfer_open:
                ftp.quit()
        except ftplib.all_errors as error:
            LOG.debug("QUIT failed, dropping connection: %s", error)
        finally:
            ftp.close()
            self._connected = False

    def _require_connection(self) -> ftplib.FTP:
        if self._ftp is None or not self._connected:
            message = "FTP session is not connected"
            raise RuntimeError(message)
        return self._ftp

    async def _call(
        self,
        error_cls: type[BridgeError],
        message: str,
        func: Callable[..., Any],
        /,
        *args: Any,
    ) -> Any:
        try:
            return await _run_sync(func, *args)
        except TimeoutError as error:
            raise UpstreamTimeoutError(message, "timed out") from error
        except ftplib.all_errors as error:
            raise error_cls(message, error) from error
