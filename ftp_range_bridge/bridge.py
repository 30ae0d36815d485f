from __future__ import annotations

import logging
import re
import unicodedata
from typing import TYPE_CHECKING, Literal
from urllib.parse import quote

from litestar.enums import MediaType
from litestar.response import Response, Stream
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import BridgeError, ConfigError, RangeNotSatisfiableError
from .ranges import FULL_FILE, ResolvedRange, parse_range_header, resolve_range
from .upstream import FtpSession

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator, Callable

    from litestar import Request

    from .upstream import UpstreamSession

    SessionFactory = Callable[["BridgeSettings"], UpstreamSession]

LOG = logging.getLogger("ftp_range_bridge.bridge")

_FORBIDDEN_PATH_CHARS = re.compile(r"[\r\n\x00]")
_UNSAFE_FILENAME_CHARS = re.compile(r'[^\x20-\x7e]|["\\]')


class BridgeSettings(BaseSettings):
    """Process-wide configuration, read from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    host: str = Field(default="127.0.0.1", validation_alias="FTP_BRIDGE_HOST")
    port: int = Field(default=3000, validation_alias="FTP_BRIDGE_PORT")
    timeout: float = Field(
        default=30.0,
        gt=0,
        validation_alias="FTP_BRIDGE_TIMEOUT",
    )
    chunk_size: int = Field(
        default=64 * 1024,
        gt=0,
        validation_alias="FTP_BRIDGE_CHUNK_SIZE",
    )
    range_mode: Literal["ranges", "full"] = Field(
        default="ranges",
        validation_alias="FTP_BRIDGE_RANGE_MODE",
    )
    log_level: str = Field(default="info", validation_alias="FTP_BRIDGE_LOG_LEVEL")

    @field_validator("range_mode", "log_level", mode="before")
    @classmethod
    def _normalise_case(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @property
    def ranges_enabled(self) -> bool:
        return self.range_mode == "ranges"


class ConnectionParams(BaseModel):
    """Upstream connection details taken from the request query string."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    addr: str = Field(min_length=1)
    port: int = Field(default=21, ge=1, le=65535)
    user: str = "anonymous"
    password: str = Field(default="", validation_alias="pass", repr=False)

    @field_validator("addr", mode="before")
    @classmethod
    def _strip_addr(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("user")
    @classmethod
    def _default_user(cls, value: str) -> str:
        return value or "anonymous"


def load_settings_from_env() -> BridgeSettings:
    """Load bridge settings from environment variables.

    Returns:
        BridgeSettings instance populated from environment variables.
    """
    return BridgeSettings()


def _ftp_session_factory(settings: BridgeSettings) -> UpstreamSession:
    return FtpSession(timeout=settings.timeout, chunk_size=settings.chunk_size)


def content_disposition(path: str) -> str:
    """Build an attachment disposition with ASCII and UTF-8 file names."""
    name = path.rstrip("/").rsplit("/", 1)[-1] or "download"
    folded = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode()
    ascii_name = _UNSAFE_FILENAME_CHARS.sub("_", folded).strip() or "download"
    return (
        f'attachment; filename="{ascii_name}"; '
        f"filename*=UTF-8''{quote(name, safe='')}"
    )


class FtpRangeBridge:
    def __init__(
        self,
        settings: BridgeSettings,
        session_factory: SessionFactory | None = None,
    ):
        self._settings = settings
        self._session_factory = session_factory or _ftp_session_factory

    async def handle(self, request: Request, filename: str) -> Response:
        try:
            return await self._serve(request, filename)
        except BridgeError as error:
            LOG.warning(
                "request for %r failed status=%s: %s",
                filename,
                error.status_code,
                error,
            )
            return self._error_response(error)

    async def _serve(self, request: Request, filename: str) -> Response:
        path = filename.removeprefix("/")
        if not path:
            message = "Missing file name"
            raise ConfigError(message)
        if _FORBIDDEN_PATH_CHARS.search(path):
            message = "Invalid file name"
            raise ConfigError(message)
        params = self._connection_params(request)

        range_request = FULL_FILE
        if self._settings.ranges_enabled:
            range_request = parse_range_header(request.headers.get("range"))
        LOG.info(
            "requested %s from %s:%s start=%d end=%s",
            path,
            params.addr,
            params.port,
            range_request.start,
            range_request.end,
        )

        session = self._session_factory(self._settings)
        try:
            await session.connect(params.addr, params.port)
            await session.authenticate(params.user, params.password)
            await session.set_binary_mode()
            meta = await session.query_size(path)
            resolved = resolve_range(
                range_request,
                meta.total_size,
                allow_partial=self._settings.ranges_enabled,
            )
            stream = None
            if resolved.length:
                stream = await session.retrieve_from_offset(path, resolved.start)
        except BaseException:
            await session.close()
            raise

        LOG.info(
            "serving %s start=%d length=%d total=%d",
            path,
            resolved.start,
            resolved.length,
            resolved.total_size,
        )
        return self._stream_response(path, resolved, session, stream)

    def _connection_params(self, request: Request) -> ConnectionParams:
        try:
            return ConnectionParams.model_validate(dict(request.query_params.items()))
        except ValidationError as error:
            first = error.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or "query"
            if first["type"] == "missing":
                message = f"Missing '{field}' parameter"
            else:
                message = f"Invalid '{field}' parameter"
            raise ConfigError(message) from error

    def _stream_response(
        self,
        path: str,
        resolved: ResolvedRange,
        session: UpstreamSession,
        stream: AsyncGenerator[bytes, None] | None,
    ) -> Response:
        length = resolved.length

        async def iterator() -> AsyncIterator[bytes]:
            sent = 0
            try:
                if stream is not None:
                    async for chunk in stream:
                        if not chunk:
                            continue
                        remaining = length - sent
                        if len(chunk) > remaining:
                            chunk = chunk[:remaining]
                        sent += len(chunk)
                        yield chunk
                        if sent >= length:
                            break
                if sent < length:
                    LOG.warning(
                        "upstream ended early for %s: sent %d of %d bytes",
                        path,
                        sent,
                        length,
                    )
            finally:
                if stream is not None:
                    await stream.aclose()
                await session.close()

        headers = {
            "Accept-Ranges": "bytes" if self._settings.ranges_enabled else "none",
            "Content-Disposition": content_disposition(path),
            "Content-Length": str(length),
        }
        if resolved.content_range is not None:
            headers["Content-Range"] = resolved.content_range

        status_code = 206 if resolved.is_partial else 200
        return Stream(
            content=iterator,
            status_code=status_code,
            headers=headers,
            media_type="application/octet-stream",
        )

    def _error_response(self, error: BridgeError) -> Response:
        headers: dict[str, str] = {}
        if isinstance(error, RangeNotSatisfiableError):
            headers["Content-Range"] = f"bytes */{error.total_size}"
            headers["Accept-Ranges"] = "bytes"
        return Response(
            content=error.describe(),
            status_code=error.status_code,
            headers=headers,
            media_type=MediaType.TEXT,
        )
