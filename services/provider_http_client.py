"""
Provider HTTP Client
aiohttp transport for outbound provider calls, with per-call timeouts and typed errors.
"""

import asyncio
import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from config import Config
from services.provider_errors import (
    ProviderHttpError,
    ProviderTimeoutError,
    ProviderTransportError,
)
from services.provider_request_builder import BodyEncoding, ProviderRequest
from services.provider_response_parser import ProviderResponseParser
from utils.helpers import truncate

logger = logging.getLogger(__name__)


@dataclass
class HttpClientConfig:
    """Connection pool settings for provider traffic"""
    max_connections: int = 100
    max_connections_per_host: int = 10
    connect_timeout: int = 10
    user_agent: str = Config.HTTP_USER_AGENT


def _error_message_from_body(status: int, text: str) -> str:
    """Prefer the provider's own error/message field, else the truncated body"""
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            for key in ("error", "message"):
                if data.get(key):
                    return f"HTTP {status}: {data[key]}"
    except ValueError:
        pass
    return f"HTTP {status}: {truncate(text) or 'no response body'}"


def _known_charset(charset: Optional[str]) -> str:
    if not charset:
        return "utf-8"
    try:
        codecs.lookup(charset)
    except LookupError:
        logger.warning(f"⚠️ UNKNOWN_CHARSET: {charset!r}, decoding as utf-8")
        return "utf-8"
    return charset


class ProviderHttpClient:
    """Sends ProviderRequest objects and returns the decoded JSON payload"""

    def __init__(self, config: Optional[HttpClientConfig] = None):
        self.config = config or HttpClientConfig()
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                connector = aiohttp.TCPConnector(
                    limit=self.config.max_connections,
                    limit_per_host=self.config.max_connections_per_host,
                    ttl_dns_cache=300,
                )
                self._session = aiohttp.ClientSession(
                    connector=connector,
                    headers={"User-Agent": self.config.user_agent},
                )
                logger.debug("✅ Created provider HTTP session")
            return self._session

    async def send(self, request: ProviderRequest, timeout_seconds: float) -> Any:
        """
        Perform one HTTP call.

        Raises:
            ProviderTimeoutError: no answer within timeout_seconds
            ProviderTransportError: connection-level failure
            ProviderHttpError: non-2xx status
            ProviderResponseParseError: empty or non-JSON body
        """
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=timeout_seconds, connect=min(self.config.connect_timeout, timeout_seconds))

        kwargs = {"headers": request.headers, "timeout": timeout}
        if request.encoding == BodyEncoding.JSON:
            kwargs["json"] = request.body
        elif request.encoding == BodyEncoding.FORM:
            kwargs["data"] = request.body

        try:
            async with session.request(request.method, request.url, **kwargs) as response:
                body = await response.read()
                charset = _known_charset(response.charset)
                status = response.status
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(f"Provider request timed out after {timeout_seconds}s")
        except aiohttp.ClientError as e:
            raise ProviderTransportError(f"Provider connection error: {e}")

        if status >= 400:
            text = body.decode(charset, errors="replace")
            raise ProviderHttpError(status, _error_message_from_body(status, text), body=truncate(text))

        return ProviderResponseParser.decode(body, encoding=charset)

    async def close(self):
        """Release the underlying connection pool"""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("🔒 Provider HTTP session closed")
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
