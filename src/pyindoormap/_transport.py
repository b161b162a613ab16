"""HTTP transport for the platform REST API."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pyindoormap._constants import USER_AGENT
from pyindoormap.config import IndoorMapConfig
from pyindoormap.exceptions import ApiError, NotFoundError, TransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by :class:`pyindoormap.client.PlatformClient`.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`PlatformTransport`) concrete.
    """

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> dict[str, Any]: ...

    async def get_bytes(self, endpoint: str) -> bytes: ...


class PlatformTransport:
    """Authenticated GET requests against the tenant base URL."""

    def __init__(self, config: IndoorMapConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._auth = aiohttp.BasicAuth(config.auth_user, config.password)
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _url(self, endpoint: str) -> str:
        return f"{self._config.base_url.rstrip('/')}{endpoint}"

    async def _get(self, endpoint: str, params: Mapping[str, str] | None, accept: str) -> bytes:
        url = self._url(endpoint)
        headers = {"accept": accept, "user-agent": USER_AGENT}
        _logger.debug("GET %s params=%s", url, dict(params or {}))

        try:
            async with self._http.get(
                url,
                params=params,
                headers=headers,
                auth=self._auth,
                timeout=self._timeout,
            ) as resp:
                body = await resp.read()
                if resp.status == 404:
                    raise NotFoundError(f"{endpoint} not found", endpoint=endpoint)
                if resp.status != 200:
                    raise TransportError(
                        f"HTTP {resp.status} from {endpoint}: {body[:200]!r}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
                return body
        except (TransportError, ApiError):
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> dict[str, Any]:
        body = await self._get(endpoint, params, "application/json")
        try:
            result = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise TransportError(
                f"Invalid JSON from {endpoint}: {body[:200]!r}",
                endpoint=endpoint,
            ) from exc
        if not isinstance(result, dict):
            raise ApiError(f"Response from {endpoint} is not a JSON object", endpoint=endpoint)
        return result

    async def get_bytes(self, endpoint: str) -> bytes:
        return await self._get(endpoint, None, "*/*")
