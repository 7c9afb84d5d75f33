import asyncio
from typing import Any, Optional, Protocol, Union

import aiohttp
from loguru import logger

from capi_jobs_client.errors import TransportError
from capi_jobs_client.models import DEFAULT_REQUEST_TIMEOUT, TransportResponse

Body = Union[dict, list, bytes, str, None]


class Transport(Protocol):
    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        body: Body = None,
        headers: Optional[dict[str, str]] = None,
    ) -> TransportResponse: ...


class AiohttpTransport:
    """Issues control-plane requests over an aiohttp session.

    Every HTTP status comes back as a TransportResponse; only failures to
    complete the exchange raise TransportError.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.logger = logger
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)
            self._owns_session = True
        return self._session

    @staticmethod
    def _body_kwargs(body: Body) -> dict[str, Any]:
        if body is None:
            return {}
        if isinstance(body, (dict, list)):
            return {"json": body}
        if isinstance(body, str):
            return {"data": body.encode("utf-8")}
        return {"data": body}

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        body: Body = None,
        headers: Optional[dict[str, str]] = None,
    ) -> TransportResponse:
        url = f"{self.base_url}{path}"
        session = self._get_session()

        try:
            async with session.request(
                method, url, params=params, headers=headers, **self._body_kwargs(body)
            ) as response:
                payload = await response.read()
                self.logger.debug(f"{method} {url} -> {response.status}")
                return TransportResponse(
                    status=response.status,
                    headers={key: value for key, value in response.headers.items()},
                    body=payload,
                )
        except aiohttp.ClientError as e:
            self.logger.error(f"HTTP error on {method} {url}: {e}")
            raise TransportError(f"{method} {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            self.logger.error(f"Timed out on {method} {url}")
            raise TransportError(f"{method} {url} timed out") from e

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "AiohttpTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
