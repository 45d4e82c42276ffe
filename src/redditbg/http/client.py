from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import aiohttp

from redditbg.http.policies import BackoffPolicy, with_backoff
from redditbg.http.response import HttpResponse
from redditbg.utils.logging import get_logger


class HttpClient(Protocol):
    """Protocol for HTTP clients."""

    async def get_bytes(self, url: str, headers: Optional[Dict[str, str]] = None) -> HttpResponse: ...

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any: ...

    async def close(self) -> None: ...


class AiohttpClient:
    """HTTP client using aiohttp, every call wrapped in the backoff policy."""

    def __init__(
        self,
        user_agent: str,
        timeout_s: float = 60,
        connect_timeout_s: float = 10,
        backoff: BackoffPolicy | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.user_agent = user_agent
        self.timeout = aiohttp.ClientTimeout(total=timeout_s, connect=connect_timeout_s)
        self.backoff = backoff or BackoffPolicy()
        self._session = session
        self.log = get_logger("redditbg.http")

    @property
    def session(self) -> aiohttp.ClientSession:
        # Created lazily: aiohttp sessions must be built inside the running loop.
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
                raise_for_status=True,
            )
        return self._session

    async def get_bytes(self, url: str, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
        """GET a URL and return its whole body."""

        async def attempt() -> HttpResponse:
            async with self.session.get(url, headers=headers) as r:
                body = await r.read()
                return HttpResponse(
                    url=str(r.url),
                    status_code=r.status,
                    headers=dict(r.headers),
                    body=body,
                )

        resp = await with_backoff(attempt, self.backoff, description=f"GET {url}")
        self.log.debug("Fetched %s (status=%s, bytes=%s)", url, resp.status_code, len(resp.body))
        return resp

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a URL and decode its body as JSON whatever the declared content type."""

        async def attempt() -> Any:
            async with self.session.get(url, params=params) as r:
                return await r.json(content_type=None)

        return await with_backoff(attempt, self.backoff, description=f"GET {url}")

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "AiohttpClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
