from __future__ import annotations

from enum import Enum
from typing import List, Optional

from redditbg.core.models import ListingPage
from redditbg.http.client import HttpClient
from redditbg.http.policies import RateLimiter
from redditbg.parse.listing import listing_params, parse_listing_page
from redditbg.utils.logging import get_logger


class ListingState(str, Enum):
    """States of the listing stream."""

    NEED_MORE = "need_more"
    FETCHING = "fetching"
    FETCHED = "fetched"
    EXHAUSTED = "exhausted"


class ListingStream:
    """
    Pull-based asynchronous producer of references from a paginated listing.

    Transitions:
        NEED_MORE -> FETCHING   on pull
        FETCHING  -> FETCHED    page received, its token kept for the next request
        FETCHING  -> EXHAUSTED  page request failed after backing off (logged, not raised)
        FETCHED   -> NEED_MORE  buffer drained and a next-page token exists
        FETCHED   -> EXHAUSTED  buffer drained and no token exists (or max_pages reached)

    Buffered references are emitted by popping from the end of the page.
    """

    def __init__(
        self,
        client: HttpClient,
        url: str,
        page_limit: int = 100,
        max_pages: Optional[int] = None,
        delay_ms: int = 0,
        limiter: Optional[RateLimiter] = None,
    ):
        self.client = client
        self.url = url
        self.page_limit = page_limit
        self.max_pages = max_pages
        self.limiter = limiter or RateLimiter(delay_ms)

        self.state = ListingState.NEED_MORE
        self.pages_fetched = 0
        self.last_error: Optional[BaseException] = None
        self._after: Optional[str] = None
        self._buffer: List[str] = []
        self.log = get_logger("redditbg.listing")

    @property
    def failed_before_first_page(self) -> bool:
        return self.pages_fetched == 0 and self.last_error is not None

    def __aiter__(self) -> "ListingStream":
        return self

    async def __anext__(self) -> str:
        while True:
            if self.state is ListingState.EXHAUSTED:
                raise StopAsyncIteration

            if self.state is ListingState.FETCHED:
                if self._buffer:
                    return self._buffer.pop()
                self.state = ListingState.NEED_MORE if self._has_next_page() else ListingState.EXHAUSTED
                continue

            if self.state is ListingState.NEED_MORE:
                self.state = ListingState.FETCHING
                page = await self._fetch_page()
                if page is None:
                    self.state = ListingState.EXHAUSTED
                    continue

                self._after = page.next_page_token
                self._buffer = list(page.references)
                self.state = ListingState.FETCHED
                continue

            raise RuntimeError(f"Listing stream polled while {self.state.value}")

    def _has_next_page(self) -> bool:
        if self._after is None:
            return False
        if self.max_pages is not None and self.pages_fetched >= self.max_pages:
            self.log.info("Listing stop: reached max_pages=%d", self.max_pages)
            return False
        return True

    async def _fetch_page(self) -> Optional[ListingPage]:
        if self.pages_fetched > 0:
            await self.limiter.wait()

        params = listing_params(self._after, self.page_limit)
        self.log.info("Fetching listing page %s: %s (after=%s)", self.pages_fetched + 1, self.url, self._after)
        try:
            payload = await self.client.get_json(self.url, params=params)
            page = parse_listing_page(payload)
        except Exception as e:
            self.last_error = e
            self.log.error("Listing fetch failed for %s: %s: %s", self.url, type(e).__name__, e)
            return None

        self.pages_fetched += 1
        self.log.info(
            "Listing page %s: references=%s next=%s",
            self.pages_fetched,
            len(page.references),
            page.next_page_token,
        )
        return page
