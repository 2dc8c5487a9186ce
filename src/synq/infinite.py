"""Paged ("infinite") queries stored as one cache entry holding a list of pages.

    feed = client.infinite_query(
        "feed",
        lambda cursor, token: api.feed(cursor),
        get_next_page_param=lambda last, pages: last["next_cursor"],
        initial_page_param=None,
    )
    await feed.fetch()
    while feed.has_next_page:
        await feed.fetch_next_page()

A plain fetch, refetch or invalidation loads only the first page again; the
page params are derived from the cached pages each time they are needed.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from synq.cache import QueryCache, QueryEntry
from synq.cancel import CancelToken
from synq.config import QueryConfig
from synq.exceptions import ErrorHandler, FetchError, report_error
from synq.keys import KeyLike, QueryKey, normalize_key
from synq.network import Gate, resolve

logger = logging.getLogger(__name__)

TPage = TypeVar("TPage")

PageFetcher = Callable[[Any, CancelToken], Awaitable[TPage]]
PageParam = Callable[[TPage, list[TPage]], Any]


class InfiniteQuery(Generic[TPage]):
    """A list of pages under one query key, extended a page at a time.

    ``get_next_page_param(last_page, pages)`` returns the param for the page
    after ``last_page``, or None when there are no more pages. The optional
    ``get_previous_page_param(first_page, pages)`` works the same way for
    pages before the first one.
    """

    def __init__(
        self,
        cache: QueryCache,
        key: KeyLike,
        fetch_page: PageFetcher[TPage],
        *,
        get_next_page_param: PageParam[TPage],
        get_previous_page_param: PageParam[TPage] | None = None,
        initial_page_param: Any = None,
        config: QueryConfig | None = None,
        on_error: ErrorHandler | None = None,
    ) -> None:
        self._cache = cache
        self._key = normalize_key(key)
        self._fetch_page = fetch_page
        self._get_next_page_param = get_next_page_param
        self._get_previous_page_param = get_previous_page_param
        self._initial_page_param = initial_page_param
        self._config = config
        self._on_error = on_error
        self._next_token: CancelToken | None = None
        self._previous_token: CancelToken | None = None
        self.error: FetchError | None = None

    @property
    def key(self) -> QueryKey:
        return self._key

    @property
    def entry(self) -> QueryEntry | None:
        return self._cache.get_entry(self._key)

    @property
    def pages(self) -> list[TPage]:
        return list(self._cache.get_data(self._key) or [])

    @property
    def next_page_param(self) -> Any:
        pages = self.pages
        if not pages:
            return None
        return self._get_next_page_param(pages[-1], pages)

    @property
    def previous_page_param(self) -> Any:
        pages = self.pages
        if not pages or self._get_previous_page_param is None:
            return None
        return self._get_previous_page_param(pages[0], pages)

    @property
    def has_next_page(self) -> bool:
        return self.next_page_param is not None

    @property
    def has_previous_page(self) -> bool:
        return self.previous_page_param is not None

    @property
    def is_fetching_next_page(self) -> bool:
        return self._next_token is not None

    @property
    def is_fetching_previous_page(self) -> bool:
        return self._previous_token is not None

    async def _fetch_first(self, token: CancelToken) -> list[TPage]:
        return [await self._fetch_page(self._initial_page_param, token)]

    async def fetch(self, *, force: bool = False, raise_on_error: bool = False) -> list[TPage]:
        """Load the first page unless fresh pages are cached.

        ``force`` drops every page but the first and cancels page fetches in
        progress.
        """
        if force:
            self._cancel_pages("Full refresh")
            self.error = None
        await self._cache.fetch(
            self._key, self._fetch_first, self._config, force=force, raise_on_error=raise_on_error
        )
        return self.pages

    async def refetch(self, *, raise_on_error: bool = False) -> list[TPage]:
        return await self.fetch(force=True, raise_on_error=raise_on_error)

    async def fetch_next_page(self, *, raise_on_error: bool = False) -> list[TPage]:
        """Append the next page. Does nothing while a next page is loading or none is left.

        With no pages cached yet this loads the first page.
        """
        if not self.pages:
            return await self.fetch(raise_on_error=raise_on_error)
        if self.is_fetching_next_page or not self.has_next_page:
            return self.pages
        return await self._extend(self.next_page_param, append=True, raise_on_error=raise_on_error)

    async def fetch_previous_page(self, *, raise_on_error: bool = False) -> list[TPage]:
        """Prepend the previous page, if ``get_previous_page_param`` finds one."""
        if self.is_fetching_previous_page or not self.has_previous_page:
            return self.pages
        return await self._extend(self.previous_page_param, append=False, raise_on_error=raise_on_error)

    async def _extend(self, param: Any, *, append: bool, raise_on_error: bool) -> list[TPage]:
        direction = "next" if append else "previous"
        token = CancelToken(f"{direction} page {self._key}")
        if append:
            self._next_token = token
        else:
            self._previous_token = token
        try:
            entry = self.entry
            mode = entry.config.network_mode if entry is not None else self._cache.default_config.network_mode
            network = self._cache.network
            gate = resolve(mode, network.is_online, True)
            if gate is Gate.SERVE_CACHED:
                return self.pages
            if gate is Gate.WAIT:
                logger.debug("Page fetch for %s paused until network returns", self._key)
                await network.wait_until_online()

            try:
                page = await self._fetch_page(param, token)
            except Exception as e:
                if token.is_cancelled:
                    return self.pages
                # Pages already loaded stay; only the error is recorded
                error = FetchError(self._key.normalized, 1, e)
                error.__cause__ = e
                logger.warning("Fetching %s page failed: %s", direction, error)
                self.error = error
                report_error(self._on_error, error)
                if raise_on_error:
                    raise error from e
                return self.pages

            if token.is_cancelled:
                logger.debug("Discarding cancelled %s page for %s", direction, self._key)
                return self.pages
            pages = self.pages
            pages = [*pages, page] if append else [page, *pages]
            self._cache.set_data(self._key, pages, fresh=True)
            self.error = None
            return self.pages
        finally:
            if append and self._next_token is token:
                self._next_token = None
            elif not append and self._previous_token is token:
                self._previous_token = None

    def _cancel_pages(self, reason: str) -> None:
        for token in (self._next_token, self._previous_token):
            if token is not None:
                token.cancel(reason)
        self._next_token = None
        self._previous_token = None

    def cancel(self, reason: str | None = None) -> None:
        """Cancel page fetches and the first-page request in progress."""
        self._cancel_pages(reason or "Cancelled by caller")
        self._cache.cancel(self._key, reason)

    def __repr__(self) -> str:
        return f"InfiniteQuery(key={self._key.normalized!r}, pages={len(self.pages)})"


__all__ = ["InfiniteQuery", "PageFetcher", "PageParam"]
