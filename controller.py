"""
Catalog view controller.

Owns the catalog query (filters, sort, search, page), runs fetches and keeps
the view state: idle, loading, loaded, empty or errored. It knows nothing
about rendering; callers read snapshot() or subscribe to changes.

Every load is tagged with a generation number. A result is applied only if
no newer load has started since, so a slow response to an old query can never
overwrite the result of a newer one, whatever order the responses arrive in.
"""
import asyncio
import logging
import math
import os
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from catalog import ProductPage
from errors import DataUnavailable, MarketError, ValidationFailure
from filters import DEFAULT_SORT, FilterOptions, SortOption
from urlsync import CatalogQuery, decode, encode

logger = logging.getLogger(__name__)

PAGE_SIZE = int(os.getenv("PAGE_SIZE", "12"))
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "20"))

Fetch = Callable[[FilterOptions, SortOption, str, int, int], Awaitable[ProductPage]]


class CatalogStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    EMPTY = "empty"
    ERRORED = "errored"


class ViewMode(str, Enum):
    GRID = "grid"
    LIST = "list"


class CatalogView(BaseModel):
    status: CatalogStatus
    items: List[Dict[str, Any]]
    total_count: int
    page: int
    page_size: int
    page_count: int
    view_mode: ViewMode
    query: CatalogQuery
    query_string: str
    error: Optional[Dict[str, Any]] = None
    can_retry: bool = False


class CatalogController:
    def __init__(self, fetch: Fetch, page_size: int = PAGE_SIZE, timeout: float = FETCH_TIMEOUT,
                 search_debounce: float = 0.0, query: Optional[CatalogQuery] = None):
        self._fetch = fetch
        self.page_size = page_size
        self.timeout = timeout
        self.search_debounce = search_debounce
        self.query = query or CatalogQuery()
        self.status = CatalogStatus.IDLE
        self.items: List[Dict[str, Any]] = []
        self.total_count = 0
        self.error: Optional[MarketError] = None
        self.view_mode = ViewMode.GRID
        self._generation = 0
        self._listeners: List[Callable[["CatalogController"], None]] = []

    @classmethod
    def from_query_string(cls, fetch: Fetch, query_string, **kwargs) -> "CatalogController":
        return cls(fetch, query=decode(query_string), **kwargs)

    # observation

    def subscribe(self, listener: Callable[["CatalogController"], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    @property
    def query_string(self) -> str:
        q = self.query
        return encode(q.filters, q.sort, q.search, q.page)

    @property
    def page_count(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.total_count else 0

    def snapshot(self) -> CatalogView:
        return CatalogView(
            status=self.status,
            items=self.items,
            total_count=self.total_count,
            page=self.query.page,
            page_size=self.page_size,
            page_count=self.page_count,
            view_mode=self.view_mode,
            query=self.query,
            query_string=self.query_string,
            error=self.error.to_dict() if self.error else None,
            can_retry=self.status == CatalogStatus.ERRORED,
        )

    # parameter changes

    async def set_filters(self, filters: FilterOptions) -> bool:
        return await self._load(self.query.model_copy(update={"filters": filters.normalize(), "page": 1}))

    async def set_sort(self, sort: Union[SortOption, str]) -> bool:
        sort = SortOption.parse(sort, DEFAULT_SORT)
        return await self._load(self.query.model_copy(update={"sort": sort, "page": 1}))

    async def set_search(self, search: str) -> bool:
        query = self.query.model_copy(update={"search": (search or "").strip(), "page": 1})
        return await self._load(query, delay=self.search_debounce)

    async def set_page(self, page: int) -> bool:
        if page < 1:
            raise ValidationFailure("Page numbers start at 1")
        return await self._load(self.query.model_copy(update={"page": page}))

    async def apply_query_string(self, query_string) -> bool:
        return await self._load(decode(query_string))

    async def refresh(self) -> bool:
        return await self._load(self.query)

    async def retry(self) -> bool:
        if self.status != CatalogStatus.ERRORED:
            return False
        return await self._load(self.query)

    def toggle_view_mode(self) -> ViewMode:
        self.view_mode = ViewMode.LIST if self.view_mode == ViewMode.GRID else ViewMode.GRID
        self._emit()
        return self.view_mode

    # loading

    async def _load(self, query: CatalogQuery, delay: float = 0.0) -> bool:
        """Run one fetch; True if its result is what the view now shows."""
        self._generation += 1
        generation = self._generation
        self.query = query
        self.status = CatalogStatus.LOADING
        self.error = None
        self._emit()

        if delay:
            await asyncio.sleep(delay)
            if generation != self._generation:
                return False

        try:
            page = await asyncio.wait_for(
                self._fetch(query.filters, query.sort, query.search, query.page, self.page_size),
                self.timeout,
            )
        except asyncio.TimeoutError:
            error = DataUnavailable("The catalog took too long to respond, please retry")
        except MarketError as e:
            error = e
        except Exception:
            logger.exception("catalog fetch failed")
            error = DataUnavailable()
        else:
            if generation != self._generation:
                logger.debug("discarding stale catalog result %d (current %d)", generation, self._generation)
                return False
            self.items = page.items
            self.total_count = page.total_count
            self.status = CatalogStatus.LOADED if page.items else CatalogStatus.EMPTY
            self._emit()
            return True

        if generation != self._generation:
            return False
        self.items = []
        self.error = error
        self.status = CatalogStatus.ERRORED
        self._emit()
        return False
