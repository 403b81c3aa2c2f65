"""Pagination strategies.

Three interchangeable policies decide where the next page starts and when to
stop. Connectors supply a ``fetch_page(position)`` coroutine; ``paginate``
drives it and yields non-empty batches.

All strategies stop on a short (or empty) page, so a listing of N records
costs at most ``ceil(N / page_size) + 1`` calls.

Listings whose next page is named by the server instead of computed
(``after_cursor``) use ``NextCursorPagination`` with ``paginate_cursor``.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, List, Mapping, Optional, Set
from urllib.parse import urlencode

from core.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_PAGES = 10_000


def with_query(path: str, params: Mapping[str, Any]) -> str:
    """Append query parameters to a path that may already carry some."""
    if not params:
        return path
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{urlencode(params)}"


class PaginationStrategy(ABC):
    """Advance/termination policy for one listing."""

    def __init__(self, page_size: int):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.page_size = page_size

    @abstractmethod
    def initial_position(self) -> int:
        pass

    @abstractmethod
    def next_position(self, position: int, items: List[Any]) -> Optional[int]:
        """Position of the next page, or None when the listing is exhausted."""
        pass

    def accept(self, items: List[Any]) -> List[Any]:
        """Filter a fetched batch before it is yielded."""
        return items


class CursorPagination(PaginationStrategy):
    """``start += page_size`` until a short page.

    With ``page_numbers=True`` the position is a 1-based page number
    (``?page=N&per_page=M``) instead of a record offset.
    """

    def __init__(self, page_size: int = 100, page_numbers: bool = False):
        super().__init__(page_size)
        self.page_numbers = page_numbers

    def initial_position(self) -> int:
        return 1 if self.page_numbers else 0

    def next_position(self, position: int, items: List[Any]) -> Optional[int]:
        if len(items) < self.page_size:
            return None
        return position + (1 if self.page_numbers else self.page_size)


class OffsetWindowPagination(CursorPagination):
    """Positional window encoded in the path itself.

    Example:
        >>> OffsetWindowPagination("/Tickets/Ticket/ListAll/-1/-1/-1/-1/{count}/{start}", 100).window(200)
        '/Tickets/Ticket/ListAll/-1/-1/-1/-1/100/200'
    """

    def __init__(self, template: str, page_size: int = 100):
        super().__init__(page_size)
        self.template = template

    def window(self, start: int) -> str:
        return self.template.format(count=self.page_size, start=start)


class MarkerPagination(PaginationStrategy):
    """``next marker = max(id in batch) + 1`` until a short page.

    Duplicate ids are dropped and a marker that would not move forward ends
    the listing, so a misbehaving API cannot make this loop forever.
    """

    def __init__(
        self,
        page_size: int = 1000,
        start_marker: int = 1,
        id_of: Callable[[Any], int] = lambda item: int(item["id"]),
    ):
        super().__init__(page_size)
        self.start_marker = start_marker
        self.id_of = id_of
        self._seen: Set[int] = set()

    def initial_position(self) -> int:
        self._seen.clear()
        return self.start_marker

    def _safe_id(self, item: Any) -> Optional[int]:
        try:
            return self.id_of(item)
        except (KeyError, TypeError, ValueError):
            return None

    def accept(self, items: List[Any]) -> List[Any]:
        fresh = []
        for item in items:
            item_id = self._safe_id(item)
            if item_id is not None:
                if item_id in self._seen:
                    continue
                self._seen.add(item_id)
            fresh.append(item)
        return fresh

    def next_position(self, position: int, items: List[Any]) -> Optional[int]:
        if len(items) < self.page_size:
            return None
        ids = [i for i in (self._safe_id(item) for item in items) if i is not None]
        if not ids:
            return None
        marker = max(ids) + 1
        if marker <= position:
            logger.warning(f"Marker did not advance past {position}, stopping pagination")
            return None
        return marker


async def paginate(
    strategy: PaginationStrategy,
    fetch_page: Callable[[int], Awaitable[List[Any]]],
    max_pages: int = DEFAULT_MAX_PAGES,
) -> AsyncIterator[List[Any]]:
    """Drive a strategy, yielding each non-empty batch.

    Args:
        strategy: Advance/termination policy
        fetch_page: Coroutine returning the records at a position
        max_pages: Hard cap on calls
    """
    position = strategy.initial_position()
    pages = 0

    while True:
        items = await fetch_page(position)
        pages += 1

        batch = strategy.accept(list(items or []))
        if batch:
            yield batch

        next_position = strategy.next_position(position, list(items or []))
        if next_position is None:
            return
        if pages >= max_pages:
            logger.warning(f"Stopping pagination after {pages} pages (max_pages reached)")
            return
        position = next_position


class NextCursorPagination:
    """Server-issued cursor, as in Zendesk's incremental export.

    The first request carries ``start_params``; each response names the
    cursor of the next page (``after_cursor``) and flags the end of the
    stream (``end_of_stream``). A missing or repeated cursor also ends it.
    """

    def __init__(
        self,
        path: str,
        start_params: Optional[Mapping[str, Any]] = None,
        cursor_key: str = "after_cursor",
        end_key: str = "end_of_stream",
        cursor_param: str = "cursor",
    ):
        self.path = path
        self.start_params = dict(start_params or {})
        self.cursor_key = cursor_key
        self.end_key = end_key
        self.cursor_param = cursor_param

    def first_path(self) -> str:
        return with_query(self.path, self.start_params)

    def next_path(self, data: Any) -> Optional[str]:
        if not isinstance(data, dict) or data.get(self.end_key):
            return None
        cursor = data.get(self.cursor_key)
        if not cursor:
            return None
        return with_query(self.path, {self.cursor_param: cursor})


async def paginate_cursor(
    strategy: NextCursorPagination,
    fetch: Callable[[str], Awaitable[Any]],
    max_pages: int = DEFAULT_MAX_PAGES,
) -> AsyncIterator[Any]:
    """Follow a server-issued cursor, yielding each response body.

    Args:
        strategy: Knows the first path and reads the next one from a response
        fetch: Coroutine returning the decoded body for a path
        max_pages: Hard cap on calls
    """
    path = strategy.first_path()
    pages = 0

    while True:
        data = await fetch(path)
        pages += 1
        yield data

        next_path = strategy.next_path(data)
        if next_path is None:
            return
        if next_path == path:
            logger.warning(f"Cursor did not advance past {path}, stopping pagination")
            return
        if pages >= max_pages:
            logger.warning(f"Stopping pagination after {pages} pages (max_pages reached)")
            return
        path = next_path
