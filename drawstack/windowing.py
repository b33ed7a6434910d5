"""
Windowing over large image lists.

Two independent strategies: a scroll-driven viewport range for streamed grids
(ViewportWindower) and page-based slicing of an already loaded list
(calculate_pagination / paginate / PaginatedLoader). Everything here is pure
arithmetic except PaginatedLoader's one async load.
"""

import math
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from . import DEFAULT_BUFFER_SIZE

T = TypeVar("T")


# --- Viewport ---

@dataclass(frozen=True)
class VisibleRange:
    visible_start: int
    visible_end: int
    offset_y: float
    scrollable_height: float

    def to_dict(self) -> dict:
        return asdict(self)


def compute_visible_range(
    scroll_offset: float,
    item_height: float,
    container_height: float,
    total_items: int,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> VisibleRange:
    """
    Indices [visible_start, visible_end) to render for a list scrolled to
    `scroll_offset`. The range always covers every row that is actually on
    screen; `buffer_size` extra rows each side only hide pop-in.
    """
    if item_height <= 0:
        raise ValueError("item_height must be positive")
    scroll_offset = max(0.0, scroll_offset)
    total_items = max(0, total_items)
    buffer_size = max(0, buffer_size)

    start_index = math.floor(scroll_offset / item_height)
    # Counted from the top of the first row, which may be partly scrolled off.
    visible_count = math.ceil((scroll_offset - start_index * item_height + container_height) / item_height)
    buffered_start = max(0, start_index - buffer_size)
    buffered_end = min(total_items, start_index + visible_count + buffer_size)
    # Scrolled past the end (e.g. the list just shrank): render nothing rather than a negative span.
    buffered_start = min(buffered_start, buffered_end)

    return VisibleRange(
        visible_start=buffered_start,
        visible_end=buffered_end,
        offset_y=buffered_start * item_height,
        scrollable_height=total_items * item_height,
    )


class ViewportWindower:
    """
    Keeps the visible range of one scrollable list current.

    The range is recomputed on every scroll and also whenever the item count
    or geometry changes, since a filter or a resize invalidates it without
    any scroll event. `on_range`, if given, receives each new range.
    """

    def __init__(
        self,
        item_height: float,
        container_height: float,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        on_range: Optional[Callable[[VisibleRange], None]] = None,
    ):
        self.item_height = item_height
        self.container_height = container_height
        self.buffer_size = buffer_size
        self.on_range = on_range
        self.total_items = 0
        self.scroll_top = 0.0
        self.range = self._recompute()

    def _recompute(self) -> VisibleRange:
        self.range = compute_visible_range(
            self.scroll_top, self.item_height, self.container_height,
            self.total_items, self.buffer_size,
        )
        if self.on_range is not None:
            self.on_range(self.range)
        return self.range

    def scroll_to(self, scroll_top: float) -> VisibleRange:
        self.scroll_top = max(0.0, scroll_top)
        return self._recompute()

    def set_total_items(self, count: int) -> VisibleRange:
        self.total_items = count
        return self._recompute()

    def resize(self, item_height: Optional[float] = None, container_height: Optional[float] = None) -> VisibleRange:
        if item_height is not None:
            self.item_height = item_height
        if container_height is not None:
            self.container_height = container_height
        return self._recompute()

    def visible_range(self) -> VisibleRange:
        return self.range

    def visible_items(self, items: Sequence[T]) -> List[T]:
        return list(items[self.range.visible_start:self.range.visible_end])


# --- Pagination ---

@dataclass(frozen=True)
class PaginationState:
    current_page: int
    page_size: int
    total_items: int
    total_pages: int

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.current_page > 1

    def to_dict(self) -> dict:
        data = asdict(self)
        data.update(has_next=self.has_next, has_previous=self.has_previous)
        return data


def calculate_pagination(total_items: int, current_page: int, page_size: int) -> PaginationState:
    """The requested page clamped into [1, max(total_pages, 1)]."""
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    total_pages = math.ceil(total_items / page_size) if total_items > 0 else 0
    valid_page = min(max(current_page, 1), total_pages or 1)
    return PaginationState(
        current_page=valid_page,
        page_size=page_size,
        total_items=total_items,
        total_pages=total_pages,
    )


def paginate(items: Sequence[T], page_number: int, page_size: int) -> List[T]:
    """Items of one page; a page outside the list is empty, not an error."""
    if page_number < 1 or page_size <= 0:
        return []
    start = (page_number - 1) * page_size
    return list(items[start:start + page_size])


class PaginatedLoader(Generic[T]):
    """Loads a whole collection once, then serves pages of it from memory."""

    def __init__(self, page_size: int, load: Callable[[], Awaitable[Sequence[T]]]):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self._load = load
        self._items: List[T] = []
        self.current_page = 1

    async def initialize(self) -> None:
        self._items = list(await self._load())
        self.current_page = 1

    async def reload(self) -> None:
        await self.initialize()

    def get_current_page(self) -> List[T]:
        return paginate(self._items, self.current_page, self.page_size)

    def get_total_count(self) -> int:
        return len(self._items)

    def get_pagination_state(self) -> PaginationState:
        return calculate_pagination(len(self._items), self.current_page, self.page_size)

    def next_page(self) -> bool:
        if self.current_page < self.get_pagination_state().total_pages:
            self.current_page += 1
            return True
        return False

    def previous_page(self) -> bool:
        if self.current_page > 1:
            self.current_page -= 1
            return True
        return False

    def go_to_page(self, page_number: int) -> bool:
        if 1 <= page_number <= self.get_pagination_state().total_pages:
            self.current_page = page_number
            return True
        return False
