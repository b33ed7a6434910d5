"""Tests for the viewport range, pagination and the paginated loader."""

import pytest

from drawstack.windowing import (
    PaginatedLoader,
    ViewportWindower,
    calculate_pagination,
    compute_visible_range,
    paginate,
)


class TestVisibleRange:
    def test_middle_of_list(self):
        visible = compute_visible_range(1000, 150, 800, 1500, buffer_size=2)
        assert visible.visible_start == 4
        assert visible.visible_end == 14
        assert visible.offset_y == 600
        assert visible.scrollable_height == 225000

    def test_row_aligned_offset(self):
        visible = compute_visible_range(1500, 150, 800, 1000, buffer_size=2)
        assert visible.visible_start == 8
        assert visible.visible_end == 18

    def test_partial_top_row_without_buffer(self):
        # Pixels 60..260 show rows 0, 1 and 2.
        visible = compute_visible_range(60, 100, 200, 100, buffer_size=0)
        assert visible.visible_start == 0
        assert visible.visible_end == 3

    def test_top_of_list_clamps_buffer(self):
        visible = compute_visible_range(0, 100, 500, 50, buffer_size=3)
        assert visible.visible_start == 0
        assert visible.visible_end == 8

    def test_end_clamped_to_total(self):
        visible = compute_visible_range(900, 100, 500, 10, buffer_size=3)
        assert visible.visible_end == 10

    def test_scrolled_past_end(self):
        visible = compute_visible_range(5000, 100, 500, 10, buffer_size=0)
        assert visible.visible_start == visible.visible_end == 10

    def test_empty_list(self):
        visible = compute_visible_range(0, 100, 500, 0)
        assert (visible.visible_start, visible.visible_end) == (0, 0)
        assert visible.scrollable_height == 0

    def test_rejects_non_positive_item_height(self):
        with pytest.raises(ValueError):
            compute_visible_range(0, 0, 500, 10)


class TestViewportWindower:
    def test_recomputes_on_every_change(self):
        seen = []
        windower = ViewportWindower(100, 300, buffer_size=1, on_range=seen.append)
        windower.set_total_items(100)
        windower.scroll_to(1000)
        windower.resize(container_height=600)

        assert len(seen) == 4
        assert seen[-1].visible_start == 9
        assert seen[-1].visible_end == 17

    def test_visible_items(self):
        windower = ViewportWindower(10, 30, buffer_size=0)
        items = list(range(100))
        windower.set_total_items(len(items))
        windower.scroll_to(50)
        assert windower.visible_items(items) == [5, 6, 7]

    def test_shrinking_list_clamps_range(self):
        windower = ViewportWindower(10, 30, buffer_size=0)
        windower.set_total_items(100)
        windower.scroll_to(900)
        visible = windower.set_total_items(5)
        assert visible.visible_start <= visible.visible_end == 5


class TestPagination:
    def test_last_page(self):
        state = calculate_pagination(95, 10, 10)
        assert state.total_pages == 10
        assert state.has_next is False
        assert state.has_previous is True

    def test_empty(self):
        state = calculate_pagination(0, 5, 10)
        assert state.current_page == 1
        assert state.total_pages == 0
        assert state.has_next is False
        assert state.has_previous is False

    def test_page_clamped(self):
        assert calculate_pagination(30, 99, 10).current_page == 3
        assert calculate_pagination(30, -2, 10).current_page == 1

    def test_rejects_non_positive_page_size(self):
        with pytest.raises(ValueError):
            calculate_pagination(10, 1, 0)

    def test_to_dict(self):
        data = calculate_pagination(25, 2, 10).to_dict()
        assert data == {
            "current_page": 2, "page_size": 10, "total_items": 25, "total_pages": 3,
            "has_next": True, "has_previous": True,
        }

    def test_paginate(self):
        items = list(range(25))
        assert paginate(items, 3, 10) == [20, 21, 22, 23, 24]
        assert paginate(items, 4, 10) == []
        assert paginate(items, 0, 10) == []


class TestPaginatedLoader:
    async def test_navigation(self):
        async def load():
            return list(range(25))

        loader = PaginatedLoader(10, load)
        await loader.initialize()
        assert loader.get_total_count() == 25
        assert loader.get_current_page() == list(range(10))

        assert loader.next_page() is True
        assert loader.next_page() is True
        assert loader.get_current_page() == list(range(20, 25))
        assert loader.next_page() is False

        assert loader.go_to_page(1) is True
        assert loader.previous_page() is False
        assert loader.go_to_page(4) is False
        assert loader.get_pagination_state().current_page == 1

    async def test_reload_resets_to_first_page(self):
        data = [list(range(30)), list(range(5))]

        async def load():
            return data.pop(0)

        loader = PaginatedLoader(10, load)
        await loader.initialize()
        loader.go_to_page(3)
        await loader.reload()
        assert loader.current_page == 1
        assert loader.get_total_count() == 5
