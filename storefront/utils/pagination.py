from typing import Optional, Tuple


def normalize_paging(page: Optional[int], page_size: Optional[int], max_page_size: int = 100) -> Tuple[int, int]:
    p = page if page and page > 0 else 1
    ps = page_size if page_size and page_size > 0 else 20
    ps = min(ps, max_page_size)
    return p, ps


def page_window(page: Optional[int], page_size: Optional[int]) -> Tuple[int, int, int, int]:
    """Return (page, page_size, offset, limit) for a query."""
    p, ps = normalize_paging(page, page_size)
    return p, ps, (p - 1) * ps, ps
