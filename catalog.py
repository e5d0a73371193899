"""
Product catalog and the filter -> sort -> paginate pipeline.
"""

import math
import threading
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from schemas import Category, FilterState, Product, SortKey, ViewMode

PAGE_SIZE = 8
SEARCH_DEBOUNCE_SECONDS = 0.3


CATEGORIES: List[Category] = [
    Category(id="dolls", name="Dolls & Figurines", icon="🪆"),
    Category(id="animals", name="Animals", icon="🐘"),
    Category(id="mythology", name="Mythology", icon="🪔"),
    Category(id="village-life", name="Village Life", icon="🛖"),
    Category(id="festive", name="Festive Sets", icon="🎉"),
]

_SAMPLE_PRODUCTS: List[Dict[str, Any]] = [
    {"id": 1, "name": "Dancing Couple", "price": "34.99", "original_price": "44.99", "category": "dolls",
     "artisan": "Lakshmi Devi", "rating": 4.8, "reviews": 124, "popularity": 98, "in_stock": True,
     "image": "images/dancing-couple.jpg", "description": "Hand-carved couple in traditional Kuchipudi pose."},
    {"id": 2, "name": "Royal Elephant", "price": "28.50", "original_price": "35.00", "category": "animals",
     "artisan": "Ramesh Achari", "rating": 4.9, "reviews": 210, "popularity": 99, "in_stock": True,
     "image": "images/royal-elephant.jpg", "description": "Decorated temple elephant painted with natural colours."},
    {"id": 3, "name": "Dasavatharam Set", "price": "89.00", "original_price": "110.00", "category": "mythology",
     "artisan": "Venkata Rao", "rating": 4.7, "reviews": 56, "popularity": 85, "in_stock": True,
     "image": "images/dasavatharam.jpg", "description": "The ten avatars of Vishnu, carved from Tella Poniki wood."},
    {"id": 4, "name": "Village Well", "price": "22.00", "original_price": "22.00", "category": "village-life",
     "artisan": "Suseela", "rating": 4.3, "reviews": 31, "popularity": 60, "in_stock": True,
     "image": "images/village-well.jpg", "description": "Women drawing water at the village well."},
    {"id": 5, "name": "Bullock Cart", "price": "39.99", "original_price": "49.99", "category": "village-life",
     "artisan": "Ramesh Achari", "rating": 4.6, "reviews": 88, "popularity": 91, "in_stock": True,
     "image": "images/bullock-cart.jpg", "description": "A farmer's bullock cart with moving wheels."},
    {"id": 6, "name": "Peacock Pair", "price": "18.75", "original_price": "24.00", "category": "animals",
     "artisan": "Lakshmi Devi", "rating": 4.6, "reviews": 64, "popularity": 72, "in_stock": True,
     "image": "images/peacock-pair.jpg", "description": "Two peacocks with hand-painted plumage."},
    {"id": 7, "name": "Ganesha Idol", "price": "25.00", "original_price": "30.00", "category": "mythology",
     "artisan": "Venkata Rao", "rating": 4.9, "reviews": 301, "popularity": 97, "in_stock": True,
     "image": "images/ganesha.jpg", "description": "Seated Ganesha, a favourite for new beginnings."},
    {"id": 8, "name": "Sankranti Golu Set", "price": "120.00", "original_price": "150.00", "category": "festive",
     "artisan": "Kondappali Artisans Collective", "rating": 4.8, "reviews": 42, "popularity": 80, "in_stock": False,
     "image": "images/golu-set.jpg", "description": "Festive display set of twelve figurines."},
    {"id": 9, "name": "Potter at Work", "price": "19.99", "original_price": "19.99", "category": "village-life",
     "artisan": "Suseela", "rating": 4.2, "reviews": 19, "popularity": 55, "in_stock": True,
     "image": "images/potter.jpg", "description": "A village potter shaping clay at his wheel."},
    {"id": 10, "name": "Bride and Groom", "price": "45.00", "original_price": "55.00", "category": "dolls",
     "artisan": "Lakshmi Devi", "rating": 4.7, "reviews": 77, "popularity": 88, "in_stock": True,
     "image": "images/bride-groom.jpg", "description": "Wedding dolls dressed in traditional silk colours."},
    {"id": 11, "name": "Parrot Perch", "price": "15.00", "original_price": "18.00", "category": "animals",
     "artisan": "Ramesh Achari", "rating": 4.4, "reviews": 38, "popularity": 64, "in_stock": True,
     "image": "images/parrot.jpg", "description": "Green parrot on a carved wooden perch."},
    {"id": 12, "name": "Diwali Lamp Lady", "price": "32.00", "original_price": "40.00", "category": "festive",
     "artisan": "Kondappali Artisans Collective", "rating": 4.5, "reviews": 50, "popularity": 76, "in_stock": True,
     "image": "images/lamp-lady.jpg", "description": "Woman holding a diya, painted for the festival of lights."},
]

PRODUCTS: List[Product] = [Product(**p) for p in _SAMPLE_PRODUCTS]


def get_product_by_id(product_id: int, products: Sequence[Product] = PRODUCTS) -> Optional[Product]:
    return next((p for p in products if p.id == int(product_id)), None)


def get_category_name(category_id: str, categories: Sequence[Category] = CATEGORIES) -> str:
    category = next((c for c in categories if c.id == category_id), None)
    return category.name if category else category_id


def discount_percent(product: Product) -> int:
    if not product.original_price or product.original_price <= product.price:
        return 0
    return round((1 - product.price / product.original_price) * 100)


def star_rating(rating: float) -> Tuple[int, bool, int]:
    """(full stars, half star, empty stars) out of five."""
    full = int(math.floor(rating))
    half = rating % 1 >= 0.5
    return full, half, 5 - full - (1 if half else 0)


# --- Filters ---

def parse_price_range(token: str) -> Tuple[Decimal, Optional[Decimal]]:
    """Parse "min-max" or "min-". A missing or zero max means no upper bound."""
    low, sep, high = token.partition("-")
    if not sep:
        raise ValueError(f"Invalid price range: {token!r}")
    try:
        minimum = Decimal(low)
        maximum = Decimal(high) if high else None
    except InvalidOperation:
        raise ValueError(f"Invalid price range: {token!r}")
    if maximum is not None and maximum == 0:
        maximum = None
    return minimum, maximum


def filter_by_category(products: Sequence[Product], category: str) -> List[Product]:
    if category == "all":
        return list(products)
    return [p for p in products if p.category == category]


def filter_by_price(products: Sequence[Product], price_range: str) -> List[Product]:
    if price_range == "all":
        return list(products)
    minimum, maximum = parse_price_range(price_range)
    if maximum is None:
        return [p for p in products if p.price >= minimum]
    return [p for p in products if minimum <= p.price <= maximum]


def filter_by_search(products: Sequence[Product], search: str) -> List[Product]:
    term = search.strip().lower()
    if not term:
        return list(products)
    return [
        p for p in products
        if term in p.name.lower() or term in p.description.lower() or term in p.category.lower()
    ]


# Python's sort is stable, so ties keep catalog order.
SORTS: Dict[SortKey, Tuple[Callable[[Product], Any], bool]] = {
    SortKey.PRICE_LOW: (lambda p: p.price, False),
    SortKey.PRICE_HIGH: (lambda p: p.price, True),
    SortKey.NAME: (lambda p: p.name.casefold(), False),
    SortKey.RATING: (lambda p: p.rating, True),
    SortKey.POPULARITY: (lambda p: p.popularity, True),
}


def sort_products(products: Sequence[Product], sort_by: SortKey) -> List[Product]:
    key, reverse = SORTS[SortKey(sort_by)]
    return sorted(products, key=key, reverse=reverse)


def get_filtered_products(filters: FilterState, products: Sequence[Product] = PRODUCTS) -> List[Product]:
    filtered = filter_by_category(products, filters.category)
    filtered = filter_by_price(filtered, filters.price_range)
    filtered = filter_by_search(filtered, filters.search)
    return sort_products(filtered, filters.sort_by)


# --- Pagination ---

@dataclass
class PageControl:
    kind: str  # "prev", "page", "ellipsis" or "next"
    page: Optional[int] = None
    active: bool = False
    disabled: bool = False


@dataclass
class ProductPage:
    items: List[Product]
    page: int
    page_count: int
    total: int
    controls: List[PageControl] = field(default_factory=list)

    @property
    def summary(self) -> str:
        return f"Showing {len(self.items)} of {self.total} products"


def page_count(total: int, page_size: int = PAGE_SIZE) -> int:
    return math.ceil(total / page_size)


def clamp_page(page: int, pages: int) -> int:
    return min(max(1, page), max(1, pages))


def pagination_controls(current: int, pages: int) -> List[PageControl]:
    if pages <= 1:
        return []
    controls = [PageControl("prev", current - 1, disabled=current == 1)]
    for i in range(1, pages + 1):
        if i == 1 or i == pages or current - 1 <= i <= current + 1:
            controls.append(PageControl("page", i, active=i == current))
        elif i == current - 2 or i == current + 2:
            controls.append(PageControl("ellipsis"))
    controls.append(PageControl("next", current + 1, disabled=current == pages))
    return controls


def paginate(products: Sequence[Product], page: int, page_size: int = PAGE_SIZE) -> ProductPage:
    pages = page_count(len(products), page_size)
    current = clamp_page(page, pages)
    start = (current - 1) * page_size
    return ProductPage(
        items=list(products[start:start + page_size]),
        page=current,
        page_count=pages,
        total=len(products),
        controls=pagination_controls(current, pages),
    )


def browse(filters: FilterState, products: Sequence[Product] = PRODUCTS, page_size: int = PAGE_SIZE) -> ProductPage:
    return paginate(get_filtered_products(filters, products), filters.page, page_size)


class ProductBrowser:
    """
    Filter state for the products page. Any filter change returns to page 1.

    Debounced searches land on a timer thread, so every read and write of
    `filters` happens under `lock`.
    """

    def __init__(self, products: Sequence[Product] = PRODUCTS, debounce: float = SEARCH_DEBOUNCE_SECONDS):
        self.products = list(products)
        self.filters = FilterState()
        self.debouncer = Debouncer(debounce)
        self.lock = threading.RLock()

    def current_page(self) -> ProductPage:
        with self.lock:
            page = browse(self.filters, self.products)
            self.filters.page = page.page
            return page

    def set_category(self, category: str) -> ProductPage:
        with self.lock:
            self.filters.category = category
            self.filters.page = 1
            return self.current_page()

    def set_price_range(self, price_range: str) -> ProductPage:
        with self.lock:
            self.filters.price_range = price_range
            self.filters.page = 1
            return self.current_page()

    def set_sort(self, sort_by: SortKey) -> ProductPage:
        with self.lock:
            self.filters.sort_by = SortKey(sort_by)
            return self.current_page()

    def set_view(self, view) -> ProductPage:
        with self.lock:
            self.filters.view = ViewMode(view)
            return self.current_page()

    def set_search(self, text: str) -> ProductPage:
        with self.lock:
            self.filters.search = text.lower()
            self.filters.page = 1
            return self.current_page()

    def type_search(self, text: str, on_results: Callable[[ProductPage], None]) -> None:
        """Keystroke handler: runs the search once typing pauses."""
        self.debouncer.call(lambda: on_results(self.set_search(text)))

    def go_to_page(self, page: int) -> ProductPage:
        with self.lock:
            self.filters.page = max(1, page)
            return self.current_page()

    def reset(self) -> ProductPage:
        with self.lock:
            self.filters = FilterState(view=self.filters.view)
            return self.current_page()

    def category_tags(self, categories: Sequence[Category] = CATEGORIES) -> List[Tuple[Category, bool]]:
        with self.lock:
            active = self.filters.category
        return [(c, c.id == active) for c in categories]


class Debouncer:
    """Single-shot timer: each call cancels the pending one and restarts the delay."""

    def __init__(self, delay: float = SEARCH_DEBOUNCE_SECONDS):
        self.delay = delay
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def call(self, fn: Callable[[], None]) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, fn)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
