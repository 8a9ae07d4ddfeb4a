"""
Query string <-> catalog state.

Parameters: platform, category, tags (repeated, one value each), price
("<min>-<max>"), search, sort, page. Facets that normalize to unset and
values at their defaults are left out of the string, so two equal states
always produce the same URL.

Decoding never raises: unknown parameters are ignored, a garbled price or
page falls back to unset / 1, an unknown sort falls back to popularity.
"""
import math
import re
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlencode

from pydantic import BaseModel, ConfigDict

from filters import DEFAULT_SORT, FilterOptions, SortOption

FACETS = ("platform", "category", "tags")
PRICE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)\s*$")


class CatalogQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    filters: FilterOptions = FilterOptions()
    sort: SortOption = DEFAULT_SORT
    search: str = ""
    page: int = 1


def _format_price(value: float) -> str:
    text = format(Decimal(repr(float(value))), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def encode(filters: FilterOptions, sort: Union[SortOption, str] = DEFAULT_SORT, search: str = "",
           page: int = 1, ceiling: Optional[float] = None) -> str:
    f = filters.normalize(ceiling)
    params: List[Tuple[str, str]] = []
    for name in FACETS:
        values = getattr(f, name)
        if values:
            params.extend((name, v) for v in sorted(values))
    if f.price_range is not None:
        low, high = f.price_range
        params.append(("price", f"{_format_price(low)}-{_format_price(high)}"))
    search = (search or "").strip()
    if search:
        params.append(("search", search))
    sort = SortOption.parse(sort, DEFAULT_SORT)
    if sort != DEFAULT_SORT:
        params.append(("sort", sort.value))
    if page and page > 1:
        params.append(("page", str(page)))
    return urlencode(params)


def _parse_price(raw: str) -> Optional[Tuple[float, float]]:
    match = PRICE_RE.match(raw)
    if not match:
        return None
    low, high = float(match.group(1)), float(match.group(2))
    if not (math.isfinite(low) and math.isfinite(high)) or low > high:
        return None
    return low, high


def _parse_page(raw: str) -> int:
    try:
        page = int(raw)
    except ValueError:
        return 1
    return page if page >= 1 else 1


def _pairs(query) -> Iterable[Tuple[str, str]]:
    if query is None:
        return []
    if isinstance(query, str):
        return parse_qsl(query.lstrip("?"), keep_blank_values=False)
    if hasattr(query, "multi_items"):
        return query.multi_items()
    if hasattr(query, "items"):
        return query.items()
    return query


def decode(query, ceiling: Optional[float] = None) -> CatalogQuery:
    params: Dict[str, List[str]] = {}
    for key, value in _pairs(query):
        params.setdefault(key, []).append(value)

    facets = {}
    for name in FACETS:
        values = [part for raw in params.get(name, []) for part in raw.split(",")]
        facets[name] = frozenset(v.strip() for v in values if v.strip()) or None

    price = None
    if params.get("price"):
        price = _parse_price(params["price"][-1])

    filters = FilterOptions(price_range=price, **facets).normalize(ceiling)
    sort = SortOption.parse(params["sort"][-1], DEFAULT_SORT) if params.get("sort") else DEFAULT_SORT
    search = params["search"][-1].strip() if params.get("search") else ""
    page = _parse_page(params["page"][-1]) if params.get("page") else 1
    return CatalogQuery(filters=filters, sort=sort, search=search, page=page)
