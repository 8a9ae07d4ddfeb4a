"""
Catalog filter state.

A FilterOptions value holds one optional field per facet. None means the facet
is unset and imposes no constraint; normalize() folds the no-op values (empty
sets, the full price slider) into None so equal filters compare and serialize
identically.
"""
import math
import os
from enum import Enum
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, model_validator

from errors import ValidationFailure

PRICE_CEILING = float(os.getenv("PRICE_CEILING", "100"))


class SortOption(str, Enum):
    POPULARITY = "popularity"
    NEWEST = "newest"
    PRICE_ASC = "price-asc"
    PRICE_DESC = "price-desc"

    @classmethod
    def parse(cls, value: Any, default: "SortOption") -> "SortOption":
        try:
            return cls(value)
        except ValueError:
            return default


DEFAULT_SORT = SortOption.POPULARITY


def _clean(values: Iterable[str]) -> FrozenSet[str]:
    if isinstance(values, str):
        values = [values]
    cleaned = frozenset(v.strip() for v in values if v and v.strip())
    if any("," in v for v in cleaned):
        raise ValidationFailure("Filter values cannot contain commas")
    return cleaned


class FilterOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    platform: Optional[FrozenSet[str]] = None
    category: Optional[FrozenSet[str]] = None
    tags: Optional[FrozenSet[str]] = None
    price_range: Optional[Tuple[float, float]] = None

    @model_validator(mode="after")
    def _check_facets(self):
        for name in ("platform", "category", "tags"):
            if any("," in v for v in getattr(self, name) or ()):
                raise ValueError(f"{name} values cannot contain commas")
        return self

    @model_validator(mode="after")
    def _check_price_range(self):
        if self.price_range is not None:
            low, high = self.price_range
            if not (math.isfinite(low) and math.isfinite(high)) or low < 0 or low > high:
                raise ValueError("price range must satisfy 0 <= min <= max")
        return self

    def with_platform(self, values: Iterable[str]) -> "FilterOptions":
        return self.model_copy(update={"platform": _clean(values)})

    def with_category(self, values: Iterable[str]) -> "FilterOptions":
        return self.model_copy(update={"category": _clean(values)})

    def with_tags(self, values: Iterable[str]) -> "FilterOptions":
        return self.model_copy(update={"tags": _clean(values)})

    def with_price_range(self, low: Optional[float], high: Optional[float]) -> "FilterOptions":
        if low is None and high is None:
            return self.model_copy(update={"price_range": None})
        if low is None or high is None:
            raise ValidationFailure("Price range needs both a minimum and a maximum")
        low, high = float(low), float(high)
        if not (math.isfinite(low) and math.isfinite(high)):
            raise ValidationFailure("Price range must be a finite number")
        if low < 0 or high < 0:
            raise ValidationFailure("Prices cannot be negative")
        if low > high:
            raise ValidationFailure("Minimum price cannot exceed maximum price")
        return self.model_copy(update={"price_range": (low, high)})

    def normalize(self, ceiling: Optional[float] = None) -> "FilterOptions":
        ceiling = PRICE_CEILING if ceiling is None else ceiling
        facets = {}
        for name in ("platform", "category", "tags"):
            values = getattr(self, name)
            values = _clean(values) if values is not None else frozenset()
            facets[name] = values or None
        price = self.price_range
        if price is not None and price[0] == 0 and price[1] == ceiling:
            price = None
        return FilterOptions(price_range=price, **facets)

    @property
    def is_empty(self) -> bool:
        return self.normalize() == FilterOptions()

    def matches(self, product: Union[Mapping[str, Any], BaseModel]) -> bool:
        """In-memory evaluation of the facet law: AND across set facets, OR within one."""
        if isinstance(product, BaseModel):
            product = product.model_dump()
        f = self.normalize()
        if f.platform is not None and product.get("platform") not in f.platform:
            return False
        if f.category is not None and product.get("category") not in f.category:
            return False
        if f.tags is not None and not f.tags.intersection(product.get("tags") or ()):
            return False
        if f.price_range is not None:
            price = float(product.get("price") or 0)
            if not f.price_range[0] <= price <= f.price_range[1]:
                return False
        return True
