from urllib.parse import parse_qsl

import pytest

from errors import ValidationFailure
from filters import FilterOptions, SortOption
from urlsync import CatalogQuery, decode, encode

STATES = [
    (FilterOptions(), SortOption.POPULARITY, ""),
    (FilterOptions().with_platform(["WordPress"]), SortOption.NEWEST, ""),
    (FilterOptions().with_platform(["WordPress", "XenForo"]).with_category(["Themes"]),
     SortOption.PRICE_DESC, "seo tools"),
    (FilterOptions().with_tags(["eCommerce", "Forum"]).with_price_range(0, 50), SortOption.PRICE_ASC, "a&b=c"),
    (FilterOptions().with_price_range(9.99, 49.5), SortOption.POPULARITY, "Ünïcode"),
    (FilterOptions().with_price_range(0.00001, 1e6), SortOption.NEWEST, ""),
]


@pytest.mark.parametrize("filters,sort,search", STATES)
def test_round_trip(filters, sort, search):
    decoded = decode(encode(filters, sort, search))
    assert decoded == CatalogQuery(filters=filters.normalize(), sort=sort, search=search)


def test_page_round_trips():
    assert decode(encode(FilterOptions(), "newest", "", page=3)).page == 3


def test_unset_facets_are_absent():
    qs = encode(FilterOptions().with_platform([]).with_price_range(0, 100), SortOption.POPULARITY, "")
    assert qs == ""


def test_encoding_is_canonical():
    a = encode(FilterOptions().with_platform(["XenForo", "WordPress"]), "newest", "")
    b = encode(FilterOptions().with_platform(["WordPress", "XenForo"]), "newest", "")
    assert a == b
    assert parse_qsl(a) == [("platform", "WordPress"), ("platform", "XenForo"), ("sort", "newest")]


def test_price_format():
    qs = encode(FilterOptions().with_price_range(5, 20.5), "popularity", "")
    assert dict(parse_qsl(qs)) == {"price": "5-20.5"}


def test_decode_ignores_garbage():
    q = decode("?price=abc&sort=cheapest&page=-4&colour=red&platform=WordPress")
    assert q.filters == FilterOptions().with_platform(["WordPress"]).normalize()
    assert q.sort is SortOption.POPULARITY
    assert q.page == 1


def test_decode_inverted_price_is_unset():
    assert decode("price=50-10").filters.price_range is None


def test_decode_overflowing_price_is_unset():
    q = decode("price=0-" + "9" * 400 + "&platform=XenForo")
    assert q.filters.price_range is None
    assert q.filters.platform == frozenset({"XenForo"})


def test_comma_values_cannot_be_encoded():
    with pytest.raises(ValidationFailure):
        FilterOptions().with_tags(["Forms, Surveys"])
    assert decode(encode(FilterOptions().with_tags(["Forms", "Surveys"]))).filters.tags == frozenset(
        {"Forms", "Surveys"})


def test_decode_accepts_comma_joined_values():
    q = decode("tags=SEO,Forms&category=Plugins")
    assert q.filters.tags == frozenset({"SEO", "Forms"})
    assert q.filters.category == frozenset({"Plugins"})


def test_decode_empty():
    assert decode("") == CatalogQuery()
    assert decode(None) == CatalogQuery()


def test_decode_pairs():
    q = decode([("platform", "XenForo"), ("search", "  shield "), ("page", "2")])
    assert q.search == "shield"
    assert q.page == 2
