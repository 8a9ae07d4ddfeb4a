import pytest

from errors import ValidationFailure
from filters import PRICE_CEILING, FilterOptions, SortOption


def test_empty_facets_normalize_to_unset():
    f = FilterOptions().with_platform([]).with_category(["  "]).with_tags(set())
    assert f.normalize() == FilterOptions()
    assert f.is_empty


def test_full_price_slider_is_unset():
    f = FilterOptions().with_price_range(0, PRICE_CEILING)
    assert f.normalize().price_range is None
    assert FilterOptions().with_price_range(0, 50).normalize().price_range == (0.0, 50.0)


def test_custom_ceiling():
    f = FilterOptions().with_price_range(0, 500)
    assert f.normalize(ceiling=500).price_range is None
    assert f.normalize().price_range == (0.0, 500.0)


def test_normalize_is_idempotent():
    samples = [
        FilterOptions(),
        FilterOptions().with_platform(["WordPress", " XenForo "]),
        FilterOptions().with_tags(["SEO", ""]).with_price_range(5, 20),
        FilterOptions().with_category([]).with_price_range(0, PRICE_CEILING),
    ]
    for f in samples:
        assert f.normalize().normalize() == f.normalize()


def test_equal_states_compare_equal_regardless_of_order():
    a = FilterOptions().with_platform(["XenForo", "WordPress"]).with_tags([])
    b = FilterOptions().with_platform(["WordPress", "XenForo"])
    assert a.normalize() == b.normalize()
    assert hash(a.normalize()) == hash(b.normalize())


def test_with_methods_return_new_values():
    base = FilterOptions()
    changed = base.with_platform(["WordPress"])
    assert base.platform is None
    assert changed.platform == frozenset({"WordPress"})


@pytest.mark.parametrize("low,high", [(50, 10), (-1, 10), (0, -5), (float("inf"), 10)])
def test_invalid_price_range_is_rejected(low, high):
    with pytest.raises(ValidationFailure):
        FilterOptions().with_price_range(low, high)


def test_half_open_price_range_is_rejected():
    with pytest.raises(ValidationFailure):
        FilterOptions().with_price_range(10, None)
    assert FilterOptions().with_price_range(None, None).price_range is None


def test_matches_unspecified_facet_imposes_no_constraint():
    f = FilterOptions().with_platform(["WordPress"]).with_category([])
    assert f.matches({"platform": "WordPress", "category": "Themes", "price": 5})
    assert f.matches({"platform": "WordPress", "category": "Plugins", "price": 500})
    assert not f.matches({"platform": "XenForo", "category": "Plugins", "price": 5})


def test_matches_and_across_facets_or_within():
    f = (FilterOptions().with_platform(["WordPress", "XenForo"])
         .with_tags(["SEO", "Forms"]).with_price_range(0, 30))
    assert f.matches({"platform": "XenForo", "tags": ["Forms", "Admin"], "price": 30})
    assert not f.matches({"platform": "XenForo", "tags": ["Admin"], "price": 10})
    assert not f.matches({"platform": "WordPress", "tags": ["SEO"], "price": 31})


def test_sort_parse_falls_back():
    assert SortOption.parse("price-asc", SortOption.POPULARITY) is SortOption.PRICE_ASC
    assert SortOption.parse("cheapest", SortOption.NEWEST) is SortOption.NEWEST
    assert SortOption.parse(None, SortOption.POPULARITY) is SortOption.POPULARITY


def test_facet_values_reject_commas():
    with pytest.raises(ValidationFailure):
        FilterOptions().with_category(["Themes,Plugins"])
    with pytest.raises(ValueError):
        FilterOptions(platform=frozenset({"Word,Press"}))
