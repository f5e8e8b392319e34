import pytest

from src.models.schemas import ItemCategory
from src.utils.marketplace import MARKETPLACE_TABLE, build_marketplace_links, search_terms


def names(links):
    return [link.marketplace_name for link in links]


@pytest.mark.parametrize("category", [ItemCategory.ANTIQUE, ItemCategory.VINTAGE, "antique", "vintage"])
def test_antique_and_vintage_use_antiques_marketplaces(category):
    links = build_marketplace_links("Victorian walnut chair", category)
    assert names(links) == ["eBay", "Chairish", "1stDibs", "Ruby Lane", "Etsy"]


def test_modern_branded_marketplaces():
    links = build_marketplace_links("OneStep 2 Camera", ItemCategory.MODERN_BRANDED, brand="Polaroid")
    assert names(links) == ["eBay", "Amazon", "Google Shopping", "Walmart"]
    assert links[1].url == "https://www.amazon.com/s?k=Polaroid+OneStep+2+Camera"


def test_modern_generic_marketplaces():
    assert names(build_marketplace_links("Desk lamp", "modern_generic")) == ["Amazon", "eBay", "Google Shopping"]


def test_unknown_category_falls_back_to_antiques():
    assert names(build_marketplace_links("Thing", "mystery")) == names(build_marketplace_links("Thing", "antique"))


def test_every_category_has_marketplaces():
    for category in ItemCategory:
        assert MARKETPLACE_TABLE[category.value]


def test_search_terms_skip_duplicate_brand():
    assert search_terms("Omega Seamaster", "omega") == "Omega Seamaster"
    assert search_terms("Seamaster  Automatic", "Omega") == "Omega Seamaster Automatic"
    assert search_terms("Seamaster", None) == "Seamaster"
    assert search_terms("Seamaster", "  ") == "Seamaster"


def test_terms_are_url_encoded():
    links = build_marketplace_links("Tiffany & Co. lamp", "antique")
    assert links[0].url.startswith("https://www.ebay.com/sch/i.html?_nkw=Tiffany+%26+Co.+lamp")
    assert "LH_Sold=1" in links[0].url
