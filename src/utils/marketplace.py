"""
Marketplace search-link builder.

Chooses marketplaces by item category (antiques marketplaces for antique
and vintage items, general retail for modern ones) and builds search URLs.
No network calls are made.
"""

from typing import Optional
from urllib.parse import quote_plus

from src.models.schemas import ItemCategory, MarketplaceLink


# Search URL templates; {q} is the URL-encoded search terms
MARKETPLACE_URLS: dict[str, str] = {
    "eBay": "https://www.ebay.com/sch/i.html?_nkw={q}&_sop=12&LH_Complete=1&LH_Sold=1",
    "Chairish": "https://www.chairish.com/search?q={q}",
    "1stDibs": "https://www.1stdibs.com/search/?q={q}",
    "Ruby Lane": "https://www.rubylane.com/search?q={q}",
    "Etsy": "https://www.etsy.com/search?q={q}",
    "Amazon": "https://www.amazon.com/s?k={q}",
    "Google Shopping": "https://www.google.com/search?tbm=shop&q={q}",
    "Walmart": "https://www.walmart.com/search?q={q}",
}

ANTIQUES_MARKETPLACES: tuple[str, ...] = ("eBay", "Chairish", "1stDibs", "Ruby Lane", "Etsy")

MARKETPLACE_TABLE: dict[str, tuple[str, ...]] = {
    ItemCategory.ANTIQUE.value: ANTIQUES_MARKETPLACES,
    ItemCategory.VINTAGE.value: ANTIQUES_MARKETPLACES,
    ItemCategory.MODERN_BRANDED.value: ("eBay", "Amazon", "Google Shopping", "Walmart"),
    ItemCategory.MODERN_GENERIC.value: ("Amazon", "eBay", "Google Shopping"),
}


def search_terms(name: str, brand: Optional[str] = None) -> str:
    """Brand plus name; the brand is skipped when the name already contains it."""
    name = " ".join(name.split())
    if brand and brand.strip() and brand.strip().lower() not in name.lower():
        return f"{brand.strip()} {name}".strip()
    return name


def build_marketplace_links(
    name: str,
    category: ItemCategory | str,
    brand: Optional[str] = None,
) -> list[MarketplaceLink]:
    """
    Search links for an identified item.
    
    Args:
        name: Identified item name
        category: Item age/market category; unknown categories get the
            antiques marketplaces
        brand: Optional brand prepended to the search terms
    
    Returns:
        One MarketplaceLink per marketplace, in display order
    """
    category_key = category.value if isinstance(category, ItemCategory) else str(category)
    marketplaces = MARKETPLACE_TABLE.get(category_key, ANTIQUES_MARKETPLACES)
    encoded = quote_plus(search_terms(name, brand))
    
    return [
        MarketplaceLink(
            marketplace_name=marketplace,
            url=MARKETPLACE_URLS[marketplace].format(q=encoded),
        )
        for marketplace in marketplaces
    ]


__all__ = [
    "MARKETPLACE_URLS",
    "MARKETPLACE_TABLE",
    "search_terms",
    "build_marketplace_links",
]
