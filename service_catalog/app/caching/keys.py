"""
Cache key builders and TTL tiers for Rezdy resources.

Keys are colon separated, resource type first, so a prefix such as
``category:`` or ``category:3:`` addresses a whole family for invalidation.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

DEFAULT_TTL = 300

# Seconds, by key prefix; tuned to how quickly each resource changes upstream.
TTL_BY_PREFIX: Dict[str, int] = {
    "products": 1800,
    "product": 1800,
    "availability": 60,
    "bookings": 180,
    "sessions": 900,
    "search": 600,
    "categories": 3600,
    "category": 1800,
    "featured": 1800,
}

DEFAULT_PAGE_LIMIT = 100


def ttl_for_key(key: str, default: int = DEFAULT_TTL) -> int:
    """Return the TTL tier for ``key``, matching on its first segment."""
    resource = key.split(":", 1)[0]
    return TTL_BY_PREFIX.get(resource, default)


def products_key(limit: int = DEFAULT_PAGE_LIMIT, offset: int = 0, featured: bool = False) -> str:
    if featured:
        return "products:featured"
    return f"products:{limit}:{offset}"


def product_key(product_code: str) -> str:
    return f"product:{product_code}"


def categories_key(visible_only: bool = False) -> str:
    return "categories:visible" if visible_only else "categories:all"


def category_products_key(category_id: int, limit: int = DEFAULT_PAGE_LIMIT, offset: int = 0) -> str:
    return f"category:{category_id}:products:{limit}:{offset}"


def availability_key(product_code: str, start: str, end: str, participants: Optional[str] = None) -> str:
    key = f"availability:{product_code}:{start}:{end}"
    if participants:
        key = f"{key}:{participants}"
    return key


@dataclass(frozen=True)
class ParsedKey:
    """Structured view of a cache key, used to rebuild the upstream request."""

    resource: str
    params: Dict[str, str] = field(default_factory=dict)


def parse_key(key: str) -> Optional[ParsedKey]:
    """Parse a key produced by the builders above; ``None`` if unrecognised."""
    parts = key.split(":")
    resource = parts[0]

    try:
        if resource == "products":
            if parts[1:] == ["featured"]:
                return ParsedKey("products", {"featured": "true"})
            limit, offset = parts[1:]
            return ParsedKey("products", {"limit": str(int(limit)), "offset": str(int(offset))})

        if resource == "product" and len(parts) == 2 and parts[1]:
            return ParsedKey("product", {"product_code": parts[1]})

        if resource == "categories" and len(parts) == 2 and parts[1] in ("all", "visible"):
            return ParsedKey("categories", {"visible": str(parts[1] == "visible").lower()})

        if resource == "category" and len(parts) == 5 and parts[2] == "products":
            return ParsedKey(
                "category_products",
                {
                    "category_id": str(int(parts[1])),
                    "limit": str(int(parts[3])),
                    "offset": str(int(parts[4])),
                },
            )
    except ValueError:
        return None

    return None
