"""Built-in categories and keyword dictionary."""

import logging

from smsledger.models import Category
from smsledger.store import CategorizationStore

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: tuple[Category, ...] = (
    Category(1, "Food & Dining", "restaurant", "#FF9800", True),
    Category(2, "Shopping", "shopping_cart", "#2196F3", True),
    Category(3, "Transportation", "directions_car", "#4CAF50", True),
    Category(4, "Bills & Utilities", "receipt", "#F44336", True),
    Category(5, "Entertainment", "movie", "#9C27B0", True),
    Category(6, "Healthcare", "local_hospital", "#E91E63", True),
    Category(7, "Investment", "trending_up", "#009688", True),
    Category(8, "Income", "attach_money", "#8BC34A", True),
    Category(9, "Transfer", "swap_horiz", "#607D8B", True),
    Category(10, "Uncategorized", "help_outline", "#9E9E9E", True),
)

_KEYWORDS_BY_CATEGORY: dict[int, tuple[str, ...]] = {
    1: (
        "restaurant", "cafe", "coffee", "pizza", "burger", "food", "dining", "kitchen",
        "bakery", "swiggy", "zomato", "dominos", "mcdonalds", "kfc", "subway",
    ),
    2: (
        "amazon", "flipkart", "myntra", "shopping", "mall", "store", "market", "retail",
        "supermarket", "grocery", "walmart", "target", "costco",
    ),
    3: (
        "uber", "ola", "taxi", "bus", "metro", "train", "flight", "airline", "fuel",
        "petrol", "gas", "parking", "toll", "transport",
    ),
    4: (
        "electricity", "water", "internet", "phone", "mobile", "broadband", "cable",
        "insurance", "rent", "mortgage", "loan", "emi", "bill", "utility",
    ),
    5: (
        "movie", "cinema", "theater", "netflix", "spotify", "youtube", "gaming", "game",
        "entertainment", "music", "concert", "event",
    ),
    6: (
        "hospital", "doctor", "medical", "pharmacy", "medicine", "health", "clinic",
        "dental", "lab",
    ),
    7: (
        "mutual", "fund", "stock", "share", "investment", "trading", "sip", "zerodha",
        "groww",
    ),
    8: ("salary", "income", "bonus", "refund", "cashback", "reward", "interest", "dividend"),
    9: ("transfer", "upi", "paytm", "gpay", "phonepe", "neft", "rtgs", "imps"),
}

DEFAULT_KEYWORD_MAPPINGS: dict[str, int] = {}
for _category_id, _keywords in _KEYWORDS_BY_CATEGORY.items():
    for _keyword in _keywords:
        # First mapping wins for keywords listed under two categories
        DEFAULT_KEYWORD_MAPPINGS.setdefault(_keyword, _category_id)


def seed_defaults(store: CategorizationStore) -> None:
    """Insert default categories and keywords that are not already present.

    Existing categories and custom keyword mappings are left untouched, so
    seeding is safe on every start.

    Args:
        store: Store to populate
    """
    known_ids = {category.id for category in store.list_categories()}
    added = 0
    for category in DEFAULT_CATEGORIES:
        if category.id not in known_ids and store.get_category_by_name(category.name) is None:
            store.add_category(category)
            added += 1

    known_keywords = {mapping.keyword for mapping in store.list_keywords()}
    for keyword, category_id in DEFAULT_KEYWORD_MAPPINGS.items():
        if keyword not in known_keywords:
            store.add_keyword(keyword, category_id, is_default=True)

    logger.debug("Seeded %d default categories", added)


__all__ = ["DEFAULT_CATEGORIES", "DEFAULT_KEYWORD_MAPPINGS", "seed_defaults"]
