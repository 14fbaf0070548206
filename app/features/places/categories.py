"""Category vocabulary shared by map filters, counters and pin colors."""

BASE_CATEGORIES = (
    "restaurant",
    "cafe",
    "bar",
    "hotel",
    "museum",
    "entertainment",
    "bakery",
    "park",
    "historical",
    "nightclub",
)

# Tie-break when two saved places sit on the same coordinate
CATEGORY_PRIORITY = {"bar": 3, "restaurant": 2, "cafe": 1}

# (base category, exact synonyms, substrings), checked in order, first match wins
_RULES: list[tuple[str, set[str], tuple[str, ...]]] = [
    ("nightclub", {"nightclub", "night_club", "discotheque", "disco"}, ("nightclub",)),
    ("park", {"park", "parks", "garden", "playground", "nature_reserve", "national_park"}, ("park",)),
    (
        "historical",
        {
            "historical",
            "landmark",
            "monument",
            "memorial",
            "castle",
            "ruins",
            "archaeological_site",
            "tourist_attraction",
            "attraction",
        },
        ("historical", "landmark", "monument"),
    ),
    ("restaurant", {"restaurant", "restaurants", "food", "dining"}, ("restaurant",)),
    ("cafe", {"cafe", "café", "cafè", "coffee", "coffee shop", "coffee_shop"}, ("cafe", "caff", "coffee")),
    ("bar", {"bar", "bars", "pub", "bar & pub"}, ("bar", "pub")),
    ("hotel", {"hotel", "accommodation", "lodging"}, ("hotel", "lodg", "accommod")),
    ("museum", {"museum", "gallery", "cultural"}, ("museum", "gallery")),
    ("entertainment", {"entertainment", "cinema", "theatre", "theater", "arcade", "bowling"}, ("cinema", "theat")),
    ("bakery", {"bakery", "patisserie", "pastry"}, ("bakery", "pasticc", "panett")),
]


def normalize_category(category: str | None) -> str:
    """
    Map a raw category label onto the base vocabulary.

    Labels that don't match any base category come back trimmed and lowercased, None/blank comes back as "".
    """
    c = (category or "").strip().lower()
    if not c:
        return ""
    for base, synonyms, fragments in _RULES:
        if c in synonyms or any(fragment in c for fragment in fragments):
            return base
    return c


def category_priority(category: str | None) -> int:
    return CATEGORY_PRIORITY.get(normalize_category(category), 0)


def normalize_categories(categories: list[str] | None) -> set[str]:
    return {normalized for normalized in map(normalize_category, categories or []) if normalized}
