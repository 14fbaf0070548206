"""
City normalization.

Locations come in with whatever the places provider or the user typed as a city: postal districts ("Dublin 2"),
counties ("County Dublin"), neighbourhoods ("Rathmines"), or nothing at all with the city buried in the address.
Everything that compares or displays a city goes through resolve_city() first.
"""
import re

UNKNOWN_CITY_LABELS = {"unknown", "unknown city"}

# Neighbourhoods and suburbs that should be shown and matched as their parent city
PARENT_CITIES: dict[str, str] = {
    neighbourhood.lower(): "Dublin"
    for neighbourhood in (
        "Rathmines", "Ranelagh", "Ballsbridge", "Donnybrook", "Sandymount", "Sandymount Village", "Ringsend",
        "Irishtown", "Ballybough", "Drumcondra", "Glasnevin", "Cabra", "Phibsborough", "Stoneybatter",
        "Smithfield", "Arbour Hill", "Inchicore", "Kilmainham", "Islandbridge", "Crumlin", "Kimmage", "Terenure",
        "Rathgar", "Milltown", "Clonskeagh", "Dundrum", "Stillorgan", "Blackrock", "Dun Laoghaire", "Dalkey",
        "Killiney", "Shankill", "Bray", "Greystones", "Howth", "Malahide", "Swords", "Portmarnock", "Clontarf",
        "Raheny", "Coolock", "Artane", "Whitehall", "Santry", "Ballymun", "Finglas", "Blanchardstown",
        "Castleknock", "Lucan", "Clondalkin", "Tallaght", "Rathfarnham", "Templeogue", "Firhouse", "Ballinteer",
        "Churchtown", "Windy Arbour", "Leopardstown", "Sandyford", "Stepaside", "Foxrock", "Cabinteely",
        "Loughlinstown", "Cherrywood", "Carrickmines", "Cornelscourt", "Donabate", "Rush", "Skerries",
        "Balbriggan", "Baldoyle", "Saint James", "St James", "The Coombe", "Liberties", "Thomas Street",
        "Christchurch", "Temple Bar", "Ballyboden", "Knocklyon", "Brittas",
    )
}

_POSTAL_SUFFIX = re.compile(r"\s+\d+$")
_COUNTY_PREFIX = re.compile(r"^county\s+", re.IGNORECASE)
_STREET_LIKE = re.compile(r"(street|st\.|avenue|ave\.|road|rd\.|square|lane|ln\.|drive|dr\.|court|ct\.)", re.IGNORECASE)
_POSTCODE_LIKE = re.compile(r"^[A-Z]\d{2}")


def normalize_city(city: str | None) -> str | None:
    """Clean up a raw city label. Returns None when nothing city-like is left."""
    if not city or not city.strip():
        return None
    normalized = city.strip()
    if normalized.lower() in UNKNOWN_CITY_LABELS:
        return None
    normalized = _POSTAL_SUFFIX.sub("", normalized)
    normalized = _COUNTY_PREFIX.sub("", normalized).strip()
    if normalized.isdigit() or len(normalized) <= 2:
        return None
    return PARENT_CITIES.get(normalized.lower(), normalized)


def extract_city_from_address(address: str | None) -> str | None:
    """Pick the right-most address segment that looks like a city."""
    if not address or not address.strip():
        return None
    parts = [part.strip() for part in address.split(",") if part.strip()]
    for part in reversed(parts):
        if len(part) <= 2 or part.isdigit():
            continue
        if _STREET_LIKE.search(part) or _POSTCODE_LIKE.match(part):
            continue
        normalized = normalize_city(part)
        if normalized is not None:
            return normalized
    return None


def extract_city_from_name(name: str | None) -> str | None:
    if not name or not name.strip():
        return None
    lowered = name.lower()
    for neighbourhood, parent in PARENT_CITIES.items():
        if neighbourhood in lowered:
            return parent
    return None


def resolve_city(city: str | None, address: str | None = None, name: str | None = None) -> str | None:
    """The display city for a place: its own city if usable, else whatever the address or name gives away."""
    return normalize_city(city) or extract_city_from_address(address) or extract_city_from_name(name)


def cities_match(a: str | None, b: str | None) -> bool:
    """Symmetric containment on resolved cities, so "Dublin" matches "Dublin 2" and "South Dublin"."""
    resolved_a, resolved_b = normalize_city(a), normalize_city(b)
    if not resolved_a or not resolved_b:
        return False
    resolved_a, resolved_b = resolved_a.lower(), resolved_b.lower()
    return resolved_a in resolved_b or resolved_b in resolved_a


def cities_equal(a: str | None, b: str | None) -> bool:
    """Exact (case-insensitive) comparison on resolved cities, used by the popular map."""
    resolved_a, resolved_b = normalize_city(a), normalize_city(b)
    if not resolved_a or not resolved_b:
        return False
    return resolved_a.lower() == resolved_b.lower()
