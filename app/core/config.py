import os
from typing import Optional

# Database connection URL (async)
# Example: "postgresql+asyncpg://user@localhost/mapdrop"
SQLALCHEMY_DATABASE_URL: str = os.environ.get("DATABASE_URL", "postgresql+asyncpg://localhost/mapdrop")

# Allow requests from this origin
ALLOW_ORIGIN: Optional[str] = os.environ.get("ALLOW_ORIGIN")

# If true, enable docs and openapi.json endpoints
ENABLE_DOCS: bool = os.environ.get("ENABLE_DOCS") == "1"

# How long an aggregated map stays fresh in the result cache
MAP_CACHE_TTL_SECONDS: float = float(os.environ.get("MAP_CACHE_TTL_SECONDS", "300"))

# Upper bound on cached map signatures kept in memory
MAP_CACHE_MAX_ENTRIES: int = int(os.environ.get("MAP_CACHE_MAX_ENTRIES", "1024"))

# Quiet period after a save/unsave event before live maps re-fetch
MAP_REALTIME_DEBOUNCE_SECONDS: float = float(os.environ.get("MAP_REALTIME_DEBOUNCE_SECONDS", "1.0"))

# Popular maps are ranked and cut to this many pins before category filtering
MAP_POPULAR_LIMIT: int = int(os.environ.get("MAP_POPULAR_LIMIT", "300"))
