import asyncio
import uuid

import sqlalchemy as sa

from app.core.database.helpers import SessionFactory, read
from app.core.database.models import PostRow, ProfileRow
from app.core.types import UserId
from app.features.map.entities import FilterMode, LatestActivity, MapPin, UserAction, UserAttribution
from app.features.map.merge import is_internal_location_id
from app.utils import as_utc

SNIPPET_LENGTH = 40
MAX_ACTIVITY_LOCATIONS = 300
ATTRIBUTED_MODES: set[FilterMode] = {"following", "shared"}


def make_snippet(caption: str | None) -> str | None:
    if not caption:
        return None
    caption = caption.strip()
    if len(caption) > SNIPPET_LENGTH:
        return caption[:SNIPPET_LENGTH] + "..."
    return caption or None


def to_latest_activity(post: PostRow) -> LatestActivity:
    return LatestActivity(
        type="review" if (post.rating or 0) > 0 else "photo",
        snippet=make_snippet(post.caption),
        created_at=as_utc(post.created_at),
    )


def derive_action(owner_user_id: UserId | None, post: PostRow | None) -> UserAction:
    """What the pin's owner did there: reviewed it (faved), posted a photo, or just saved it."""
    if post is None or owner_user_id is None or post.user_id != owner_user_id:
        return "saved"
    return "faved" if (post.rating or 0) > 0 else "posted"


class PinEnricher:
    """Attaches the latest post and, on the following/shared maps, who saved or shared each pin."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def enrich(self, pins: list[MapPin], filter_mode: FilterMode) -> None:
        attributed = filter_mode in ATTRIBUTED_MODES
        location_ids = [uuid.UUID(pin.id) for pin in pins if is_internal_location_id(pin.id)]
        owner_ids = {pin.owner_user_id for pin in pins if pin.owner_user_id} if attributed else set()
        latest_posts, profiles = await asyncio.gather(
            self.get_latest_posts(location_ids[:MAX_ACTIVITY_LOCATIONS]),
            self.get_profiles(owner_ids),
        )
        for pin in pins:
            post = latest_posts.get(pin.id)
            if post is not None:
                pin.latest_activity = to_latest_activity(post)
            if not attributed or pin.owner_user_id not in profiles:
                continue
            profile = profiles[pin.owner_user_id]
            attribution = UserAttribution(
                id=profile.id,
                username=profile.username,
                avatar_url=profile.avatar_url,
                action=derive_action(pin.owner_user_id, post),
            )
            if filter_mode == "shared":
                pin.shared_by_user = attribution
            else:
                pin.saved_by_user = attribution

    async def get_latest_posts(self, location_ids: list[uuid.UUID]) -> dict[str, PostRow]:
        """Newest post per location, keyed by the location id string."""
        if not location_ids:
            return {}
        query = (
            sa.select(PostRow)
            .where(PostRow.location_id.in_(location_ids))
            .order_by(PostRow.created_at.desc(), PostRow.id.desc())
        )
        latest: dict[str, PostRow] = {}
        for (post,) in await read(self.session_factory, "latest posts", query):
            latest.setdefault(str(post.location_id), post)
        return latest

    async def get_profiles(self, user_ids: set[UserId]) -> dict[UserId, ProfileRow]:
        if not user_ids:
            return {}
        query = sa.select(ProfileRow).where(ProfileRow.id.in_(user_ids))
        return {profile.id: profile for (profile,) in await read(self.session_factory, "profiles", query)}
