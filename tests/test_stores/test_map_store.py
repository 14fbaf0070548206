import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import text

from app.core.database.models import (
    FollowRow,
    LocationRow,
    PostRow,
    ProfileRow,
    SavedPlaceRow,
    UserLocationShareRow,
    UserSavedLocationRow,
)
from app.features.map.entities import MapBounds, MapParams
from app.features.map.map_store import MapFetchError, MapStore

pytestmark = pytest.mark.asyncio
NOW = datetime.now(timezone.utc)
USER_A_ID = uuid.uuid4()
USER_B_ID = uuid.uuid4()
USER_C_ID = uuid.uuid4()
LOCATION_A_ID = uuid.uuid4()
LOCATION_B_ID = uuid.uuid4()


@pytest_asyncio.fixture(autouse=True, scope="function")
async def setup_fixture(session):
    session.add(ProfileRow(id=USER_A_ID, username="a"))
    session.add(ProfileRow(id=USER_B_ID, username="b", avatar_url="https://example.com/b.png"))
    session.add(ProfileRow(id=USER_C_ID, username="c"))
    await session.commit()


def location(location_id=None, lat=53.3438, lng=-6.2546, **kwargs) -> LocationRow:
    fields = dict(name="Place", category="restaurant", city="Dublin", created_at=NOW - timedelta(days=30))
    fields.update(kwargs)
    return LocationRow(id=location_id or uuid.uuid4(), latitude=lat, longitude=lng, **fields)


def saved_place(user_id, place_id, lat=53.3438, lng=-6.2546, **kwargs) -> SavedPlaceRow:
    fields = dict(place_name="Saved place", place_category="cafe", city="Dublin")
    fields.update(kwargs)
    return SavedPlaceRow(user_id=user_id, place_id=place_id, coordinates={"lat": lat, "lng": lng}, **fields)


async def add_all(session, *rows):
    session.add_all(rows)
    await session.commit()


# region Shared


async def test_shared_map_keeps_newest_share_per_user(session, map_store: MapStore):
    await add_all(
        session,
        UserLocationShareRow(
            user_id=USER_B_ID,
            location_name="Old spot",
            latitude=53.30,
            longitude=-6.20,
            expires_at=NOW + timedelta(hours=2),
            created_at=NOW - timedelta(hours=1),
        ),
        UserLocationShareRow(
            user_id=USER_B_ID,
            location_name="New spot",
            latitude=53.35,
            longitude=-6.25,
            expires_at=NOW + timedelta(hours=2),
            created_at=NOW - timedelta(minutes=5),
        ),
    )
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="shared"))
    assert len(pins) == 1
    assert pins[0].name == "New spot"
    assert (pins[0].coordinates.lat, pins[0].coordinates.lng) == (53.35, -6.25)
    assert pins[0].shared_by_user is not None
    assert pins[0].shared_by_user.id == USER_B_ID
    assert pins[0].shared_by_user.username == "b"
    assert pins[0].is_new


async def test_shared_map_skips_expired_shares(session, map_store: MapStore):
    await add_all(
        session,
        UserLocationShareRow(
            user_id=USER_B_ID,
            location_name="Gone",
            latitude=53.30,
            longitude=-6.20,
            expires_at=NOW - timedelta(minutes=1),
            created_at=NOW - timedelta(hours=1),
        ),
    )
    assert await map_store.get_map(USER_A_ID, MapParams(filter_mode="shared")) == []


async def test_shared_map_uses_linked_location(session, map_store: MapStore):
    await add_all(session, location(LOCATION_A_ID, name="Kehoe's", category="Pub"))
    await add_all(
        session,
        UserLocationShareRow(
            user_id=USER_B_ID,
            location_id=LOCATION_A_ID,
            latitude=53.3400,
            longitude=-6.2600,
            expires_at=NOW + timedelta(hours=1),
            created_at=NOW - timedelta(minutes=1),
        ),
    )
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="shared"))
    assert len(pins) == 1
    assert pins[0].id == str(LOCATION_A_ID)
    assert pins[0].name == "Kehoe's"
    assert pins[0].category == "bar"
    # Coordinates come from the share, not the location
    assert pins[0].coordinates.lat == 53.34


async def test_shared_map_attribution_action(session, map_store: MapStore):
    await add_all(session, location(LOCATION_A_ID, name="Kehoe's", category="Pub"))
    await add_all(
        session,
        UserLocationShareRow(
            user_id=USER_B_ID,
            location_id=LOCATION_A_ID,
            latitude=53.3400,
            longitude=-6.2600,
            expires_at=NOW + timedelta(hours=1),
            created_at=NOW - timedelta(minutes=1),
        ),
        PostRow(user_id=USER_B_ID, location_id=LOCATION_A_ID, caption="Great", rating=4, created_at=NOW),
    )
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="shared"))
    assert len(pins) == 1
    assert pins[0].saved_by_user is None
    assert pins[0].shared_by_user is not None
    assert pins[0].shared_by_user.id == USER_B_ID
    assert pins[0].shared_by_user.avatar_url == "https://example.com/b.png"
    assert pins[0].shared_by_user.action == "faved"


async def test_shared_map_failed_share_read_is_empty(engine, session, map_store: MapStore):
    async with engine.begin() as conn:
        await conn.execute(text("DROP TABLE user_location_shares"))
    assert await map_store.get_map(USER_A_ID, MapParams(filter_mode="shared")) == []


# endregion

# region Following


async def test_following_map_with_no_follows_stops_after_follows_lookup(map_store: MapStore, statements):
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="following", selected_followed_user_ids=[]))
    assert pins == []
    assert len(statements) == 1
    assert "follows" in statements[0]


async def test_following_map(session, map_store: MapStore):
    authored = location(LOCATION_A_ID, name="Authored", created_by=USER_B_ID, created_at=NOW - timedelta(days=1))
    saved = location(LOCATION_B_ID, name="Saved by B", lat=53.35, lng=-6.26, created_by=USER_C_ID)
    await add_all(session, authored, saved, FollowRow(follower_id=USER_A_ID, following_id=USER_B_ID))
    await add_all(
        session,
        UserSavedLocationRow(user_id=USER_B_ID, location_id=LOCATION_B_ID, created_at=NOW - timedelta(days=20)),
        saved_place(USER_B_ID, "ChIJexternal", lat=53.36, lng=-6.27),
        # Not followed
        saved_place(USER_C_ID, "ChIJother", lat=53.37, lng=-6.28),
    )
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="following"))
    by_id = {pin.id: pin for pin in pins}
    assert set(by_id) == {str(LOCATION_A_ID), str(LOCATION_B_ID), "ChIJexternal"}
    assert all(pin.is_following for pin in pins)
    assert by_id[str(LOCATION_A_ID)].is_new
    assert not by_id[str(LOCATION_B_ID)].is_new
    assert by_id[str(LOCATION_B_ID)].saved_by_user is not None
    assert by_id[str(LOCATION_B_ID)].saved_by_user.id == USER_B_ID
    assert by_id[str(LOCATION_B_ID)].saved_by_user.action == "saved"


async def test_following_map_selected_users_override_follows(session, map_store: MapStore):
    await add_all(
        session,
        location(LOCATION_A_ID, created_by=USER_B_ID),
        location(LOCATION_B_ID, lat=53.35, lng=-6.26, created_by=USER_C_ID),
        FollowRow(follower_id=USER_A_ID, following_id=USER_B_ID),
    )
    params = MapParams(filter_mode="following", selected_followed_user_ids=[USER_C_ID])
    pins = await map_store.get_map(USER_A_ID, params)
    assert [pin.id for pin in pins] == [str(LOCATION_B_ID)]


async def test_following_map_saved_place_claimed_by_location(session, map_store: MapStore):
    await add_all(
        session,
        location(LOCATION_A_ID, google_place_id="ChIJX", created_by=USER_B_ID, opening_hours_data={"open_now": True}),
        FollowRow(follower_id=USER_A_ID, following_id=USER_B_ID),
    )
    await add_all(session, saved_place(USER_B_ID, "ChIJX", lat=53.40, lng=-6.30))
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="following"))
    assert len(pins) == 1
    assert pins[0].id == str(LOCATION_A_ID)
    assert pins[0].opening_hours_data == {"open_now": True}


async def test_following_map_latest_activity(session, map_store: MapStore):
    await add_all(
        session,
        location(LOCATION_A_ID, created_by=USER_B_ID),
        FollowRow(follower_id=USER_A_ID, following_id=USER_B_ID),
    )
    await add_all(
        session,
        PostRow(user_id=USER_C_ID, location_id=LOCATION_A_ID, caption="old", created_at=NOW - timedelta(days=3)),
        PostRow(
            user_id=USER_B_ID,
            location_id=LOCATION_A_ID,
            caption="  The best pint of stout in the whole city, no question about it  ",
            rating=5,
            created_at=NOW - timedelta(days=1),
        ),
    )
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="following"))
    assert len(pins) == 1
    activity = pins[0].latest_activity
    assert activity is not None
    assert activity.type == "review"
    assert activity.snippet == "The best pint of stout in the whole city..."
    assert pins[0].saved_by_user is not None
    assert pins[0].saved_by_user.action == "faved"


async def test_following_map_photo_post_by_owner(session, map_store: MapStore):
    await add_all(
        session,
        location(LOCATION_A_ID, created_by=USER_B_ID),
        FollowRow(follower_id=USER_A_ID, following_id=USER_B_ID),
    )
    await add_all(session, PostRow(user_id=USER_B_ID, location_id=LOCATION_A_ID, caption=None, created_at=NOW))
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="following"))
    assert len(pins) == 1
    activity = pins[0].latest_activity
    assert activity is not None
    assert activity.type == "photo"
    assert activity.snippet is None
    assert pins[0].saved_by_user is not None
    assert pins[0].saved_by_user.action == "posted"


async def test_following_map_review_by_someone_else(session, map_store: MapStore):
    await add_all(
        session,
        location(LOCATION_A_ID, created_by=USER_B_ID),
        FollowRow(follower_id=USER_A_ID, following_id=USER_B_ID),
    )
    await add_all(session, PostRow(user_id=USER_C_ID, location_id=LOCATION_A_ID, rating=5, created_at=NOW))
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="following"))
    assert len(pins) == 1
    assert pins[0].latest_activity is not None
    assert pins[0].latest_activity.type == "review"
    # The review is not the owner's, so the owner only saved it
    assert pins[0].saved_by_user is not None
    assert pins[0].saved_by_user.id == USER_B_ID
    assert pins[0].saved_by_user.action == "saved"


# endregion

# region Popular


async def test_popular_map_collapses_saved_places_on_same_coordinate(session, map_store: MapStore):
    rows = [saved_place(user_id, "ChIJbar", place_category="bar") for user_id in (USER_A_ID, USER_B_ID)]
    rows += [saved_place(uuid.uuid4(), "ChIJcafe", place_category="cafe") for _ in range(5)]
    await add_all(session, *rows)
    pins = await map_store.get_map(USER_C_ID, MapParams(filter_mode="popular"))
    assert len(pins) == 1
    assert pins[0].id == "ChIJbar"
    assert pins[0].category == "bar"
    assert pins[0].recommendation_score == 7
    assert pins[0].is_recommended


async def test_popular_map_prefers_location_over_saved_place(session, map_store: MapStore):
    await add_all(
        session,
        location(LOCATION_A_ID, google_place_id="ChIJX", opening_hours_data={"weekday_text": ["Mon: 9-5"]}),
    )
    await add_all(session, saved_place(USER_B_ID, "ChIJX", lat=53.40, lng=-6.30))
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="popular"))
    assert len(pins) == 1
    assert pins[0].id == str(LOCATION_A_ID)
    assert pins[0].google_place_id == "ChIJX"
    assert pins[0].opening_hours_data == {"weekday_text": ["Mon: 9-5"]}


async def test_popular_map_ranks_and_cuts(session, session_factory, map_cache, request_coalescer):
    ids = [uuid.uuid4() for _ in range(3)]
    await add_all(session, *[location(location_id, lat=53.30 + i / 100) for i, location_id in enumerate(ids)])
    # ids[0]: 1 save, ids[1]: 2 saves + 1 post, ids[2]: nothing
    await add_all(
        session,
        UserSavedLocationRow(user_id=USER_A_ID, location_id=ids[0]),
        UserSavedLocationRow(user_id=USER_A_ID, location_id=ids[1]),
        UserSavedLocationRow(user_id=USER_B_ID, location_id=ids[1]),
        PostRow(user_id=USER_B_ID, location_id=ids[1], caption="nice"),
    )
    map_store = MapStore(session_factory, map_cache, request_coalescer, popular_limit=2)
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="popular"))
    assert [pin.id for pin in pins] == [str(ids[1]), str(ids[0])]
    assert [pin.recommendation_score for pin in pins] == [2.5, 1]
    assert all(pin.is_saved for pin in pins)


async def test_popular_map_category_filter(session, map_store: MapStore):
    await add_all(
        session,
        location(LOCATION_A_ID, category="Coffee Shop"),
        location(LOCATION_B_ID, category="bar", lat=53.35),
    )
    params = MapParams(filter_mode="popular", selected_categories=["Coffee"])
    pins = await map_store.get_map(USER_A_ID, params)
    assert [pin.id for pin in pins] == [str(LOCATION_A_ID)]
    assert pins[0].category == "cafe"


async def test_popular_map_bounds(session, map_store: MapStore):
    await add_all(
        session,
        location(LOCATION_A_ID, lat=53.34, lng=-6.25),
        location(LOCATION_B_ID, lat=51.89, lng=-8.47),
        saved_place(USER_B_ID, "ChIJcork", lat=51.90, lng=-8.47),
    )
    bounds = MapBounds(north=53.5, south=53.2, east=-6.0, west=-6.5)
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="popular", map_bounds=bounds))
    assert [pin.id for pin in pins] == [str(LOCATION_A_ID)]


async def test_popular_map_drops_invalid_coordinates(session, map_store: MapStore):
    await add_all(
        session,
        location(LOCATION_A_ID, lat=0, lng=0),
        location(LOCATION_B_ID, lat=None, lng=None),
        SavedPlaceRow(user_id=USER_B_ID, place_id="ChIJnowhere", place_name="Nowhere", coordinates=None),
        saved_place(USER_B_ID, "ChIJsomewhere", lat=53.35, lng=-6.26),
    )
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="popular"))
    assert [pin.id for pin in pins] == ["ChIJsomewhere"]


async def test_popular_map_one_pin_per_coordinate(session, map_store: MapStore):
    await add_all(
        session,
        location(LOCATION_A_ID, lat=53.3438001, lng=-6.2546001),
        location(LOCATION_B_ID, lat=53.3438004, lng=-6.2546004),
    )
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="popular"))
    assert len(pins) == 1


async def test_popular_map_survives_failed_posts_read(engine, session, map_store: MapStore):
    await add_all(session, location(LOCATION_A_ID))
    await add_all(session, UserSavedLocationRow(user_id=USER_B_ID, location_id=LOCATION_A_ID))
    async with engine.begin() as conn:
        await conn.execute(text("DROP TABLE posts"))
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="popular"))
    assert [pin.id for pin in pins] == [str(LOCATION_A_ID)]
    assert pins[0].recommendation_score == 1
    assert pins[0].latest_activity is None


# endregion

# region Saved


async def test_saved_map(session, map_store: MapStore):
    await add_all(session, location(LOCATION_A_ID), location(LOCATION_B_ID, lat=53.35))
    await add_all(
        session,
        UserSavedLocationRow(user_id=USER_A_ID, location_id=LOCATION_A_ID, save_tag="date night"),
        UserSavedLocationRow(user_id=USER_A_ID, location_id=LOCATION_B_ID, save_tag="brunch"),
        UserSavedLocationRow(user_id=USER_B_ID, location_id=LOCATION_B_ID, save_tag="date night"),
        saved_place(USER_A_ID, "ChIJdate", lat=53.36, save_tag="date night"),
    )
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="saved"))
    assert {pin.id for pin in pins} == {str(LOCATION_A_ID), str(LOCATION_B_ID), "ChIJdate"}
    assert all(pin.is_saved for pin in pins)

    tagged = await map_store.get_map(USER_A_ID, MapParams(filter_mode="saved", selected_save_tags=["date night"]))
    assert {pin.id for pin in tagged} == {str(LOCATION_A_ID), "ChIJdate"}


async def test_saved_map_ignores_city(session, map_store: MapStore):
    await add_all(session, location(LOCATION_A_ID, city="Cork"))
    await add_all(session, UserSavedLocationRow(user_id=USER_A_ID, location_id=LOCATION_A_ID))
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="saved", current_city="Dublin"))
    assert [pin.id for pin in pins] == [str(LOCATION_A_ID)]


# endregion

# region City matching


async def test_city_matching_differs_between_following_and_popular(session, map_store: MapStore):
    # The following map matches cities by containment, the popular map needs the exact city
    await add_all(
        session,
        location(LOCATION_A_ID, city="South Dublin", created_by=USER_B_ID),
        FollowRow(follower_id=USER_A_ID, following_id=USER_B_ID),
    )
    following = await map_store.get_map(USER_A_ID, MapParams(filter_mode="following", current_city="Dublin"))
    popular = await map_store.get_map(USER_A_ID, MapParams(filter_mode="popular", current_city="Dublin"))
    assert [pin.id for pin in following] == [str(LOCATION_A_ID)]
    assert popular == []


async def test_city_resolved_from_address(session, map_store: MapStore):
    await add_all(session, location(LOCATION_A_ID, city=None, address="12 Rathmines Road, Rathmines, Dublin 6"))
    pins = await map_store.get_map(USER_A_ID, MapParams(filter_mode="popular", current_city="Dublin 2"))
    assert [pin.id for pin in pins] == [str(LOCATION_A_ID)]
    assert pins[0].city == "Dublin"


# endregion

# region Cache and coalescing


async def test_get_map_is_cached(session, map_store: MapStore, statements):
    await add_all(session, location(LOCATION_A_ID))
    params = MapParams(filter_mode="popular")
    first = await map_store.get_map(USER_A_ID, params)
    issued = len(statements)
    second = await map_store.get_map(USER_A_ID, params.model_copy())
    assert second is first
    assert len(statements) == issued
    assert map_store.get_cached_map(USER_A_ID, params) is first
    assert map_store.get_cached_map(USER_B_ID, params) is None


async def test_concurrent_get_map_shares_one_load(session, map_store: MapStore, map_cache, statements):
    await add_all(session, location(LOCATION_A_ID))
    statements.clear()
    params = MapParams(filter_mode="popular")
    first, second = await asyncio.gather(
        map_store.get_map(USER_A_ID, params),
        map_store.get_map(USER_A_ID, params),
    )
    assert first is second
    coalesced = len(statements)

    map_cache.clear()
    statements.clear()
    await map_store.get_map(USER_A_ID, params)
    assert len(statements) == coalesced


async def test_failed_load_is_not_cached(session, map_store: MapStore, map_cache, monkeypatch):
    def fail(*_args, **_kwargs):
        raise RuntimeError("merge blew up")

    monkeypatch.setattr("app.features.map.map_store.merge_candidates", fail)
    params = MapParams(filter_mode="popular")
    with pytest.raises(MapFetchError, match="merge blew up"):
        await map_store.get_map(USER_A_ID, params)
    assert len(map_cache) == 0
    assert not map_store.coalescer.in_flight(f"{USER_A_ID}:popular||||")


# endregion
