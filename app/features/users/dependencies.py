import uuid

from fastapi import Header, HTTPException, Request

from app.core.types import UserId

USER_ID_HEADER = "x-user-id"


def parse_user_id(value: str | None) -> UserId | None:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def get_rate_limit_key(request: Request) -> str:
    """Used for rate limiting."""
    return request.headers.get(USER_ID_HEADER) or "default"


async def get_caller_id(x_user_id: str | None = Header(default=None)) -> UserId:
    """The caller's user id. Sign-in happens upstream, which forwards the user id in the X-User-Id header."""
    user_id = parse_user_id(x_user_id)
    if user_id is None:
        raise HTTPException(401, detail="Missing or invalid X-User-Id header")
    return user_id
