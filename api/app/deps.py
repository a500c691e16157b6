import uuid

from fastapi import Header, HTTPException, Request


def parse_actor_user_id(raw_actor_user_id: str | None) -> str | None:
    if not raw_actor_user_id:
        return None
    value = raw_actor_user_id.strip()
    if not value:
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise HTTPException(status_code=400, detail="X-Actor-User-Id must be a valid UUID")


def require_actor_user_id(x_actor_user_id: str | None = Header(default=None)) -> str:
    actor_id = parse_actor_user_id(x_actor_user_id)
    if not actor_id:
        raise HTTPException(status_code=401, detail="X-Actor-User-Id header is required")
    return actor_id


def get_match_facade(request: Request):
    facade = getattr(request.app.state, "match_facade", None)
    if facade is None:
        raise HTTPException(status_code=503, detail="Matching engine is not ready")
    return facade
