from __future__ import annotations

from typing import Literal

from fastapi import Header, HTTPException
from pydantic import BaseModel

from canteen.core.config import get_settings


ActorType = Literal["customer", "staff", "system"]


class Actor(BaseModel):
    type: ActorType
    id: str


def _auth_error(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _extract_api_key(authorization: str | None, x_api_key: str | None) -> str | None:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise _auth_error("invalid authorization header")
        return token.strip()
    if x_api_key and x_api_key.strip():
        return x_api_key.strip()
    return None


def _actor_from_api_key(api_key: str, customer_id: str | None) -> Actor | None:
    settings = get_settings()
    if api_key == settings.customer_api_key:
        if not customer_id:
            raise _auth_error("customer requests must carry X-Customer-Id")
        return Actor(type="customer", id=customer_id)
    key_map = {
        settings.staff_api_key: Actor(type="staff", id=settings.staff_actor_id),
        settings.system_api_key: Actor(type="system", id=settings.system_actor_id),
    }
    return key_map.get(api_key)


def get_actor(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
    x_customer_id: str | None = Header(default=None),
) -> Actor:
    settings = get_settings()
    if not settings.auth_enabled:
        return Actor(type="staff", id=settings.staff_actor_id)

    api_key = _extract_api_key(authorization, x_api_key)
    if not api_key:
        raise _auth_error("missing api key")

    actor = _actor_from_api_key(api_key, x_customer_id)
    if actor is None:
        raise _auth_error("invalid api key")
    return actor


def require_roles(actor: Actor, allowed: set[str], detail: str = "insufficient role") -> None:
    if actor.type not in allowed:
        raise HTTPException(status_code=403, detail=detail)


def require_customer_access(actor: Actor, customer_id: str) -> None:
    """Customers only see their own orders; staff and system see everything."""
    if actor.type == "customer" and actor.id != customer_id:
        raise HTTPException(status_code=403, detail="customers may only access their own orders")
