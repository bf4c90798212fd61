"""Resolve the calling user from the API Gateway JWT authorizer context.

Tokens are issued and validated upstream; by the time a request reaches the
function the authorizer has already placed the verified claims in
``requestContext.authorizer.jwt.claims``.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from fastapi import HTTPException, Request, status

from classroom_booking.models import Actor, Role

ROLE_CLAIMS = ("custom:role", "role", "roles")


def _roles(raw: Any) -> set[str]:
    if isinstance(raw, (list, tuple, set)):
        values = raw
    else:
        # HTTP APIs flatten array claims into "[a b]"
        values = str(raw).strip("[]").replace(",", " ").split()
    return {str(v).strip().lower() for v in values if str(v).strip()}


def actor_from_claims(claims: Mapping[str, Any]) -> Actor | None:
    user_id = claims.get("sub")
    if not user_id:
        return None
    roles: set[str] = set()
    for name in ROLE_CLAIMS:
        if name in claims:
            roles |= _roles(claims[name])
    role = Role.ADMIN if Role.ADMIN.value.lower() in roles else Role.MEMBER
    return Actor(user_id=str(user_id), role=role, email=claims.get("email"))


def actor_from_event(event: Mapping[str, Any]) -> Actor | None:
    claims = event.get("requestContext", {}).get("authorizer", {}).get("jwt", {}).get("claims") or {}
    return actor_from_claims(claims)


def get_actor(request: Request) -> Actor:
    event = request.scope.get("aws.event") or {}
    actor = actor_from_event(event)
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return actor
