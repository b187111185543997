"""Actor context middleware and dependencies.

Authentication happens upstream; this layer only reads the tenant, actor
and roles the gateway forwards in request headers.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from casegraph.core.types import ActorContext

TENANT_HEADER = "X-Tenant-Id"
ACTOR_HEADER = "X-Actor-Id"
ROLES_HEADER = "X-Actor-Roles"


class ActorContextMiddleware(BaseHTTPMiddleware):
    """Populates request.state.actor from the forwarded identity headers."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request.state.actor = None

        tenant_id = request.headers.get(TENANT_HEADER, "").strip()
        actor_id = request.headers.get(ACTOR_HEADER, "").strip()
        if tenant_id and actor_id:
            roles = [
                r.strip() for r in request.headers.get(ROLES_HEADER, "").split(",") if r.strip()
            ]
            request.state.actor = ActorContext(
                tenant_id=tenant_id, actor_id=actor_id, roles=roles
            )

        return await call_next(request)


def get_actor(request: Request) -> ActorContext:
    """FastAPI dependency returning the caller's context, or 401."""
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise HTTPException(
            status_code=401,
            detail=f"{TENANT_HEADER} and {ACTOR_HEADER} headers are required",
        )
    return actor


def require_elevated():
    """FastAPI dependency that requires one of ``Settings.elevated_roles``."""

    def dependency(request: Request) -> ActorContext:
        actor = get_actor(request)
        allowed = request.app.state.settings.elevated_roles
        if not actor.has_any_role(allowed):
            raise HTTPException(
                status_code=403,
                detail=f"Requires one of the roles: {', '.join(allowed)}",
            )
        return actor

    return Depends(dependency)
