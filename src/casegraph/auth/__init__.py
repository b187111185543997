"""Tenant and actor context for HTTP requests."""

from casegraph.auth.middleware import ActorContextMiddleware, get_actor, require_elevated

__all__ = ["ActorContextMiddleware", "get_actor", "require_elevated"]
