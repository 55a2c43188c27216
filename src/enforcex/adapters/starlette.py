from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Receive, Scope, Send

from ..core.enforcer import Enforcer
from ..core.errors import EvaluationError
from ._common import AdapterConfig, AuthType, Skipper, default_skipper, deny_headers

logger = logging.getLogger("enforcex.adapters.starlette")


async def check_permission(
    enforcer: Enforcer, config: AdapterConfig, request: Request
) -> Optional[Response]:
    """Enforce ``(user, path, method)`` for *request*.

    Returns ``None`` when access is granted, otherwise the response to send:
    403 for a deny, 500 when the enforcer could not evaluate the request.
    """
    if config.skipper(request):
        return None
    sub, obj, act = config.request_tuple(request.headers, request.url.path, request.method)
    try:
        decision = await run_in_threadpool(enforcer.enforce_ex, sub, obj, act)
    except EvaluationError as e:
        logger.error("ENFORCEX: enforcement failed for %s %s: %s", act, obj, e)
        return JSONResponse({"detail": str(e)}, status_code=500)
    if decision.allowed:
        return None
    return JSONResponse(
        {"detail": "Forbidden"},
        status_code=403,
        headers=deny_headers(decision, config.add_headers),
    )


class EnforcerMiddleware:
    """ASGI middleware that guards every HTTP request with an :class:`Enforcer`.

    Usage::

        app = Starlette(routes=..., middleware=[
            Middleware(EnforcerMiddleware, enforcer=e, auth_type="jwt"),
        ])

    Non-HTTP scopes (websocket, lifespan) pass through untouched.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        enforcer: Enforcer,
        auth_type: AuthType | str = AuthType.BASIC,
        skipper: Skipper = default_skipper,
        add_headers: bool = False,
    ) -> None:
        self.app = app
        self.enforcer = enforcer
        self.config = AdapterConfig(
            auth_type=AuthType(auth_type), skipper=skipper, add_headers=add_headers
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        request = Request(scope, receive=receive)
        denied = await check_permission(self.enforcer, self.config, request)
        if denied is not None:
            await denied(scope, receive, send)
            return
        await self.app(scope, receive, send)


def require_access(
    enforcer: Enforcer,
    *,
    auth_type: AuthType | str = AuthType.BASIC,
    skipper: Skipper = default_skipper,
    add_headers: bool = False,
) -> Callable[[Callable[..., Any]], Callable[[Request], Awaitable[Any]]]:
    """Decorator guarding a single Starlette endpoint."""
    config = AdapterConfig(auth_type=AuthType(auth_type), skipper=skipper, add_headers=add_headers)

    def decorator(handler: Callable[..., Any]) -> Callable[[Request], Awaitable[Any]]:
        is_async = inspect.iscoroutinefunction(handler)

        async def endpoint(request: Request) -> Any:
            denied = await check_permission(enforcer, config, request)
            if denied is not None:
                return denied
            if is_async:
                return await handler(request)
            return await run_in_threadpool(handler, request)

        endpoint.__name__ = getattr(handler, "__name__", "endpoint")
        endpoint.__doc__ = getattr(handler, "__doc__", None)
        return endpoint

    return decorator


__all__ = ["EnforcerMiddleware", "require_access", "check_permission"]
