"""FastAPI integration: reject locked-out callers before the route runs.

Usage::

    app = FastAPI()
    install_lockout_handler(app)

    @app.post("/login", dependencies=[Depends(lockout_guard("login"))])
    async def login(...):
        ...
        get_engine().record_failure("login", email)
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable

from fastapi import FastAPI, Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from .config import LockoutSettings, ResponseMode, settings as default_settings
from .engine import LockoutEngine, get_engine
from .extraction import RequestData
from .policy import ResolvedPolicy

logger = logging.getLogger(__name__)

LOCKOUT_MESSAGE = "Too many failed attempts. Please try again later."

# callback(context, identity, remaining_seconds) -> Response
ResponseCallback = Callable[[str, str, int], Response]


class LockoutActive(Exception):
    """Raised by ``lockout_guard`` when the caller is locked out."""

    def __init__(
        self,
        context: str,
        identity: str,
        remaining: int,
        locked_until: datetime,
        policy: ResolvedPolicy,
    ) -> None:
        super().__init__(f"Lockout active for context '{context}' ({remaining}s remaining)")
        self.context = context
        self.identity = identity
        self.remaining = remaining
        self.locked_until = locked_until
        self.policy = policy


async def request_data_from(request: Request) -> RequestData:
    """Collect query params, form or JSON body fields, client host and user id."""
    fields: dict[str, Any] = dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None
        if isinstance(body, dict):
            fields.update(body)
    elif content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        fields.update({k: v for k, v in form.items() if isinstance(v, str)})

    user_id = getattr(request.state, "user_id", None)
    return RequestData(
        fields=fields,
        client_ip=request.client.host if request.client else None,
        user_id=str(user_id) if user_id is not None else None,
    )


def lockout_guard(context: str, engine: LockoutEngine | None = None):
    """Build a dependency that raises ``LockoutActive`` for locked-out callers."""

    async def dependency(request: Request) -> str:
        eng = engine or get_engine()
        identity = eng.extract_identity(context, await request_data_from(request))
        info = eng.get_lockout_info(context, identity)
        if info.is_locked_out:
            raise LockoutActive(
                context, identity, info.remaining_time, info.locked_until, eng.policy(context)
            )
        request.state.lockout_identity = identity
        return identity

    return dependency


def _expects_json(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return (
        "application/json" in accept
        or request.headers.get("x-requested-with", "").lower() == "xmlhttprequest"
        or request.headers.get("content-type", "").startswith("application/json")
        or request.url.path.startswith("/api/")
    )


def _redirect_url(request: Request, route: str) -> str:
    if route.startswith(("/", "http://", "https://")):
        return route
    return str(request.url_for(route))


def install_lockout_handler(
    app: FastAPI,
    config: LockoutSettings | None = None,
    callback: ResponseCallback | None = None,
) -> None:
    """Register the ``LockoutActive`` handler that shapes the rejection."""
    cfg = config or default_settings

    def add_headers(response: Response, exc: LockoutActive) -> Response:
        if cfg.include_headers:
            response.headers["Retry-After"] = str(exc.remaining)
            response.headers["X-RateLimit-Limit"] = "exponential"
            response.headers["X-RateLimit-Remaining"] = "0"
            response.headers["X-RateLimit-Reset"] = str(int(exc.locked_until.timestamp()))
        return response

    def json_response(exc: LockoutActive) -> Response:
        payload = {
            "message": LOCKOUT_MESSAGE,
            "error": "lockout_active",
            "context": exc.context,
            "retry_after": exc.remaining,
            "locked_until": exc.locked_until.isoformat(),
        }
        return add_headers(JSONResponse(payload, status_code=cfg.http_status_code), exc)

    def redirect_response(request: Request, exc: LockoutActive) -> Response:
        url = _redirect_url(request, exc.policy.redirect_route)
        response = RedirectResponse(url, status_code=303)
        response.set_cookie("lockout_retry_after", str(exc.remaining), max_age=exc.remaining)
        return response

    async def handle(request: Request, exc: LockoutActive) -> Response:
        mode = exc.policy.response_mode
        logger.info("Rejected request for context '%s' (%s mode)", exc.context, mode.value)
        if mode is ResponseMode.JSON:
            return json_response(exc)
        if mode is ResponseMode.REDIRECT:
            return redirect_response(request, exc)
        if mode is ResponseMode.CALLBACK:
            if callback is None:
                logger.warning("No lockout callback installed; answering '%s' with JSON", exc.context)
                return json_response(exc)
            response = callback(exc.context, exc.identity, exc.remaining)
            if not isinstance(response, Response):
                logger.error(
                    "Lockout callback returned %s instead of a Response; answering '%s' with JSON",
                    type(response).__name__,
                    exc.context,
                )
                return json_response(exc)
            return add_headers(response, exc)
        if _expects_json(request):
            return json_response(exc)
        return redirect_response(request, exc)

    app.add_exception_handler(LockoutActive, handle)
