"""Mini-README: Starlette middleware that runs the CSRF guard.

The middleware turns each request into `RequestFacts`, lets `CsrfGuard`
decide, exposes the token accessor on `request.state.csrf_token`, and
applies any queued cookie writes to the outgoing response. Validation
failures become HTTP 403; configuration errors propagate.

Bodies are only parsed for enforced requests; a body that cannot be parsed
contributes no fields, so the guard rejects the request. Without an explicit
signing key, cookies are signed with a key derived from the CSRF secret,
never with the AES key itself.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from tiny_csrf.cookies import SignedCookieJar, derive_signing_key
from tiny_csrf.exceptions import CsrfValidationError
from tiny_csrf.guard import CsrfGuard, RequestClass, RequestFacts

_FORM_CONTENT_TYPES = {"application/x-www-form-urlencoded", "multipart/form-data"}
_JSON_CONTENT_TYPE = "application/json"


def _content_type(request: Request) -> str:
    return request.headers.get("content-type", "").split(";", 1)[0].strip().lower()


async def _submitted_form(request: Request) -> Mapping[str, Any]:
    # Buffer the body first so the endpoint can read it again.
    await request.body()
    try:
        async with request.form() as form:
            return {key: value for key, value in form.multi_items() if isinstance(value, str)}
    except (HTTPException, MultiPartException):
        return {}


async def _submitted_body(request: Request) -> Mapping[str, Any]:
    """Parse form or JSON bodies; anything else contributes no fields."""
    content_type = _content_type(request)
    if content_type in _FORM_CONTENT_TYPES:
        return await _submitted_form(request)
    if content_type == _JSON_CONTENT_TYPE:
        try:
            payload = await request.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}
    return {}


def request_facts(request: Request, body: Mapping[str, Any] | None = None) -> RequestFacts:
    """Collect the request details the guard classifies and validates on."""
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return RequestFacts(
        method=request.method,
        url=url,
        referer=request.headers.get("referer"),
        headers=request.headers,
        body=body or {},
        query=request.query_params,
        params=request.path_params,
    )


class CsrfMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, guard: CsrfGuard, signing_key: str | bytes | None = None) -> None:
        super().__init__(app)
        self.guard = guard
        self.signing_key = signing_key or derive_signing_key(guard.config.secret)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        jar = SignedCookieJar.from_request(request, self.signing_key)
        facts = request_facts(request)
        if self.guard.classify(facts) is RequestClass.ENFORCED:
            facts = request_facts(request, await _submitted_body(request))
        try:
            outcome = self.guard.handle(facts, jar, jar)
        except CsrfValidationError:
            return JSONResponse({"detail": "Invalid or missing CSRF token"}, status_code=403)

        request.state.csrf_token = outcome.token_accessor
        response = await call_next(request)
        jar.apply(response)
        return response
