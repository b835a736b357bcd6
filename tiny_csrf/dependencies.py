"""Dependency helpers.

Provides the FastAPI dependency that hands the current request's CSRF token
to route handlers and templates.
"""

from fastapi import Request

from tiny_csrf.exceptions import MissingCookieSupport


def get_csrf_token(request: Request) -> str | None:
    """Return the request's token, issuing one on first use.

    Enforced requests carry no accessor, because their token was just
    consumed, so they get None.
    """
    if not hasattr(request.state, "csrf_token"):
        raise MissingCookieSupport()
    accessor = request.state.csrf_token
    if accessor is None:
        return None
    return accessor()
