"""Signed cookie helpers.

Reads request cookies, verifies signed values with itsdangerous, and queues
cookie writes from the guard until a Starlette response is available.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping

from itsdangerous import BadSignature, Signer
from starlette.requests import Request
from starlette.responses import Response

from tiny_csrf.guard import CookieWrite

logger = logging.getLogger(__name__)

COOKIE_SALT = "tiny-csrf-cookie"
_SIGNING_KEY_CONTEXT = b"tiny-csrf cookie signing key"


def derive_signing_key(secret: bytes) -> bytes:
    """Derive a cookie signing key from the CSRF secret so the AES key is never reused."""
    return hmac.new(secret, _SIGNING_KEY_CONTEXT, hashlib.sha256).digest()


def cookie_signer(signing_key: str | bytes) -> Signer:
    return Signer(signing_key, salt=COOKIE_SALT)


def sign_cookie_value(signer: Signer, value: str) -> str:
    return signer.sign(value).decode("utf-8")


def unsign_cookie_value(signer: Signer, value: str) -> str | None:
    """Return the original value, or None when the signature does not match."""
    try:
        return signer.unsign(value).decode("utf-8")
    except (BadSignature, UnicodeDecodeError):
        return None


class SignedCookieJar:
    """Cookie reader and writer for a single request/response cycle."""

    def __init__(self, cookies: Mapping[str, str], signer: Signer) -> None:
        self._signer = signer
        self._cookies = dict(cookies)
        self._signed_cookies: dict[str, str] = {}
        for name, value in self._cookies.items():
            original = unsign_cookie_value(signer, value)
            if original is None:
                logger.debug("Cookie %s carries no valid signature", name)
                continue
            self._signed_cookies[name] = original
        self._pending: dict[str, CookieWrite] = {}

    @classmethod
    def from_request(cls, request: Request, signing_key: str | bytes) -> SignedCookieJar:
        return cls(request.cookies, cookie_signer(signing_key))

    @property
    def cookies(self) -> Mapping[str, str]:
        return self._cookies

    @property
    def signed_cookies(self) -> Mapping[str, str]:
        return self._signed_cookies

    @property
    def pending_writes(self) -> list[CookieWrite]:
        return list(self._pending.values())

    def write_cookie(self, write: CookieWrite) -> None:
        # Last write per cookie name wins, matching Set-Cookie semantics.
        self._pending[write.name] = write

    def apply(self, response: Response) -> None:
        for write in self._pending.values():
            value = sign_cookie_value(self._signer, write.value) if write.signed else write.value
            response.set_cookie(
                write.name,
                value,
                max_age=write.max_age,
                path=write.path,
                secure=write.secure,
                httponly=write.httponly,
                samesite=write.samesite,
            )
