"""Mini-README: per-request CSRF decision engine.

`CsrfGuard` classifies every inbound request as excluded, enforced or
passive, then either hands back a lazy token accessor or validates the
submitted token against the encrypted cookie copy. The guard only holds an
immutable `GuardConfig`, so one instance is shared by all requests.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from tiny_csrf import cipher
from tiny_csrf.config import GuardConfig, UrlMatcher
from tiny_csrf.exceptions import CipherError, MissingCookieSupport, MissingOrInvalidToken

logger = logging.getLogger(__name__)

TokenAccessor = Callable[[], "str | None"]


class RequestClass(str, Enum):
    EXCLUDED = "excluded"
    ENFORCED = "enforced"
    PASSIVE = "passive"


@dataclass(frozen=True)
class RequestFacts:
    """What the guard needs to know about one request."""

    method: str
    url: str
    referer: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Mapping[str, Any] = field(default_factory=dict)
    query: Mapping[str, Any] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CookieWrite:
    """A single Set-Cookie instruction for the host to apply."""

    name: str
    value: str
    max_age: int
    httponly: bool = True
    samesite: str = "strict"
    signed: bool = True
    secure: bool = False
    path: str = "/"


@dataclass(frozen=True)
class Outcome:
    classification: RequestClass
    token_accessor: TokenAccessor | None = None


class CookieReader(Protocol):
    @property
    def cookies(self) -> Mapping[str, str]: ...

    @property
    def signed_cookies(self) -> Mapping[str, str]: ...


class CookieWriter(Protocol):
    def write_cookie(self, write: CookieWrite) -> None: ...


def _ensure_cookie_support(cookie_reader: object, cookie_writer: object) -> None:
    if cookie_reader is None or not hasattr(cookie_reader, "signed_cookies"):
        raise MissingCookieSupport()
    if cookie_writer is None or not callable(getattr(cookie_writer, "write_cookie", None)):
        raise MissingCookieSupport()


class CsrfGuard:
    def __init__(
        self,
        secret: str | bytes | None = None,
        enforced_methods: Iterable[str] | None = None,
        excluded_urls: Iterable[str | re.Pattern[str] | UrlMatcher] | None = None,
        excluded_referers: Sequence[str] | None = None,
        *,
        config: GuardConfig | None = None,
        **cookie_options,
    ) -> None:
        if config is not None:
            self.config = config
            return
        self.config = GuardConfig.create(
            secret,
            enforced_methods=enforced_methods,
            excluded_urls=excluded_urls,
            excluded_referers=excluded_referers,
            **cookie_options,
        )

    @classmethod
    def from_config(cls, config: GuardConfig) -> CsrfGuard:
        return cls(config=config)

    def classify(self, facts: RequestFacts) -> RequestClass:
        if any(matcher.matches(facts.url) for matcher in self.config.excluded_urls):
            return RequestClass.EXCLUDED
        if facts.method.upper() in self.config.enforced_methods:
            return RequestClass.ENFORCED
        return RequestClass.PASSIVE

    def _stored_token(self, cookie_reader: CookieReader) -> str | None:
        return cookie_reader.signed_cookies.get(self.config.cookie_name) or None

    def _submitted_tokens(self, facts: RequestFacts) -> list[str]:
        """Collect candidate tokens from header, body, query and params, in that order."""
        candidates = [facts.headers.get(self.config.header_name)]
        candidates.extend(
            source.get(self.config.field_name) for source in (facts.body, facts.query, facts.params)
        )
        return [candidate for candidate in candidates if isinstance(candidate, str) and candidate]

    def _cookie_write(self, value: str) -> CookieWrite:
        return CookieWrite(
            name=self.config.cookie_name,
            value=value,
            max_age=self.config.cookie_max_age,
            secure=self.config.secure_cookies,
        )

    def issue_or_reuse_token(
        self,
        facts: RequestFacts,
        cookie_reader: CookieReader,
        *,
        honour_excluded_referers: bool = False,
    ) -> tuple[str | None, CookieWrite | None]:
        """Return the token to embed in the page and the cookie write it needs, if any.

        An existing cookie that decrypts cleanly is reused as-is. A missing or
        undecryptable cookie gets a fresh token and an encrypted cookie write.
        """
        if honour_excluded_referers and facts.referer in self.config.excluded_referers:
            logger.debug("Skipping CSRF token issue for excluded referer on %s", facts.url)
            return None, None

        stored = self._stored_token(cookie_reader)
        if stored:
            try:
                token = cipher.decrypt(stored, self.config.secret)
            except CipherError:
                logger.debug("Existing CSRF cookie could not be decrypted; issuing a new token")
            else:
                if token:
                    return token, None

        token = cipher.generate_token()
        logger.debug("Issued new CSRF token for %s %s", facts.method, facts.url)
        return token, self._cookie_write(cipher.encrypt(token, self.config.secret))

    def _token_accessor(
        self,
        facts: RequestFacts,
        cookie_reader: CookieReader,
        cookie_writer: CookieWriter,
        *,
        honour_excluded_referers: bool,
    ) -> TokenAccessor:
        issued: list[str | None] = []

        def csrf_token() -> str | None:
            # Memoised so that several forms on one page share one cookie.
            if not issued:
                token, write = self.issue_or_reuse_token(
                    facts, cookie_reader, honour_excluded_referers=honour_excluded_referers
                )
                if write is not None:
                    cookie_writer.write_cookie(write)
                issued.append(token)
            return issued[0]

        return csrf_token

    def _enforce(self, facts: RequestFacts, cookie_reader: CookieReader, cookie_writer: CookieWriter) -> None:
        stored = self._stored_token(cookie_reader)
        submitted = self._submitted_tokens(facts)
        if stored is None or not any(cipher.verify(candidate, stored, self.config.secret) for candidate in submitted):
            error = MissingOrInvalidToken(
                facts.method,
                facts.url,
                submitted_present=bool(submitted),
                stored_present=stored is not None,
            )
            logger.warning("Rejected request: %s", error)
            raise error

        cookie_writer.write_cookie(self._cookie_write(""))
        logger.info("CSRF token consumed for %s %s", facts.method, facts.url)

    def handle(self, facts: RequestFacts, cookie_reader: CookieReader, cookie_writer: CookieWriter) -> Outcome:
        """Classify the request and either validate it or expose a token accessor.

        Raises `MissingCookieSupport` when the host provides no cookie
        transport, and `MissingOrInvalidToken` when an enforced request does
        not carry a token matching its cookie.
        """
        _ensure_cookie_support(cookie_reader, cookie_writer)
        classification = self.classify(facts)
        logger.debug("Classified %s %s as %s", facts.method, facts.url, classification.value)

        if classification is RequestClass.ENFORCED:
            self._enforce(facts, cookie_reader, cookie_writer)
            return Outcome(classification)

        accessor = self._token_accessor(
            facts,
            cookie_reader,
            cookie_writer,
            honour_excluded_referers=classification is RequestClass.EXCLUDED,
        )
        return Outcome(classification, accessor)
