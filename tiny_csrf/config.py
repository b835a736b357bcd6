"""Configuration module.

Centralizes runtime configuration for the CSRF guard. Values can be provided
via environment variables or a local `.env` file, and are turned into an
immutable `GuardConfig` once at startup.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from tiny_csrf.cipher import coerce_secret
from tiny_csrf.exceptions import InvalidExcludedReferers, InvalidExcludedUrls

PROJECT_ROOT = Path(__file__).resolve().parent.parent
ENV_FILE_PATH = PROJECT_ROOT / ".env"

DEFAULT_ENFORCED_METHODS = frozenset({"POST", "PUT", "PATCH"})
DEFAULT_COOKIE_NAME = "csrfToken"
DEFAULT_FIELD_NAME = "_csrf"
DEFAULT_HEADER_NAME = "x-csrf-token"
# Seconds; the browser-side equivalent of a 300000 ms cookie lifetime.
DEFAULT_COOKIE_MAX_AGE = 300


class Settings(BaseSettings):
    app_name: str = "tiny-csrf demo"
    debug: bool = True
    csrf_secret: str = "change-me-in-production-32-chars"
    csrf_enforced_methods: list[str] = sorted(DEFAULT_ENFORCED_METHODS)
    csrf_excluded_urls: list[str] = []
    csrf_excluded_url_patterns: list[str] = []
    csrf_excluded_referers: list[str] = []
    csrf_cookie_name: str = DEFAULT_COOKIE_NAME
    csrf_field_name: str = DEFAULT_FIELD_NAME
    csrf_header_name: str = DEFAULT_HEADER_NAME
    csrf_cookie_max_age: int = DEFAULT_COOKIE_MAX_AGE
    cookie_signing_key: str | None = None
    secure_cookies: bool = False

    # Use an absolute path so `.env` is consistently discovered regardless of
    # the process working directory used to start uvicorn.
    model_config = SettingsConfigDict(env_file=ENV_FILE_PATH, env_file_encoding="utf-8")


settings = Settings()


@dataclass(frozen=True)
class ExactUrl:
    url: str

    def matches(self, url: str) -> bool:
        return url == self.url


@dataclass(frozen=True)
class PatternUrl:
    pattern: re.Pattern[str]

    def matches(self, url: str) -> bool:
        return self.pattern.search(url) is not None


UrlMatcher = ExactUrl | PatternUrl


def url_matcher(entry: str | re.Pattern[str] | UrlMatcher) -> UrlMatcher:
    """Wrap a literal URL or compiled pattern in its matcher variant."""
    if isinstance(entry, (ExactUrl, PatternUrl)):
        return entry
    if isinstance(entry, str):
        return ExactUrl(entry)
    if isinstance(entry, re.Pattern):
        return PatternUrl(entry)
    raise InvalidExcludedUrls(entry)


def _referer_tuple(excluded_referers: object) -> tuple[str, ...]:
    if excluded_referers is None:
        return ()
    if not isinstance(excluded_referers, (list, tuple)):
        raise InvalidExcludedReferers()
    if not all(isinstance(referer, str) for referer in excluded_referers):
        raise InvalidExcludedReferers()
    return tuple(excluded_referers)


@dataclass(frozen=True)
class GuardConfig:
    """Immutable guard configuration, built once and shared by all requests."""

    secret: bytes
    enforced_methods: frozenset[str] = DEFAULT_ENFORCED_METHODS
    excluded_urls: tuple[UrlMatcher, ...] = ()
    excluded_referers: tuple[str, ...] = ()
    cookie_name: str = DEFAULT_COOKIE_NAME
    field_name: str = DEFAULT_FIELD_NAME
    header_name: str = DEFAULT_HEADER_NAME
    cookie_max_age: int = DEFAULT_COOKIE_MAX_AGE
    secure_cookies: bool = False

    @classmethod
    def create(
        cls,
        secret: str | bytes,
        enforced_methods: Iterable[str] | None = None,
        excluded_urls: Iterable[str | re.Pattern[str] | UrlMatcher] | None = None,
        excluded_referers: Sequence[str] | None = None,
        **cookie_options,
    ) -> GuardConfig:
        """Validate raw options and return a config.

        Raises `InvalidSecretLength`, `InvalidExcludedReferers` or
        `InvalidExcludedUrls` before any request is processed.
        """
        methods = DEFAULT_ENFORCED_METHODS if enforced_methods is None else enforced_methods
        if isinstance(excluded_urls, (str, bytes)):
            raise InvalidExcludedUrls(excluded_urls)
        return cls(
            secret=coerce_secret(secret),
            enforced_methods=frozenset(method.upper() for method in methods),
            excluded_urls=tuple(url_matcher(entry) for entry in excluded_urls or ()),
            excluded_referers=_referer_tuple(excluded_referers),
            **cookie_options,
        )

    @classmethod
    def from_settings(cls, app_settings: Settings) -> GuardConfig:
        patterns = [re.compile(pattern) for pattern in app_settings.csrf_excluded_url_patterns]
        return cls.create(
            app_settings.csrf_secret,
            enforced_methods=app_settings.csrf_enforced_methods,
            excluded_urls=[*app_settings.csrf_excluded_urls, *patterns],
            excluded_referers=app_settings.csrf_excluded_referers,
            cookie_name=app_settings.csrf_cookie_name,
            field_name=app_settings.csrf_field_name,
            header_name=app_settings.csrf_header_name,
            cookie_max_age=app_settings.csrf_cookie_max_age,
            secure_cookies=app_settings.secure_cookies,
        )
