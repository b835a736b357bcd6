"""Error taxonomy for CSRF protection.

Configuration errors and missing cookie support are fatal and should abort
request handling. Validation errors are expected, client-triggerable
rejections that hosts map to HTTP 403.
"""

from __future__ import annotations


class CsrfError(Exception):
    """Base class for every error raised by this package."""


class CsrfConfigurationError(CsrfError):
    """Raised at construction time when guard options are unusable."""


class InvalidSecretLength(CsrfConfigurationError):
    def __init__(self, length: int) -> None:
        super().__init__(f"CSRF secret must be exactly 32 bytes, got {length}")
        self.length = length


class InvalidExcludedReferers(CsrfConfigurationError):
    def __init__(self) -> None:
        super().__init__("excluded_referers must be a list of strings")


class InvalidExcludedUrls(CsrfConfigurationError):
    def __init__(self, entry: object) -> None:
        super().__init__(
            f"excluded URL entries must be strings or compiled patterns, got {type(entry).__name__}"
        )
        self.entry = entry


class MissingCookieSupport(CsrfError):
    """The host did not provide cookie reading and writing for this request."""

    def __init__(self) -> None:
        super().__init__("No cookie middleware is installed")


class CsrfValidationError(CsrfError):
    """A request failed CSRF validation and must be rejected."""


class MissingOrInvalidToken(CsrfValidationError):
    """Submitted token was absent or did not match the cookie token.

    The message only reports whether each side was present, never the token
    values themselves.
    """

    def __init__(self, method: str, url: str, *, submitted_present: bool, stored_present: bool) -> None:
        self.method = method
        self.url = url
        self.submitted_present = submitted_present
        self.stored_present = stored_present
        super().__init__(
            f"Did not get a valid CSRF token for {method} {url}: "
            f"submitted={'present' if submitted_present else 'missing'} "
            f"stored={'present' if stored_present else 'missing'}"
        )


class CipherError(CsrfValidationError):
    """Encrypted cookie value could not be turned back into a token."""


class MalformedCiphertext(CipherError):
    pass


class DecryptionFailed(CipherError):
    pass
