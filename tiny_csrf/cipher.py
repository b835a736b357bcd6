"""Mini-README: cookie encryption helpers.

Tokens are stored client-side as ``IV_HEX:CIPHERTEXT_HEX``, encrypted with
AES-256-CBC under a 32-byte server secret. The client can carry the value
back but cannot read or forge the token inside it.

CBC is unauthenticated. ``verify`` pairs decryption with an exact comparison
against the submitted plaintext, so a tampered cookie only ever yields a
rejection.
"""

from __future__ import annotations

import binascii
import hmac
import secrets
import uuid

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from tiny_csrf.exceptions import CsrfError, DecryptionFailed, InvalidSecretLength, MalformedCiphertext

SECRET_LENGTH = 32
IV_LENGTH = 16
_BLOCK_BITS = algorithms.AES.block_size
_BLOCK_BYTES = _BLOCK_BITS // 8


def coerce_secret(secret: str | bytes | None) -> bytes:
    """Return the secret as bytes, rejecting anything but exactly 32 bytes."""
    if secret is None:
        raise InvalidSecretLength(0)
    raw = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)
    if len(raw) != SECRET_LENGTH:
        raise InvalidSecretLength(len(raw))
    return raw


def generate_token() -> str:
    """Return a fresh 36-character random token."""
    return str(uuid.uuid4())


def _cipher(secret: str | bytes, iv: bytes) -> Cipher:
    return Cipher(algorithms.AES(coerce_secret(secret)), modes.CBC(iv))


def _unhex(part: str) -> bytes:
    # binascii rejects whitespace and odd lengths, unlike bytes.fromhex.
    try:
        return binascii.unhexlify(part)
    except (binascii.Error, ValueError) as exc:
        raise MalformedCiphertext("cookie value is not valid hex") from exc


def encrypt(plaintext: str, secret: str | bytes) -> str:
    """Encrypt ``plaintext`` under ``secret`` with a fresh random IV."""
    iv = secrets.token_bytes(IV_LENGTH)
    padder = padding.PKCS7(_BLOCK_BITS).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = _cipher(secret, iv).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return f"{iv.hex()}:{ciphertext.hex()}"


def decrypt(value: str, secret: str | bytes) -> str:
    """Recover the plaintext token from an encrypted cookie value."""
    if not isinstance(value, str):
        raise MalformedCiphertext("cookie value must be a string")
    parts = value.split(":")
    if len(parts) != 2:
        raise MalformedCiphertext("cookie value must contain exactly one ':' separator")

    iv_hex, ciphertext_hex = parts
    iv = _unhex(iv_hex)
    ciphertext = _unhex(ciphertext_hex)
    if len(iv) != IV_LENGTH:
        raise MalformedCiphertext(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")
    if not ciphertext or len(ciphertext) % _BLOCK_BYTES:
        raise DecryptionFailed("ciphertext length is not a multiple of the block size")

    decryptor = _cipher(secret, iv).decryptor()
    unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
    try:
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except ValueError as exc:
        # Covers bad padding, cipher-level rejections and invalid UTF-8.
        raise DecryptionFailed("bad decrypt") from exc


def verify(candidate: str | None, encrypted_reference: str | None, secret: str | bytes) -> bool:
    """Return True iff ``encrypted_reference`` decrypts to exactly ``candidate``.

    Never raises: malformed values, bad padding and a wrong secret all
    collapse to False.
    """
    if not isinstance(candidate, str) or not isinstance(encrypted_reference, str):
        return False
    try:
        expected = decrypt(encrypted_reference, secret)
    except CsrfError:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8", "surrogatepass"))
