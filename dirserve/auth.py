"""HTTP Basic authentication against the configured accounts."""

import base64
import binascii
import enum
import hashlib
from dataclasses import dataclass
from hmac import compare_digest
from typing import Optional, Sequence, Union

from .errors import (
    ContextualError,
    HttpAuthenticationError,
    InvalidHttpCredentials,
    ParseError,
)

BASIC_PREFIX = "Basic "
HASH_ALGORITHMS = {"sha256": 32, "sha512": 64}


@dataclass(frozen=True)
class PlainPassword:
    value: str


@dataclass(frozen=True)
class HashedPassword:
    """Digest of a password; ``algorithm`` is ``sha256`` or ``sha512``."""

    algorithm: str
    digest: bytes


PasswordSpec = Union[PlainPassword, HashedPassword]


@dataclass(frozen=True)
class Account:
    username: str
    password: PasswordSpec


@dataclass(frozen=True)
class BasicAuthParams:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"BasicAuthParams(username={self.username!r}, password=<redacted>)"


class DecisionKind(enum.Enum):
    NO_AUTH_REQUIRED = "no_auth_required"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    error: Optional[ContextualError] = None

    @property
    def allowed(self) -> bool:
        return self.kind is not DecisionKind.REJECTED


NO_AUTH_REQUIRED = Decision(DecisionKind.NO_AUTH_REQUIRED)
AUTHORIZED = Decision(DecisionKind.AUTHORIZED)


def get_hash(algorithm: str, text: str) -> bytes:
    """Return the raw digest of ``text`` (UTF-8 encoded) under ``algorithm``."""

    hasher = hashlib.new(algorithm)
    hasher.update(text.encode("utf-8"))
    return hasher.digest()


def parse_basic_auth(header_value: Union[str, bytes]) -> BasicAuthParams:
    """Decode an ``Authorization`` header into a username and password.

    Raises :class:`ParseError` when the header is not text, does not use the
    Basic scheme, is not valid base64 or carries no ``:`` separator.
    """

    if isinstance(header_value, bytes):
        try:
            header_value = header_value.decode("utf-8")
        except UnicodeDecodeError as error:
            raise ParseError("HTTP authentication header", str(error)) from error

    if not header_value.startswith(BASIC_PREFIX):
        raise ParseError("HTTP authentication header", "expected the Basic scheme")

    encoded = header_value[len(BASIC_PREFIX):].strip()
    try:
        decoded = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as error:
        raise ParseError("HTTP authentication header", f"invalid base64: {error}") from error

    credentials = decoded.decode("utf-8", errors="replace")
    username, separator, password = credentials.partition(":")
    if not separator:
        raise ParseError(
            "HTTP authentication header", "expected credentials as username:password"
        )
    return BasicAuthParams(username=username, password=password)


def compare_password(attempt: str, required: PasswordSpec) -> bool:
    if isinstance(required, PlainPassword):
        return compare_digest(attempt.encode("utf-8"), required.value.encode("utf-8"))
    return compare_digest(get_hash(required.algorithm, attempt), required.digest)


def match_auth(basic_auth: BasicAuthParams, accounts: Sequence[Account]) -> bool:
    """Return True when ``basic_auth`` matches any of ``accounts``."""

    return any(
        account.username == basic_auth.username
        and compare_password(basic_auth.password, account.password)
        for account in accounts
    )


def authorize(
    header_value: Optional[Union[str, bytes]], accounts: Sequence[Account]
) -> Decision:
    if not accounts:
        return NO_AUTH_REQUIRED

    if header_value is None:
        return Decision(
            DecisionKind.REJECTED, HttpAuthenticationError(InvalidHttpCredentials())
        )

    try:
        attempt = parse_basic_auth(header_value)
    except ParseError as error:
        return Decision(DecisionKind.REJECTED, HttpAuthenticationError(error))

    if match_auth(attempt, accounts):
        return AUTHORIZED
    return Decision(
        DecisionKind.REJECTED, HttpAuthenticationError(InvalidHttpCredentials())
    )
