"""Argon2id derived keys for storing user passwords.

Derived keys are self-describing strings of the form::

    $argon2id$v=19$m=65536,t=1,p=2$<salt>$<hash>

where salt and hash are standard base64 with padding. The parameters
embedded in a stored key are the ones used to verify it, so raising the
defaults never invalidates existing passwords.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import re
import secrets
from dataclasses import dataclass

from argon2.exceptions import HashingError
from argon2.low_level import ARGON2_VERSION, Type, hash_secret_raw

from todos.service.errors import ServiceError

ALGORITHM = "argon2id"

_DK_PATTERN = re.compile(
    r"\$(?P<alg>[A-Za-z0-9_]+)"
    r"\$v=(?P<ver>[0-9]{1,10})"
    r"\$m=(?P<mem>[0-9]{1,10}),t=(?P<time>[0-9]{1,10}),p=(?P<procs>[0-9]{1,10})"
    r"\$(?P<salt>[+/=A-Za-z0-9]+)"
    r"\$(?P<key>[+/=A-Za-z0-9]+)"
)

_UINT32_MAX = 2**32 - 1
_UINT8_MAX = 2**8 - 1
# Lower bounds enforced by the argon2 reference implementation
_MIN_SALT_LEN = 8
_MIN_KEY_LEN = 4


class DerivedKeyError(ServiceError):
    """A derived key could not be generated or checked (500)."""

    status_code = 500
    error_code = "server_error"
    expose = False


class DerivedKeyParseError(DerivedKeyError):
    """A derived key string is not in the expected format (400)."""

    status_code = 400
    error_code = "validation_error"
    expose = True


@dataclass(frozen=True)
class DerivedKeyParams:
    time_cost: int = 1
    memory_cost: int = 64 * 1024
    parallelism: int = 2
    salt_len: int = 16
    key_len: int = 32


DEFAULT_PARAMS = DerivedKeyParams()


@dataclass(frozen=True)
class ParsedDerivedKey:
    hash: bytes
    salt: bytes
    time_cost: int
    memory_cost: int
    parallelism: int

    @property
    def params(self) -> DerivedKeyParams:
        return DerivedKeyParams(
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
            salt_len=len(self.salt),
            key_len=len(self.hash),
        )


def _derive(password: str, salt: bytes, params: DerivedKeyParams) -> bytes:
    try:
        return hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=salt,
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=params.key_len,
            type=Type.ID,
            version=ARGON2_VERSION,
        )
    except HashingError as exc:
        raise DerivedKeyError("argon2 hashing failed") from exc


def _encode(salt: bytes, key: bytes, params: DerivedKeyParams) -> str:
    b64_salt = base64.b64encode(salt).decode("ascii")
    b64_key = base64.b64encode(key).decode("ascii")
    return (
        f"${ALGORITHM}$v={ARGON2_VERSION}"
        f"$m={params.memory_cost},t={params.time_cost},p={params.parallelism}"
        f"${b64_salt}${b64_key}"
    )


def create_derived_key(password: str, params: DerivedKeyParams = DEFAULT_PARAMS) -> str:
    """Derive a storable key from ``password`` using a fresh random salt."""
    try:
        salt = secrets.token_bytes(params.salt_len)
    except (OSError, NotImplementedError) as exc:
        raise DerivedKeyError(f"could not generate {params.salt_len} length salt") from exc
    key = _derive(password, salt, params)
    return _encode(salt, key, params)


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DerivedKeyParseError(f"could not decode {what}") from exc


def parse_derived_key(encoded: str) -> ParsedDerivedKey:
    """Split a derived key string into its hash, salt and argon2 parameters."""
    if not encoded:
        raise DerivedKeyParseError("cannot parse empty derived key")

    match = _DK_PATTERN.fullmatch(encoded)
    if not match:
        raise DerivedKeyParseError("could not parse derived key")

    if match.group("alg") != ALGORITHM:
        raise DerivedKeyParseError(f"current code only handles {ALGORITHM} not {match.group('alg')}")
    if int(match.group("ver")) != ARGON2_VERSION:
        raise DerivedKeyParseError(
            f"expected {ALGORITHM} version {ARGON2_VERSION} got {match.group('ver')}"
        )

    time_cost = int(match.group("time"))
    memory_cost = int(match.group("mem"))
    parallelism = int(match.group("procs"))
    if not 1 <= time_cost <= _UINT32_MAX:
        raise DerivedKeyParseError("time parameter outside of supported range")
    if not 1 <= parallelism <= _UINT8_MAX:
        raise DerivedKeyParseError("parallelism parameter outside of supported range")
    if not 8 * parallelism <= memory_cost <= _UINT32_MAX:
        raise DerivedKeyParseError("memory parameter outside of supported range")

    salt = _b64decode(match.group("salt"), "salt")
    key = _b64decode(match.group("key"), "key")
    if len(salt) < _MIN_SALT_LEN:
        raise DerivedKeyParseError("salt is too short")
    if len(key) < _MIN_KEY_LEN:
        raise DerivedKeyParseError("key is too short")

    return ParsedDerivedKey(
        hash=key,
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
    )


def verify_derived_key(encoded: str, password: str) -> bool:
    """Check ``password`` against a stored derived key.

    Returns False on mismatch and raises on empty or malformed input.
    """
    if not encoded:
        raise DerivedKeyParseError("must specify a derived key")
    if not password:
        raise DerivedKeyParseError("must specify a password")

    parsed = parse_derived_key(encoded)
    candidate = _derive(password, parsed.salt, parsed.params)
    return hmac.compare_digest(parsed.hash, candidate)


def needs_rehash(encoded: str, params: DerivedKeyParams = DEFAULT_PARAMS) -> bool:
    """True when a stored key was derived with different parameters."""
    parsed = parse_derived_key(encoded)
    return parsed.params != params


__all__ = [
    "ALGORITHM",
    "DEFAULT_PARAMS",
    "DerivedKeyError",
    "DerivedKeyParams",
    "DerivedKeyParseError",
    "ParsedDerivedKey",
    "create_derived_key",
    "needs_rehash",
    "parse_derived_key",
    "verify_derived_key",
]
