"""
auth/hashing.py -- Password hashing and verification (Argon2id).

Security design decisions:
  KDF: Argon2id through argon2-cffi's low-level hash_secret_raw(). The work
       factor (time cost, memory cost in KiB, parallelism) comes from
       Settings and is written into every record, so a later change of
       parameters never breaks existing hashes -- verify() always re-derives
       with the parameters the record was created with.

  Record format:
       argon2id$<time_cost>$<memory_cost>$<parallelism>$<key_hex>.<salt_hex>
       The key is 64 bytes, the salt 16 random bytes. "." cannot appear in
       hex, so splitting on it is unambiguous.

  Legacy records: accounts imported from the previous system carry scrypt
       records, either bare <key_hex>.<salt_hex> (implied n=16384, r=8, p=1)
       or scrypt$<n>$<r>$<p>$<key_hex>.<salt_hex>. They verify through
       hashlib.scrypt with the hex text of the salt as KDF salt, which is what
       they were derived with. needs_rehash() reports every scrypt record, so
       the Authenticator rewrites it as Argon2id on the next successful login.
       New scrypt records are never written.

  Comparison: hmac.compare_digest -- constant time regardless of where the
       two byte strings differ.

  Failure policy: hash() lets entropy and KDF errors propagate; those are
       configuration faults and must stop the process. verify() never raises:
       a malformed record, bad hex, or derivation error all mean "does not
       match", and the caller cannot tell which one happened.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw

from core.config import Settings

logger = logging.getLogger("siteguard.auth.hashing")

ARGON2_SCHEME = "argon2id"
SCRYPT_SCHEME = "scrypt"
_FIELD_SEP = "$"
_KEY_SALT_SEP = "."

KEY_LENGTH = 64
SALT_BYTES = 16

# Argon2 needs at least 8 KiB of memory per lane and an 8-byte salt.
MIN_MEMORY_PER_LANE = 8
_MIN_ARGON2_SALT = 8

# Parameters implied by a bare <key_hex>.<salt_hex> record.
LEGACY_SCRYPT_PARAMS = (16384, 8, 1)


@dataclass(frozen=True)
class _ParsedRecord:
    scheme: str
    params: tuple[int, int, int]
    key: bytes
    salt_hex: str


def _derive_argon2(
    plain: str,
    salt: bytes,
    time_cost: int,
    memory_cost: int,
    parallelism: int,
    dklen: int = KEY_LENGTH,
) -> bytes:
    return hash_secret_raw(
        secret=plain.encode("utf-8"),
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=dklen,
        type=Type.ID,
    )


def _derive_scrypt(plain: str, salt_hex: str, n: int, r: int, p: int, dklen: int) -> bytes:
    # OpenSSL caps scrypt at 32 MiB unless maxmem says otherwise.
    return hashlib.scrypt(
        plain.encode("utf-8"),
        salt=salt_hex.encode("ascii"),
        n=n,
        r=r,
        p=p,
        maxmem=128 * r * (n + p) + 1024 * 1024,
        dklen=dklen,
    )


def _params_ok(scheme: str, params: tuple[int, int, int], salt: bytes) -> bool:
    if scheme == ARGON2_SCHEME:
        time_cost, memory_cost, parallelism = params
        return (
            time_cost >= 1
            and parallelism >= 1
            and memory_cost >= MIN_MEMORY_PER_LANE * parallelism
            and len(salt) >= _MIN_ARGON2_SALT
        )
    if scheme == SCRYPT_SCHEME:
        n, r, p = params
        return n >= 2 and not n & (n - 1) and r >= 1 and p >= 1
    return False


def _parse(stored: str) -> _ParsedRecord | None:
    """Split a stored record into its parts. Returns None if it is malformed."""
    if not isinstance(stored, str) or not stored:
        return None
    try:
        if _FIELD_SEP in stored:
            scheme, first, second, third, body = stored.split(_FIELD_SEP)
            params = (int(first), int(second), int(third))
        else:
            scheme, body, params = SCRYPT_SCHEME, stored, LEGACY_SCRYPT_PARAMS
        key_hex, salt_hex = body.split(_KEY_SALT_SEP)
        key = bytes.fromhex(key_hex)
        salt = bytes.fromhex(salt_hex)
    except ValueError:
        return None
    if not key or not salt or not _params_ok(scheme, params, salt):
        return None
    return _ParsedRecord(scheme=scheme, params=params, key=key, salt_hex=salt_hex)


class CredentialHasher:
    """Hash and verify passwords with a fixed Argon2id work factor.

    Usage:
        hasher = CredentialHasher.from_settings(get_settings())
        record = hasher.hash("correcthorse123")
        hasher.verify("correcthorse123", record)   # True
    """

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism
        self._dummy_record: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialHasher:
        return cls(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )

    @property
    def params(self) -> tuple[int, int, int]:
        return (self.time_cost, self.memory_cost, self.parallelism)

    def hash(self, plain: str) -> str:
        """Return a new encoded record for plain. Two calls never return the same record.

        Raises argon2.exceptions.HashingError for a work factor the KDF refuses.
        """
        salt = secrets.token_bytes(SALT_BYTES)
        key = _derive_argon2(plain, salt, *self.params)
        t, m, p = self.params
        return f"{ARGON2_SCHEME}${t}${m}${p}${key.hex()}{_KEY_SALT_SEP}{salt.hex()}"

    def verify(self, plain: str, stored: str | None) -> bool:
        """Return True only if plain re-derives to the key stored in the record."""
        parsed = _parse(stored) if stored is not None else None
        if parsed is None:
            return False
        try:
            if parsed.scheme == ARGON2_SCHEME:
                salt = bytes.fromhex(parsed.salt_hex)
                derived = _derive_argon2(plain, salt, *parsed.params, dklen=len(parsed.key))
            else:
                derived = _derive_scrypt(plain, parsed.salt_hex, *parsed.params, dklen=len(parsed.key))
        except (HashingError, ValueError, OverflowError, MemoryError):
            logger.warning("Password verification failed to derive a key; treating as mismatch")
            return False
        return hmac.compare_digest(derived, parsed.key)

    def needs_rehash(self, stored: str | None) -> bool:
        """True for scrypt records and for Argon2id records with other parameters."""
        parsed = _parse(stored) if stored is not None else None
        if parsed is None:
            return False
        if parsed.scheme != ARGON2_SCHEME or len(parsed.key) != KEY_LENGTH:
            return True
        return parsed.params != self.params

    def burn(self, plain: str) -> None:
        """Run one full verification against a throwaway record [C1].

        Called when the account does not exist so the response takes as long
        as a real wrong-password check. The record is computed on first use
        and reused, so only the verification cost is paid per call.
        """
        if self._dummy_record is None:
            self._dummy_record = self.hash(secrets.token_hex(16))
        self.verify(plain, self._dummy_record)

    def self_test(self) -> None:
        """Hash and verify a random secret; raise RuntimeError if the round trip fails.

        Run once at startup. A broken entropy source or an unusable work
        factor stops the process here instead of failing every login later.
        """
        secret = secrets.token_urlsafe(16)
        record = self.hash(secret)
        if not self.verify(secret, record) or self.verify(secret + "x", record):
            raise RuntimeError("Credential hasher self-test failed; refusing to start.")
        self._dummy_record = record
        logger.info(
            "Credential hasher ready (argon2id t=%d m=%dKiB p=%d)",
            self.time_cost,
            self.memory_cost,
            self.parallelism,
        )
