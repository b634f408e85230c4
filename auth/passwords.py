"""
auth/passwords.py -- Argon2id password hashing with constant-time verification.

Security design decisions:
  KDF: Argon2id via argon2-cffi's low-level API. Argon2id is memory-hard, so
       GPU/ASIC brute force pays for every guess in RAM as well as compute.
       The cost parameters are fixed per deployment (Settings.argon2_*); every
       stored hash must have been produced with the same parameters, because
       the encoded form carries only salt and key.

  Encoding: base64(salt || derived_key). The salt length is a configuration
       constant, so verify() splits the decoded bytes at that offset.

  Comparison: hmac.compare_digest. Plain == short-circuits at the first
       differing byte and leaks the mismatch position through timing.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import secrets

from argon2.low_level import Type, hash_secret_raw

from auth.errors import HashDecodingError


class PasswordHasher:
    """Salts and hashes passwords; verifies them in constant time.

    Usage:
        hasher = PasswordHasher()
        stored = hasher.hash("Str0ng!Pw")
        hasher.verify("Str0ng!Pw", stored)   # True
    """

    def __init__(
        self,
        memory_cost: int = 64 * 1024,
        time_cost: int = 3,
        parallelism: int = 2,
        salt_length: int = 16,
        hash_length: int = 32,
    ) -> None:
        if salt_length < 16:
            raise ValueError("salt_length must be at least 16 bytes")
        self.memory_cost = memory_cost
        self.time_cost = time_cost
        self.parallelism = parallelism
        self.salt_length = salt_length
        self.hash_length = hash_length

    @classmethod
    def from_settings(cls, settings) -> PasswordHasher:
        return cls(
            memory_cost=settings.argon2_memory_cost,
            time_cost=settings.argon2_time_cost,
            parallelism=settings.argon2_parallelism,
            salt_length=settings.argon2_salt_length,
            hash_length=settings.argon2_hash_length,
        )

    def _derive(self, password: str, salt: bytes) -> bytes:
        return hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=salt,
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
            hash_len=self.hash_length,
            type=Type.ID,
        )

    def hash(self, password: str) -> str:
        """Return base64(salt || key) for a fresh random salt."""
        salt = secrets.token_bytes(self.salt_length)
        return base64.b64encode(salt + self._derive(password, salt)).decode("ascii")

    def verify(self, password: str, hash_string: str) -> bool:
        """Return True if password derives the stored key.

        Raises HashDecodingError if hash_string is not valid base64 or is
        shorter than one salt.
        """
        try:
            salted = base64.b64decode(hash_string.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise HashDecodingError("failed to decode hashed password") from exc
        if len(salted) < self.salt_length:
            raise HashDecodingError("invalid hashed password format")

        salt, stored_key = salted[: self.salt_length], salted[self.salt_length :]
        return hmac.compare_digest(stored_key, self._derive(password, salt))
