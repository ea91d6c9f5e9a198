"""Argon2id password hashing, run off the event loop."""

import asyncio

import argon2

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,
    parallelism=1,
)


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return _hasher.hash(password)


def _check(plain: str, hashed: str) -> bool:
    try:
        return _hasher.verify(hashed, plain)
    except (argon2.exceptions.VerificationError, argon2.exceptions.InvalidHashError):
        return False


async def check_password(plain: str, hashed: str | None) -> bool:
    """Compare ``plain`` against an Argon2 hash in a worker thread.

    Accounts without a hash never match.
    """
    if not hashed:
        return False
    return await asyncio.to_thread(_check, plain, hashed)


def needs_rehash(hashed: str) -> bool:
    """True when ``hashed`` was produced with weaker parameters than today's."""
    try:
        return _hasher.check_needs_rehash(hashed)
    except argon2.exceptions.InvalidHashError:
        return True
