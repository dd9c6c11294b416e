"""Salted one-way hashing of account secrets.

Secrets are hashed with bcrypt. bcrypt deliberately costs tens of milliseconds per call,
so hashing and verification are pushed to a worker thread with `asyncio.to_thread`.
"""

import asyncio
import functools
import logging
import secrets

import bcrypt

logger = logging.getLogger(__name__)

DEFAULT_ROUNDS = 10

SECRET_MAX_BYTES = 72
"""bcrypt only considers the first 72 bytes of its input."""


def _hash_secret(secret: str, rounds: int) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(secret.encode("utf-8"), salt).decode("ascii")


def _verify_secret(secret: str, secret_hash: str) -> bool:
    encoded = secret.encode("utf-8")
    # Some bcrypt releases truncate silently, others raise. An oversized secret never
    # matches, but still pays for one full check.
    oversized = len(encoded) > SECRET_MAX_BYTES
    try:
        matched = bcrypt.checkpw(encoded[:SECRET_MAX_BYTES], secret_hash.encode("ascii"))
    except ValueError:
        # Malformed stored hash. Never log the inputs.
        logger.warning("secret verification failed on malformed input")
        return False
    return matched and not oversized


@functools.lru_cache(maxsize=None)
def _dummy_hash(rounds: int) -> str:
    return _hash_secret(secrets.token_urlsafe(16), rounds)


async def hash_secret(secret: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """
    Hash a secret with a fresh salt.

    Args:
        secret: Cleartext secret, at most SECRET_MAX_BYTES once UTF-8 encoded
        rounds: bcrypt cost factor

    Returns:
        The bcrypt hash, salt and cost factor included, as an ASCII string
    """
    return await asyncio.to_thread(_hash_secret, secret, rounds)


async def verify_secret(secret: str, secret_hash: str) -> bool:
    """
    Check a cleartext secret against a stored bcrypt hash.

    Returns False instead of raising when the stored hash is malformed. A secret longer
    than SECRET_MAX_BYTES never matches, whatever its first SECRET_MAX_BYTES are.
    """
    if not secret or not secret_hash:
        return False
    return await asyncio.to_thread(_verify_secret, secret, secret_hash)


async def burn_verification(secret: str, rounds: int = DEFAULT_ROUNDS) -> bool:
    """
    Spend the cost of one verification without a stored hash.

    Used when no account matches a login attempt so that an unknown handle and a wrong
    secret take the same time to reject. Always returns False.
    """
    dummy = await asyncio.to_thread(_dummy_hash, rounds)
    await verify_secret(secret or "-", dummy)
    return False
