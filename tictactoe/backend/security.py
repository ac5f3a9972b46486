"""Player bearer tokens; only a salted digest of each is kept on the player record."""

from __future__ import annotations

import hashlib
import hmac
import secrets


PLAYER_TOKEN_BYTES = 24


def generate_token() -> str:
    """Issue the bearer token a player presents with every intent; shown once, at registration."""
    return secrets.token_urlsafe(PLAYER_TOKEN_BYTES)


def hash_token(token: str, server_salt: str) -> str:
    """Digest stored as ``tokenHash`` on the player record instead of the token itself."""
    return hashlib.sha256((token + server_salt).encode("utf-8")).hexdigest()


def verify_token(raw_token: str, expected_hash: str | None, server_salt: str) -> bool:
    if not raw_token or not expected_hash:
        return False
    return hmac.compare_digest(hash_token(raw_token, server_salt), expected_hash)
