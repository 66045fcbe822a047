"""API key hashing utilities."""

import hashlib


def hash_api_key(raw_key: str) -> str:
    """SHA-256 hash of raw API key for storage."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()
