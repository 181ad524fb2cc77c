"""Helpers for guard keys."""

from __future__ import annotations

import hashlib


def build_key(tier_name: str, identity: str) -> str:
    """Namespace an identity by tier, e.g. ``build_key("login", "1.2.3.4") -> "login:1.2.3.4"``.

    Identities are case-folded and stripped so "User@X.com " and "user@x.com"
    share one record.

    Raises:
        ValueError: If either part is empty.
    """
    identity = identity.strip().lower()
    if not tier_name or not identity:
        raise ValueError("tier_name and identity must be non-empty")
    return f"{tier_name}:{identity}"


def hash_key(key: str) -> str:
    """Hash a guard key for logging without exposing IPs or account names."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]
