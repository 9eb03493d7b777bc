"""Fingerprint derivation for cached resources.

A fingerprint identifies one cached resource. It is derived from the
resource's logical identity plus its query parameters so that identical
requests produce identical keys regardless of parameter order or case.

Example:
    >>> from cachesync.shared.fingerprint import make_fingerprint
    >>> make_fingerprint("users", None, {"page": 2, "Sort": "Name"})
    'users:page=2:sort=name'
"""

from __future__ import annotations

import hashlib
from typing import Any

from cachesync.shared.constants import CacheDefaults


def canonical_params(params: dict[str, Any] | None) -> dict[str, Any]:
    """Normalize parameters for consistent fingerprint generation.

    Normalization rules:
        1. Remove None and empty string values
        2. Convert string keys to lowercase
        3. Convert string values to lowercase
        4. Keys are sorted in make_fingerprint()

    Args:
        params: Query parameters dictionary. Can be None.

    Returns:
        Normalized parameters dictionary. Returns empty dict if params is None.

    Example:
        >>> canonical_params({"Lang": "KO", "query": None, "page": 1})
        {'lang': 'ko', 'page': 1}
    """
    if not params:
        return {}

    filtered = {k: v for k, v in params.items() if v is not None and v != ""}

    normalized = {}
    for k, v in filtered.items():
        normalized[k.lower()] = v.lower() if isinstance(v, str) else v

    return normalized


def make_fingerprint(
    resource: str,
    resource_id: str | int | None = None,
    params: dict[str, Any] | None = None,
) -> str:
    """Build the fingerprint for a resource request.

    Format:
        - With ID: "{resource}:{resource_id}:{sorted_params}"
        - Without ID: "{resource}:{sorted_params}"

    Args:
        resource: Logical resource name, e.g. "users". Must be non-empty.
        resource_id: Optional identifier of a single resource.
        params: Optional query parameters.

    Returns:
        Human-readable fingerprint string.

    Raises:
        ValueError: If resource is empty or None

    Example:
        >>> make_fingerprint("users", 1, {"fields": "name"})
        'users:1:fields=name'
        >>> make_fingerprint("users", None, {"b": "2", "a": "1"})
        'users:a=1:b=2'
    """
    if not resource:
        raise ValueError("resource cannot be empty or None")

    normalized = canonical_params(params)
    parts = [resource]

    if resource_id is not None:
        parts.append(str(resource_id))

    if normalized:
        param_str = CacheDefaults.KEY_SEPARATOR.join(
            f"{k}{CacheDefaults.PARAM_SEPARATOR}{v}" for k, v in sorted(normalized.items())
        )
        parts.append(param_str)

    return CacheDefaults.KEY_SEPARATOR.join(parts)


def fingerprint_digest(fingerprint: str) -> str:
    """Return the SHA-256 hex digest of a fingerprint (64 characters)."""
    return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()
