"""PII minimisation for event payloads."""

from __future__ import annotations

import hashlib
from typing import Any

SENSITIVE_FIELDS = ("customer_ref", "customer_name", "email", "address", "phone")


def hash_customer_ref(customer_ref: str) -> str:
    """Stable 16-hex-char SHA-256 token for a customer reference."""
    return hashlib.sha256(customer_ref.encode("utf-8")).hexdigest()[:16]


def minimize_pii(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *data* with sensitive fields redacted."""
    minimized = dict(data)
    for key in SENSITIVE_FIELDS:
        if minimized.get(key):
            minimized[key] = f"[REDACTED_{key.upper()}]"
    return minimized
