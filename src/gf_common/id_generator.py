"""Prefixed business IDs.

Format: "<prefix>_<24 hex chars>", e.g. "ord_3f2a9c...". The prefix makes an
ID's kind obvious in logs and audit rows; uniqueness comes from uuid4.
"""

import secrets
import uuid

ORDER_PREFIX = "ord"


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:24]}"


def new_order_id() -> str:
    return generate_id(ORDER_PREFIX)


def new_webhook_token() -> str:
    """URL-safe secret the fulfillment provider echoes back on webhook calls."""
    return secrets.token_urlsafe(24)
