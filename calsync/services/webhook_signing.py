"""HMAC signatures for booking status notifications.

The platform signs ``"{timestamp}.{raw body}"`` with the shared secret
and sends:

  X-Webhook-Signature: v1=<hex sha256>
  X-Webhook-Timestamp: <unix seconds>

The timestamp is part of the signed material and must be recent, so a
captured notification cannot be replayed later.
"""

from __future__ import annotations

import hashlib
import hmac
import time

CLOCK_SKEW_TOLERANCE = 300
SIGNATURE_VERSION = "v1"


def generate_signature(
    payload: bytes, secret: str, timestamp: int | None = None
) -> tuple[str, int]:
    if timestamp is None:
        timestamp = int(time.time())
    signed = str(timestamp).encode("ascii") + b"." + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}", timestamp


def verify_signature(
    payload: bytes,
    secret: str,
    signature: str,
    timestamp: int,
    tolerance: int = CLOCK_SKEW_TOLERANCE,
) -> bool:
    if abs(int(time.time()) - timestamp) > tolerance:
        return False
    expected, _ = generate_signature(payload, secret, timestamp)
    # Constant-time comparison
    return hmac.compare_digest(expected, signature)
