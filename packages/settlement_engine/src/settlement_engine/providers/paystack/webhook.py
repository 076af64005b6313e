"""
Paystack Webhook Utilities

Paystack signs every webhook with HMAC-SHA512 over the raw body using the
account's secret key, hex encoded in the x-paystack-signature header.
"""

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


def compute_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA512 of a payload."""
    return hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha512,
    ).hexdigest()


def validate_signature(
    payload: bytes,
    signature_header: str | None,
    secret: str,
) -> bool:
    """
    Validate Paystack webhook signature.

    Args:
        payload: Raw request body bytes
        signature_header: x-paystack-signature header value
        secret: Paystack secret key

    Returns:
        True if signature is valid
    """
    if not signature_header:
        logger.warning("Missing signature header")
        return False

    if not secret:
        logger.warning("No webhook secret configured, rejecting webhook")
        return False

    computed = compute_signature(payload, secret)

    return hmac.compare_digest(computed, signature_header.strip().lower())
