"""
Signature Verification
HMAC-SHA256 checks for checkout callbacks and provider webhooks.

These are the only authentication boundary in front of settlement:
hash exactly the bytes the provider signed and compare in constant time.
"""
import hmac
import hashlib
from typing import Optional, Union

from marketplace.core.exceptions import ValidationError


def compute_signature(payload: bytes, secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_order_payment(
    order_id: str,
    payment_id: str,
    signature: str,
    secret: str
) -> bool:
    """
    Verify the signature returned to the client by checkout.

    The provider signs "<order_id>|<payment_id>" with the API key secret.

    Raises:
        ValidationError: If any field or the secret is missing
    """
    for field, value in (("order_id", order_id), ("payment_id", payment_id), ("signature", signature)):
        if not value:
            raise ValidationError(f"{field} is required", field=field)
    if not secret:
        raise ValidationError("Verification secret is not configured")

    expected = compute_signature(f"{order_id}|{payment_id}".encode("utf-8"), secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def verify_webhook(
    raw_body: Union[bytes, bytearray],
    signature_header: Optional[str],
    webhook_secret: str
) -> bool:
    """
    Verify a webhook delivery against the raw request body.

    The body must be the bytes as received; re-serialized JSON does not
    hash to the same value.
    """
    if not webhook_secret:
        raise ValidationError("Webhook secret is not configured")
    if not signature_header:
        return False

    expected = compute_signature(bytes(raw_body), webhook_secret)
    return hmac.compare_digest(expected.encode("ascii"), signature_header.strip().encode("utf-8"))
