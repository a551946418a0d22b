import hashlib
import hmac


def sign(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check an X-Hub-Signature-256 header against the raw request body."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(sign(body, secret), signature)
