from __future__ import annotations

import hashlib
import hmac


def hmac_sha256_hex(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_hex_signature(secret: str, raw_body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(hmac_sha256_hex(secret, raw_body), signature.strip().lower())
