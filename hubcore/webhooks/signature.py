"""HMAC signatures for inbound webhook payloads."""

import hashlib
import hmac
import re

SIGNATURE_ALGORITHMS = {
    "sha256": hashlib.sha256,
    "sha1": hashlib.sha1,
}
_HEX_DIGEST = re.compile(r"^[0-9a-fA-F]+$")


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def compute_signature(
    payload: str | bytes, secret: str | bytes, algorithm: str = "sha256"
) -> str:
    """Return the ``<algorithm>=<hex hmac>`` header value for ``payload``."""
    digestmod = SIGNATURE_ALGORITHMS[algorithm]
    digest = hmac.new(_as_bytes(secret), _as_bytes(payload), digestmod).hexdigest()
    return f"{algorithm}={digest}"


def verify_signature(
    payload: str | bytes,
    signature: str | None,
    secret: str | bytes | None,
    allow_sha1: bool = True,
) -> bool:
    """
    Check a signature header against the payload.

    Malformed headers, unsupported algorithms and non-hex digests all verify
    as False. The digest comparison is constant-time.
    """
    if not signature or not secret or not isinstance(signature, str):
        return False

    algorithm, sep, provided = signature.partition("=")
    if not sep or not provided:
        return False
    if algorithm not in SIGNATURE_ALGORITHMS:
        return False
    if algorithm == "sha1" and not allow_sha1:
        return False
    if not _HEX_DIGEST.match(provided):
        return False

    expected = compute_signature(payload, secret, algorithm).partition("=")[2]
    return hmac.compare_digest(expected, provided.lower())
