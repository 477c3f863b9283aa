"""HMAC-SHA256 verification of GitHub webhook deliveries.

GitHub signs every delivery with the shared webhook secret and sends the
digest as ``X-Hub-Signature-256: sha256=<hex>``. The digest covers the exact
request bytes, so verification must run before the body is parsed.
"""

import hashlib
import hmac
import re
from typing import Optional


SIGNATURE_PREFIX = "sha256="

# GitHub always sends 64 lowercase hex digits
_HEX_DIGEST = re.compile(r"[0-9a-f]{64}")


def compute_signature(secret: bytes, raw_body: bytes) -> str:
    """Compute the header value GitHub would send for a body.

    Args:
        secret: The shared webhook secret.
        raw_body: The raw request body.

    Returns:
        The signature in ``sha256=<hex>`` form.
    """
    digest = hmac.new(secret, raw_body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(
    secret: bytes,
    raw_body: bytes,
    header_signature: Optional[str],
) -> bool:
    """Check a delivery signature against the raw request body.

    Args:
        secret: The shared webhook secret.
        raw_body: The raw, unparsed request body.
        header_signature: The X-Hub-Signature-256 header value, if present.

    Returns:
        True only when the header is exactly ``sha256=`` followed by the
        lowercase hex HMAC-SHA256 of ``raw_body``. A missing header, a
        missing prefix, malformed hex or a mismatch all return False.
    """
    if not header_signature or not header_signature.startswith(SIGNATURE_PREFIX):
        return False

    hex_digest = header_signature[len(SIGNATURE_PREFIX):]
    if not _HEX_DIGEST.fullmatch(hex_digest):
        return False
    received = bytes.fromhex(hex_digest)

    expected = hmac.new(secret, raw_body, hashlib.sha256).digest()
    return hmac.compare_digest(expected, received)
