"""Request fingerprinting for idempotency.

A fingerprint captures the method, path and serialized body of the request
that claims a key. The path is kept as requested; the digest is computed from
canonical representations of the components so logically identical requests
produce the same digest. URL paths are case-sensitive and stay so in the
digest.
"""

import hashlib
from urllib.parse import parse_qs, urlencode

from idempotency_gate.models import RequestFingerprint


def compute_fingerprint(
    method: str,
    path: str,
    body: bytes,
    query_string: str = "",
) -> RequestFingerprint:
    """Capture a request fingerprint.

    The digest is computed from:
    1. Canonical method: uppercase
    2. Canonical path: strip trailing / (except root), case kept
    3. Sorted query params: parse, sort keys, re-encode
    4. Body SHA-256 digest
    5. Final: SHA-256 of the components joined by newlines

    Args:
        method: HTTP method (e.g., "POST")
        path: URL path component
        body: Request body as bytes
        query_string: Raw query string (without leading '?')

    Returns:
        RequestFingerprint with the captured request and its digest

    Examples:
        >>> fp = compute_fingerprint("post", "/api/payment/", b'{"amount": 50}')
        >>> fp.method, fp.path
        ('POST', '/api/payment/')
        >>> len(fp.digest)
        64
    """
    canonical_method = method.upper()

    request_path = path or "/"
    canonical_path = request_path
    if canonical_path != "/" and canonical_path.endswith("/"):
        canonical_path = canonical_path.rstrip("/") or "/"

    canonical_query = _canonicalize_query_string(query_string)
    body_digest = hashlib.sha256(body).hexdigest()

    fingerprint_input = "\n".join(
        [canonical_method, canonical_path, canonical_query, body_digest]
    )

    return RequestFingerprint(
        method=canonical_method,
        path=request_path,
        query_string=canonical_query,
        body=body.decode("utf-8", errors="replace"),
        digest=hashlib.sha256(fingerprint_input.encode("utf-8")).hexdigest(),
    )


def _canonicalize_query_string(query_string: str) -> str:
    """Canonicalize query string by parsing, sorting, and re-encoding."""
    if not query_string or not query_string.strip():
        return ""

    parsed = parse_qs(query_string, keep_blank_values=True)

    sorted_params: list[tuple[str, str]] = []
    for key in sorted(parsed.keys()):
        for value in sorted(parsed[key]):
            sorted_params.append((key, value))

    return urlencode(sorted_params, doseq=False)
