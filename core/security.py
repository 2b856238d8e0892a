"""
Credential masking helpers.

Secrets reach the engine through settings only; anything that ends up in
an exception, a log line or a sync report goes through these helpers first.
"""

from typing import Dict, Iterable, Optional

MASK = "****"
VISIBLE_TAIL = 4


def mask_secret(secret: Optional[str]) -> str:
    """Return the last four characters of a secret, or ``****`` when shorter."""
    if not isinstance(secret, str) or len(secret) < VISIBLE_TAIL:
        return MASK
    if len(secret) == VISIBLE_TAIL:
        # the whole value would be visible otherwise
        return MASK
    return secret[-VISIBLE_TAIL:]


def mask_credentials(credentials: Dict[str, Optional[str]]) -> Dict[str, str]:
    """Map credential names to their masked fingerprints."""
    return {f"{name}_tail": mask_secret(value) for name, value in credentials.items()}


def redact_secrets(text: Optional[str], secrets: Iterable[Optional[str]]) -> str:
    """Replace every occurrence of each secret in ``text`` with its masked form."""
    if not text:
        return ""
    redacted = text
    # Longest first so a secret that contains another is replaced whole
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        redacted = redacted.replace(secret, f"{MASK}{mask_secret(secret)}")
    return redacted
