import hashlib
import re

_IDENTITY_RE = re.compile(r"^[0-9a-f]{64}$")


def reference_identity(reference: str) -> str:
    """Stable identity of a reference: SHA-256 of the stripped string."""
    return hashlib.sha256(str(reference).strip().encode("utf-8")).hexdigest()


def is_identity(value: str) -> bool:
    """Whether a string looks like a value produced by reference_identity()."""
    return bool(_IDENTITY_RE.match(value or ""))
