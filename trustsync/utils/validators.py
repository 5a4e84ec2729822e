"""Input validation and naming utilities."""

import re

PEM_CERTIFICATE_MARKER = "-----BEGIN CERTIFICATE-----"

_FINGERPRINT_PATTERN = re.compile(r"^[0-9a-f]{64}$")
_SAFE_NAME_CHARS = re.compile(r"[A-Za-z0-9.]")

TRUTHY_VALUES = frozenset({"true", "1", "yes", "on"})


def looks_like_pem_certificate(content: str) -> bool:
    """
    Check for a recognizable PEM certificate block.

    Args:
        content: Text to check

    Returns:
        True if both BEGIN and END certificate markers are present
    """
    return bool(content) and PEM_CERTIFICATE_MARKER in content and "-----END CERTIFICATE-----" in content


def normalize_fingerprint(value: str) -> str:
    """
    Normalize a SHA-256 fingerprint to lowercase hex without separators.

    Args:
        value: Fingerprint as printed by ``step`` or with ``:`` separators

    Returns:
        Normalized fingerprint

    Raises:
        ValueError: If the value is not a SHA-256 hex digest
    """
    candidate = value.strip().lower().replace(":", "")
    if not _FINGERPRINT_PATTERN.match(candidate):
        raise ValueError(f"Not a SHA-256 fingerprint: {value.strip()[:80]!r}")
    return candidate


def is_truthy(value: str) -> bool:
    """Interpret an environment flag value."""
    return value.strip().lower() in TRUTHY_VALUES


def encode_name_component(value: str) -> str:
    """
    Encode a user or context name for use inside a trust record file name.

    Characters outside ``[A-Za-z0-9.]`` (including ``-``, the component
    separator, and ``_``, the escape character) are written as ``_xx`` per
    UTF-8 byte, so distinct inputs always give distinct outputs.

    Example:
        >>> encode_name_component("desktop-linux")
        'desktop_2dlinux'
    """
    parts = []
    for char in value:
        if _SAFE_NAME_CHARS.match(char):
            parts.append(char)
        else:
            parts.extend(f"_{byte:02x}" for byte in char.encode("utf-8"))
    return "".join(parts)


def host_record_stem(prefix: str, user: str, context: str) -> str:
    """
    Build the host trust record file stem ``<prefix>-<user>-<context>``.

    Args:
        prefix: Fixed record prefix
        user: Operator user name
        context: Runtime context identity

    Returns:
        File stem, unique per ``(user, context)`` pair
    """
    if not user or not context:
        raise ValueError("user and context are required for a host trust record")
    return f"{prefix}-{encode_name_component(user)}-{encode_name_component(context)}"
