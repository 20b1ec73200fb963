"""
Constant-time comparison and log sanitization helpers.
"""
import re
import secrets

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def timing_safe_equal(supplied: str, expected: str) -> bool:
    """
    Compare two secrets without leaking where they differ.
    Both values are padded to a common length before the constant-time comparison; the
    original lengths must also match, otherwise a NUL-padded prefix would compare equal.
    """
    a = supplied.encode("utf-8")
    b = expected.encode("utf-8")
    length = max(len(a), len(b), 1)
    padded_match = secrets.compare_digest(a.ljust(length, b"\0"), b.ljust(length, b"\0"))
    return padded_match and len(a) == len(b)


def sanitize_for_logging(value: str | None, max_length: int = 200) -> str:
    """Strip control characters (log injection) and truncate user-supplied strings."""
    if not value:
        return ""
    return _CONTROL_CHARS.sub("", value)[:max_length]
