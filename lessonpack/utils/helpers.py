"""
Common utility functions and helpers.
"""
from typing import Any
import hashlib
import json


def generate_hash(text: str) -> str:
    """
    Generate SHA256 hash of text.

    Args:
        text: Text to hash

    Returns:
        Hex digest of hash
    """
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def canonical_json(value: Any) -> str:
    """
    Serialise *value* so that equal data always yields identical text.

    Keys are sorted and separators carry no whitespace.
    """
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(',', ':'))


def truncate_text(text: str, max_length: int = 200, suffix: str = '…') -> str:
    """
    Truncate text to a maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length including the suffix
        suffix: Appended when the text was cut

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix
