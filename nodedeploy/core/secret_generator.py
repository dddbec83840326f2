"""
Node secret generation and masking.
"""

import base64
import secrets
from typing import Callable, Optional

from nodedeploy.constants import (
    SECRET_LENGTH,
    SECRET_MASK_PLACEHOLDER,
    SECRET_MASK_VISIBLE_CHARS,
)
from nodedeploy.exceptions import SecretError


def generate_node_secret(
    length: int = SECRET_LENGTH,
    token_bytes: Callable[[int], bytes] = secrets.token_bytes,
) -> str:
    """
    Generate an alphanumeric node secret.

    Random bytes are base64 encoded, stripped of anything that is not a
    letter or digit, and truncated to ``length``.

    Args:
        length: Secret length, at least 32
        token_bytes: Source of random bytes

    Returns:
        Alphanumeric secret of exactly ``length`` characters

    Raises:
        SecretError: If the length is too short or the filtered output is
            not long enough
    """
    if length < SECRET_LENGTH:
        raise SecretError(
            f"Node secrets must be at least {SECRET_LENGTH} characters (requested {length})"
        )

    encoded = base64.b64encode(token_bytes(length)).decode("ascii")
    filtered = "".join(ch for ch in encoded if ch.isascii() and ch.isalnum())

    if len(filtered) < length:
        raise SecretError(
            "Random source produced too few alphanumeric characters",
            context=f"Needed {length}, got {len(filtered)}",
        )

    return filtered[:length]


def mask_secret(value: Optional[str]) -> str:
    """Show at most the first 8 characters of a secret."""
    if not value or len(value) <= SECRET_MASK_VISIBLE_CHARS:
        return SECRET_MASK_PLACEHOLDER
    return f"{value[:SECRET_MASK_VISIBLE_CHARS]}..."
