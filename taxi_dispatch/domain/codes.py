"""
Driver access-code generation.

Codes are read aloud and typed on a phone keyboard, so the alphabet drops
characters that are easy to confuse (0/O, 1/I).
"""

from __future__ import annotations

import secrets
import uuid
from typing import Callable

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def random_code(length: int = 8) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def fallback_code(length: int = 8) -> str:
    """Identifier used once the random alphabet keeps colliding."""
    return uuid.uuid4().hex[:length].upper()


def pick_unique_code(
    is_taken: Callable[[str], bool],
    length: int = 8,
    max_attempts: int = 10,
) -> str:
    """
    Draw random codes until one is not *taken*.

    After ``max_attempts`` collisions we stop drawing from the friendly
    alphabet and fall back to a uuid-derived code.
    """
    for _ in range(max_attempts):
        code = random_code(length)
        if not is_taken(code):
            return code
    return fallback_code(length)


def normalise_code(raw: str) -> str:
    return raw.strip().upper()
