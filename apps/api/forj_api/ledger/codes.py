"""Human-transcribable verification codes.

Sixteen characters from an alphabet without look-alikes (no 0/O, 1/I),
the last one a Luhn mod-32 check character, printed in groups of four:
``K7QM-2XWD-9HRT-C4NB``.
"""

import re
import secrets
from typing import Optional

ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 16
GROUP_SIZE = 4

_BASE = len(ALPHABET)
_SEPARATORS = re.compile(r"[\s\-_.]+")


def _luhn_sum(characters: str, double_first: bool) -> int:
    total = 0
    double = double_first
    for char in reversed(characters):
        addend = ALPHABET.index(char) * (2 if double else 1)
        total += addend // _BASE + addend % _BASE
        double = not double
    return total


def check_character(payload: str) -> str:
    """Check character appended to ``payload``."""
    total = _luhn_sum(payload, double_first=True)
    return ALPHABET[(_BASE - total % _BASE) % _BASE]


def has_valid_checksum(code: str) -> bool:
    return _luhn_sum(code, double_first=False) % _BASE == 0


def format_code(code: str) -> str:
    return "-".join(code[i:i + GROUP_SIZE] for i in range(0, len(code), GROUP_SIZE))


def generate_code() -> str:
    """New random code in display form."""
    payload = "".join(secrets.choice(ALPHABET) for _ in range(CODE_LENGTH - 1))
    return format_code(payload + check_character(payload))


def normalize_code(code: Optional[str]) -> Optional[str]:
    """Canonical lookup form of a user-typed code, or None if it cannot be one.

    Case and separators are ignored. Wrong length, foreign characters and a
    bad check character all yield None alike.
    """
    if not code:
        return None
    candidate = _SEPARATORS.sub("", code).upper()
    if len(candidate) != CODE_LENGTH:
        return None
    if any(char not in ALPHABET for char in candidate):
        return None
    if not has_valid_checksum(candidate):
        return None
    return candidate
