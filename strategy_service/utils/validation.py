"""Address and percentage validation helpers."""

import re

import base58

_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def is_valid_mint(address: str) -> bool:
    """A mint is a base58 string that decodes to a 32-byte public key."""
    if not isinstance(address, str) or not _BASE58_RE.match(address):
        return False
    try:
        return len(base58.b58decode(address)) == 32
    except ValueError:
        return False


def is_valid_percentage(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return 1 <= value <= 100
