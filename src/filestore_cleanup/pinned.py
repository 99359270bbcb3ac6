"""
Pin conflict parsing for block removal errors.

The node has no structured signal for "this block is pinned". The only
information is the error text of the failed block/rm call, e.g.

    pinned by QmXYZ directly

Detection is a prefix match on "pinned" and the blocking pin is the third
space-separated token. Both rules depend on the exact wording of the node's
error messages; if that wording changes, this module is what breaks.
"""

from typing import Optional

PIN_PREFIX = "pinned"
PIN_TOKEN_INDEX = 2


def is_pin_conflict(text: str) -> bool:
    return text.startswith(PIN_PREFIX)


def extract_pin_id(text: str) -> Optional[str]:
    """Return the pin identifier named in a pin conflict error, or None."""
    tokens = text.split(" ")
    if len(tokens) <= PIN_TOKEN_INDEX:
        return None
    return tokens[PIN_TOKEN_INDEX] or None
