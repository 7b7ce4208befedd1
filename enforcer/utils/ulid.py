"""ULID generation for audit event IDs and platform event correlation IDs.

A ULID is 26 characters of Crockford Base32: a 48-bit millisecond timestamp
followed by 80 random bits. Lexicographic order matches creation order, which
lets the audit table be read back in insertion order without a second index.

Uses the `python-ulid` library. Do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Example::

        event_id = generate_ulid()
        # "01KJ0JRVHYA7KX32VPN5ZSCTMV"
        assert len(event_id) == 26
    """
    return str(ULID())
