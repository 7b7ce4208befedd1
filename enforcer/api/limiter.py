"""Shared slowapi limiter for the key-generation endpoint.

Generation is CPU-heavy (RSA) and each call revokes the caller's previous
USER key, so it is capped per client address.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

KEY_GENERATION_RATE_LIMIT = "10/minute"
