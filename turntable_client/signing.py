"""
Request signing helpers.
"""

import hashlib
import random


def sha1(text: str) -> str:
    """Hex SHA-1 digest of a string."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def random_token() -> str:
    """Throwaway signing token, as the web client sends alongside votes and snags."""
    return sha1(str(random.random()))
