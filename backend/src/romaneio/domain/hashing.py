"""
Stable hashing of access keys.

Every value the engine has to make up (synthetic records, missing issue
dates) is derived from a hash of the access key, so that querying the same
key twice always yields the same answer.

Design Decisions:
- CRC32 chosen because it is cheap, stable across platforms and Python
  versions (unlike the builtin hash()), and always non-negative in Python
- Day is kept within 1-28 so every month/day combination is a real date
"""

import zlib
from datetime import date

from .access_key import AccessKeyFields


def key_hash(access_key: str) -> int:
    """
    Compute the CRC32 of an access key.

    Args:
        access_key: Raw 44-digit key

    Returns:
        Unsigned 32-bit integer
    """
    return zlib.crc32(access_key.encode("ascii"))


def derived_issue_date(fields: AccessKeyFields) -> date:
    """
    Deterministic issue date for a key whose real date is unknown.

    Day and month come from the key hash; the year is the one embedded in
    the key.
    """
    h = key_hash(fields.raw)
    day = (h % 28) + 1
    month = (h % 12) + 1
    return date(fields.full_year, month, day)
