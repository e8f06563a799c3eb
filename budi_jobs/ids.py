"""
Identifier generation.

Identifiers are ``<prefix><timestamp><suffix>``: the millisecond clock in
base36 keeps them roughly sortable and easy to eyeball in logs, and a
16-character random base36 suffix (~82 bits) keeps collisions within the
same millisecond negligible.
"""

import secrets
import time

from budi_jobs.constants import (
    GROUP_ID_PREFIX,
    JOB_ID_PREFIX,
    LEASE_TOKEN_PREFIX,
    PROJECT_ID_PREFIX,
    TRACK_ID_PREFIX,
)

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_SUFFIX_LENGTH = 16


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def _random_suffix(length: int = _SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_id(prefix: str = "") -> str:
    """
    Generate a short collision-resistant identifier.

    Args:
        prefix: Namespace prefix, e.g. ``trk_``.

    Returns:
        The identifier string.
    """
    return f"{prefix}{_base36(time.time_ns() // 1_000_000)}{_random_suffix()}"


def new_job_id() -> str:
    return generate_id(JOB_ID_PREFIX)


def new_track_id() -> str:
    return generate_id(TRACK_ID_PREFIX)


def new_project_id() -> str:
    return generate_id(PROJECT_ID_PREFIX)


def new_group_id() -> str:
    return generate_id(GROUP_ID_PREFIX)


def new_lease_token() -> str:
    return generate_id(LEASE_TOKEN_PREFIX)
