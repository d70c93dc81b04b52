"""Employee number derivation.

The terminal keys people by employee number. Students are numbered by
hashing their display name, so re-enrolling the same name always targets the
same record. Only 32 bits of the hash are kept: two different names can
derive the same number, and the device would then treat the second student as
the first. Batches detect this among their own students; collisions with
people enrolled by earlier runs go unnoticed.
"""

from __future__ import annotations

import hashlib

EMPLOYEE_NO_LENGTH = 8


def employee_no_from_name(name: str) -> str:
    """First 8 hex characters (upper case) of the MD5 of the UTF-8 name."""
    return hashlib.md5(name.encode("utf-8")).hexdigest()[:EMPLOYEE_NO_LENGTH].upper()
