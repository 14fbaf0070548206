"""Database defaults."""
import uuid

import ulid


def gen_ulid() -> uuid.UUID:
    """
    Generate a ULID.

    ULIDs are 48 bits of timestamp + 80 bits of randomness, so row ids sort roughly by creation time while still
    fitting in a UUID column.
    """
    return ulid.new().uuid
