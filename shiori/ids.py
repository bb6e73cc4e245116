"""
Identifier helpers.

Board ids are UUID4 strings chosen by the API before the write; link ids are
assigned by the link store. Both end up inside Redis keys, so path
parameters are checked against ID_PATTERN before they reach a store.
"""
import re
import secrets
import string
import uuid

ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
LINK_ID_ALPHABET = string.ascii_letters + string.digits
LINK_ID_LENGTH = 20


def validate_id(value: str) -> bool:
    """Return True if value is safe to embed in a store key."""
    return ID_PATTERN.match(value) is not None


def new_board_id() -> str:
    return str(uuid.uuid4())


def new_link_id() -> str:
    """Generate a 20-character alphanumeric id."""
    return "".join(secrets.choice(LINK_ID_ALPHABET) for _ in range(LINK_ID_LENGTH))
