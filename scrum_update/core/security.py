"""
Identifier and token helpers.
"""

import secrets
import uuid


def generate_request_id() -> str:
    """
    Generate a unique request ID for tracing.

    Returns:
        A random 8-byte hex string prefixed with 'req_'
    """
    return f"req_{secrets.token_hex(8)}"


def generate_local_user_id() -> str:
    """
    Generate an anonymous browser identifier.

    Returns:
        A UUID4 hex string (no dashes)
    """
    return uuid.uuid4().hex

