"""Identifier generation for study sessions."""

from ulid import ULID

SESSION_ID_PREFIX = "ses_"


def generate_session_id() -> str:
    """Generate a sortable session ID using ULID."""
    return f"{SESSION_ID_PREFIX}{ULID()}"

