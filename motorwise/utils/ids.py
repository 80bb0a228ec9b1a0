"""Text identifiers (ULID format) for stored records and queued jobs."""

from ulid import ULID


def generate_id() -> str:
    """Generate a sortable text ID."""
    return str(ULID())
