"""UUID v7 generator for time-sortable session and workbook IDs."""

from uuid_extensions import uuid7


def generate_id(prefix: str = "") -> str:
    """Generate a UUID v7 string with optional prefix.

    Args:
        prefix: e.g. "sess_", "wb_", "out_"

    Returns:
        String like "wb_01926f4e8b7d7a8e9c0d1e2f3a4b5c6d" (no hyphens)
    """
    uid = uuid7().hex
    return f"{prefix}{uid}" if prefix else uid
