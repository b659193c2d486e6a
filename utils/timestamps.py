from datetime import datetime
from typing import Optional


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def from_iso(value) -> Optional[datetime]:
    """Accept an ISO string (as stored in the document) or a datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    # Documents written by other tools may carry a trailing 'Z'
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    # The ledger compares naive local times only
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed
