from datetime import datetime, timezone


def utc(*args) -> datetime:
    """Timezone-aware UTC datetime, same arguments as ``datetime``."""
    return datetime(*args, tzinfo=timezone.utc)
