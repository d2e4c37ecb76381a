from datetime import datetime, timezone
from typing import Callable

# All timestamps are naive UTC, matching the DATETIME columns in TiDB.
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
