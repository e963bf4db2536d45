"""Time helpers. All persisted timestamps are epoch milliseconds."""
import time
from datetime import datetime, timezone
from typing import Optional


def now_ms() -> int:
    return int(time.time() * 1000)


def iso_from_ms(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
