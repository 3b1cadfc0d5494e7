from __future__ import annotations

from datetime import datetime, timezone


class TimeProvider:
    def utc_now(self) -> datetime:
        """Naive UTC, matching the DateTime columns."""
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def utc_timestamp(self) -> int:
        return int(self.utc_now().replace(tzinfo=timezone.utc).timestamp())


default_time_provider = TimeProvider()
