from datetime import datetime, timezone

from region_engine.interfaces.time_source import TimeSource


class SystemTimeSource(TimeSource):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)
