from abc import ABC, abstractmethod
from datetime import datetime


class TimeSource(ABC):
    """
    Clock behind every updated_at written to regions and shipping options.
    """

    @abstractmethod
    def now(self) -> datetime:
        pass

    def stamp(self) -> datetime:
        """now(), rejected if naive: rows are stored as TIMESTAMPTZ."""
        value = self.now()
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValueError(f"{type(self).__name__} returned a naive datetime: {value.isoformat()}")
        return value
