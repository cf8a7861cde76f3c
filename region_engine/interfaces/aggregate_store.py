from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, Dict, Iterable, List, Optional


class StoreTransaction(ABC):
    """
    A single open unit of work against the aggregate store.
    Only valid inside the scope that produced it.
    """

    dialect: str

    @abstractmethod
    def execute(self, sql: Any, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        """Run a statement and return its rows (empty for statements that return none)."""
        pass

    @abstractmethod
    def execute_write(self, sql: Any, params: Optional[Dict[str, Any]] = None) -> int:
        """Run a mutating statement and return the affected row count."""
        pass

    @abstractmethod
    def lock_regions(self, region_ids: Iterable[str]) -> List[Any]:
        """
        Take exclusive row locks on the given regions for the rest of the transaction.
        Locks are acquired in id order. Returns the rows (id, name, currency_code, deleted_at) that exist.
        """
        pass


class AggregateStore(ABC):
    """
    Transactional relational store holding regions and their dependents.
    Commits when the scope exits cleanly, rolls back on any exception,
    and always releases the underlying connection.
    """

    @abstractmethod
    def transaction(self, operation: str, entity_id: Optional[str] = None) -> AbstractContextManager:
        pass

    @abstractmethod
    def read(self, operation: str, entity_id: Optional[str] = None) -> AbstractContextManager:
        pass
