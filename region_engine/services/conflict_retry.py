import logging
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from region_engine.domain.exceptions import ConflictError
from region_engine.observability.structured_runtime_logger import StructuredRuntimeLogger

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ConflictRetryPolicy:
    # Extra attempts after the first, each with a fresh transaction.
    retries: int = 1


def run_with_conflict_retry(
    operation: Callable[[], T],
    policy: ConflictRetryPolicy = ConflictRetryPolicy(),
    runtime_logger: Optional[StructuredRuntimeLogger] = None,
    event_type: str = "CONFLICT_RETRY",
) -> T:
    """
    Runs `operation`, which must open its own transaction, and repeats it on ConflictError.
    The last ConflictError is surfaced once retries are exhausted.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except ConflictError as exc:
            if attempt >= policy.retries:
                raise
            attempt += 1
            logger.warning(f"Conflict during {exc.operation} for {exc.entity_id}, retrying ({attempt}/{policy.retries})")
            if runtime_logger:
                runtime_logger.emit(
                    event_type=event_type,
                    operation=exc.operation,
                    entity_id=exc.entity_id,
                    attempt=attempt,
                    reason=exc.message,
                )
