import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class StructuredRuntimeLogger:
    """
    JSON-lines logger for update, merge and repair paths.

    Fields given at construction (or via bind) are stamped on every event,
    so each line carries the operation and entity it belongs to. Fields
    passed to emit win over the defaults.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, **defaults: Any):
        self._logger = logger or logging.getLogger("region_engine.runtime")
        self.defaults: Dict[str, Any] = defaults

    def bind(self, **fields: Any) -> "StructuredRuntimeLogger":
        return StructuredRuntimeLogger(self._logger, **{**self.defaults, **fields})

    def emit(self, event_type: str, **fields: Any) -> None:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
        }
        payload.update(self.defaults)
        payload.update(fields)
        self._logger.info(json.dumps(payload, default=str, ensure_ascii=True))
