from itertools import groupby
from typing import List, Optional

from region_engine.domain.duplicate_group import DuplicateGroup
from region_engine.interfaces.aggregate_store import AggregateStore
from region_engine.observability.structured_runtime_logger import StructuredRuntimeLogger
from region_engine.store.region_repository import RegionRepository


class DuplicateDetector:
    """
    Groups non-deleted regions by (name, currency_code).
    Only groups with two or more members are reported, each already in survivor order.
    """

    def __init__(
            self,
            store: AggregateStore,
            repository: Optional[RegionRepository] = None,
            runtime_logger: Optional[StructuredRuntimeLogger] = None,
    ):
        self.store = store
        self.repository = repository or RegionRepository()
        self.runtime_logger = runtime_logger or StructuredRuntimeLogger(component="duplicate_detector")

    def find_groups(self) -> List[DuplicateGroup]:
        with self.store.read("detect_duplicate_regions") as tx:
            entries = self.repository.list_region_members(tx)

        def _key(entry):
            return (entry["name"], entry["currency_code"])

        groups: List[DuplicateGroup] = []
        for (name, currency_code), grouped in groupby(sorted(entries, key=_key), key=_key):
            members = [entry["member"] for entry in grouped]
            if len(members) < 2:
                continue
            groups.append(DuplicateGroup.build(name, currency_code, members))

        if groups:
            self.runtime_logger.emit(
                event_type="DUPLICATE_GROUPS_DETECTED",
                groups=len(groups),
                regions=sum(len(g.members) for g in groups),
            )
        return groups
