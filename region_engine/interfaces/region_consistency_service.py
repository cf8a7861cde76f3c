from abc import ABC, abstractmethod
from typing import Optional

from region_engine.domain.reconciliation_report import (
    ReconciliationReport,
    RegionStatusReport,
    RepairReport,
    ShippingOptionRepairReport,
)
from region_engine.domain.region import RegionAggregate
from region_engine.domain.region_changes import RegionFieldChanges, RegionReplacementLists


class RegionConsistencyService(ABC):
    """
    Interface for the region aggregate consistency engine.
    Exposes reads, atomic updates, duplicate reconciliation and maintenance passes.
    """

    @abstractmethod
    def get_region_aggregate(self, region_id: str) -> RegionAggregate:
        pass

    @abstractmethod
    def update_region_aggregate(
        self,
        region_id: str,
        changes: Optional[RegionFieldChanges] = None,
        lists: Optional[RegionReplacementLists] = None,
    ) -> RegionAggregate:
        pass

    @abstractmethod
    def reconcile_duplicate_regions(self, dry_run: bool = False) -> ReconciliationReport:
        pass

    @abstractmethod
    def repair_region_provider_associations(self) -> RepairReport:
        pass

    @abstractmethod
    def repair_shipping_option_defaults(self) -> ShippingOptionRepairReport:
        pass

    @abstractmethod
    def get_region_status_report(self) -> RegionStatusReport:
        pass
