from typing import List, Optional

from region_engine.config.settings import Settings
from region_engine.domain.reconciliation_report import (
    DonorFailure,
    MergeOutcome,
    ReconciliationReport,
    RegionStatusReport,
    RepairReport,
    ShippingOptionRepairReport,
)
from region_engine.domain.region import RegionAggregate
from region_engine.domain.region_changes import RegionFieldChanges, RegionReplacementLists
from region_engine.interfaces.aggregate_store import AggregateStore
from region_engine.interfaces.region_consistency_service import RegionConsistencyService
from region_engine.interfaces.time_source import TimeSource
from region_engine.observability.structured_runtime_logger import StructuredRuntimeLogger
from region_engine.services.conflict_retry import ConflictRetryPolicy
from region_engine.services.duplicate_detector import DuplicateDetector
from region_engine.services.region_merger import RegionMerger
from region_engine.services.region_reader import RegionReader
from region_engine.services.region_updater import RegionUpdater
from region_engine.services.relationship_repairer import RelationshipRepairer, ShippingOptionDefaultsRepairer
from region_engine.services.system_time_source import SystemTimeSource
from region_engine.store.region_repository import RegionRepository
from region_engine.store.sql_aggregate_store import SqlAggregateStore


class StandardRegionConsistencyService(RegionConsistencyService):
    """
    Standard implementation of RegionConsistencyService.
    Wires reader, updater, detector, merger and repairers over one aggregate store.
    """

    def __init__(
            self,
            store: AggregateStore,
            reader: RegionReader,
            updater: RegionUpdater,
            detector: DuplicateDetector,
            merger: RegionMerger,
            repairer: RelationshipRepairer,
            shipping_repairer: ShippingOptionDefaultsRepairer,
            repository: Optional[RegionRepository] = None,
            repair_after_reconcile: bool = True,
    ):
        self.store = store
        self.reader = reader
        self.updater = updater
        self.detector = detector
        self.merger = merger
        self.repairer = repairer
        self.shipping_repairer = shipping_repairer
        self.repository = repository or RegionRepository()
        self.repair_after_reconcile = repair_after_reconcile

    @classmethod
    def build(
            cls,
            store: AggregateStore,
            config: Settings,
            time_source: Optional[TimeSource] = None,
            runtime_logger: Optional[StructuredRuntimeLogger] = None,
    ) -> "StandardRegionConsistencyService":
        repository = RegionRepository()
        time_source = time_source or SystemTimeSource()
        runtime_logger = runtime_logger or StructuredRuntimeLogger()
        retry_policy = ConflictRetryPolicy(retries=config.CONFLICT_RETRY_ATTEMPTS)
        reader = RegionReader(store, repository)
        return cls(
            store=store,
            reader=reader,
            updater=RegionUpdater(
                store,
                reader=reader,
                repository=repository,
                time_source=time_source,
                retry_policy=retry_policy,
                runtime_logger=runtime_logger.bind(component="region_updater"),
            ),
            detector=DuplicateDetector(
                store, repository, runtime_logger=runtime_logger.bind(component="duplicate_detector")
            ),
            merger=RegionMerger(
                store,
                repository,
                retry_policy=retry_policy,
                runtime_logger=runtime_logger.bind(component="region_merger"),
            ),
            repairer=RelationshipRepairer(
                store,
                default_fulfillment_provider_id=config.DEFAULT_FULFILLMENT_PROVIDER_ID,
                default_payment_provider_id=config.DEFAULT_PAYMENT_PROVIDER_ID,
                repository=repository,
                retry_policy=retry_policy,
                runtime_logger=runtime_logger.bind(component="relationship_repairer"),
            ),
            shipping_repairer=ShippingOptionDefaultsRepairer(
                store,
                provider_id=config.DEFAULT_SHIPPING_PROVIDER_ID,
                price_type=config.DEFAULT_SHIPPING_PRICE_TYPE,
                profile_id=config.DEFAULT_SHIPPING_PROFILE_ID,
                repository=repository,
                time_source=time_source,
                retry_policy=retry_policy,
                runtime_logger=runtime_logger.bind(component="shipping_option_repairer"),
            ),
            repository=repository,
            repair_after_reconcile=config.REPAIR_AFTER_RECONCILE,
        )

    @classmethod
    def from_settings(cls, config: Settings) -> "StandardRegionConsistencyService":
        store = SqlAggregateStore.from_dsn(config.DATABASE_URL, statement_timeout_ms=config.STATEMENT_TIMEOUT_MS)
        return cls.build(store, config)

    def get_region_aggregate(self, region_id: str) -> RegionAggregate:
        return self.reader.get(region_id)

    def update_region_aggregate(
            self,
            region_id: str,
            changes: Optional[RegionFieldChanges] = None,
            lists: Optional[RegionReplacementLists] = None,
    ) -> RegionAggregate:
        return self.updater.update(region_id, changes, lists)

    def reconcile_duplicate_regions(self, dry_run: bool = False) -> ReconciliationReport:
        groups = self.detector.find_groups()
        if dry_run:
            return ReconciliationReport(groups_found=len(groups), dry_run=True, planned=groups)

        merged: List[MergeOutcome] = []
        failures: List[DonorFailure] = []
        for group in groups:
            outcome = self.merger.merge(group)
            merged.append(outcome)
            failures.extend(outcome.failures)

        repair = None
        if self.repair_after_reconcile and groups:
            repair = self.repairer.repair()

        return ReconciliationReport(groups_found=len(groups), merged=merged, failures=failures, repair=repair)

    def repair_region_provider_associations(self) -> RepairReport:
        return self.repairer.repair()

    def repair_shipping_option_defaults(self) -> ShippingOptionRepairReport:
        return self.shipping_repairer.repair()

    def get_region_status_report(self) -> RegionStatusReport:
        with self.store.read("region_status_report") as tx:
            return RegionStatusReport(
                regions=self.repository.region_statuses(tx),
                orphaned_shipping_option_ids=self.repository.orphaned_shipping_option_ids(tx),
                orphaned_country_codes=self.repository.orphaned_country_codes(tx),
            )
