from typing import Dict, Optional, Set

from region_engine.domain.reconciliation_report import RepairReport, ShippingOptionRepairReport
from region_engine.domain.region import PriceType
from region_engine.interfaces.aggregate_store import AggregateStore
from region_engine.interfaces.time_source import TimeSource
from region_engine.observability.structured_runtime_logger import StructuredRuntimeLogger
from region_engine.services.conflict_retry import ConflictRetryPolicy, run_with_conflict_retry
from region_engine.services.system_time_source import SystemTimeSource
from region_engine.store.region_repository import ProviderKind, RegionRepository


class RelationshipRepairer:
    """
    Idempotent maintenance pass restoring the soft invariants of regions.

    Every non-deleted region ends up with at least one fulfillment and one
    payment provider link. Links are inserted with ON CONFLICT DO NOTHING,
    so concurrent or repeated runs never fail and only the first run changes state.
    A region removed by a concurrent merge mid-pass surfaces as a ConflictError;
    the whole pass is then rerun in a fresh transaction.
    """

    def __init__(
            self,
            store: AggregateStore,
            default_fulfillment_provider_id: str = "manual",
            default_payment_provider_id: str = "manual",
            repository: Optional[RegionRepository] = None,
            retry_policy: ConflictRetryPolicy = ConflictRetryPolicy(),
            runtime_logger: Optional[StructuredRuntimeLogger] = None,
    ):
        if not default_fulfillment_provider_id or not default_payment_provider_id:
            raise ValueError("default provider ids must be configured")
        self.store = store
        self.defaults: Dict[ProviderKind, str] = {
            ProviderKind.FULFILLMENT: default_fulfillment_provider_id,
            ProviderKind.PAYMENT: default_payment_provider_id,
        }
        self.repository = repository or RegionRepository()
        self.retry_policy = retry_policy
        self.runtime_logger = runtime_logger or StructuredRuntimeLogger(component="relationship_repairer")

    def repair(self) -> RepairReport:
        repaired, added = run_with_conflict_retry(
            self._repair,
            policy=self.retry_policy,
            runtime_logger=self.runtime_logger,
            event_type="REGION_REPAIR_CONFLICT_RETRY",
        )

        report = RepairReport(
            regions_repaired=len(repaired),
            fulfillment_links_added=added[ProviderKind.FULFILLMENT],
            payment_links_added=added[ProviderKind.PAYMENT],
        )
        if repaired:
            self.runtime_logger.emit(
                event_type="REGION_PROVIDERS_REPAIRED",
                region_ids=sorted(repaired),
                **report.to_dict(),
            )
        return report

    def _repair(self):
        # Counters live per attempt so a rolled-back attempt never leaks into the report.
        repaired: Set[str] = set()
        added: Dict[ProviderKind, int] = {kind: 0 for kind in ProviderKind}

        with self.store.transaction("repair_region_providers") as tx:
            for kind, provider_id in self.defaults.items():
                self.repository.ensure_catalog_provider(tx, kind, provider_id)
                for region_id in self.repository.regions_without_provider(tx, kind):
                    if self.repository.link_provider_if_absent(tx, kind, region_id, provider_id):
                        added[kind] += 1
                        repaired.add(region_id)
        return repaired, added


class ShippingOptionDefaultsRepairer:
    """
    Fills missing provider, price type and profile on live shipping options.
    """

    def __init__(
            self,
            store: AggregateStore,
            provider_id: str = "manual",
            price_type: str = "flat_rate",
            profile_id: str = "sp_01",
            repository: Optional[RegionRepository] = None,
            time_source: Optional[TimeSource] = None,
            retry_policy: ConflictRetryPolicy = ConflictRetryPolicy(),
            runtime_logger: Optional[StructuredRuntimeLogger] = None,
    ):
        # Rejected here rather than written into rows the reader cannot decode.
        price_type = PriceType(price_type).value
        self.store = store
        self.defaults = {"provider_id": provider_id, "price_type": price_type, "profile_id": profile_id}
        self.repository = repository or RegionRepository()
        self.time_source = time_source or SystemTimeSource()
        self.retry_policy = retry_policy
        self.runtime_logger = runtime_logger or StructuredRuntimeLogger(component="shipping_option_repairer")

    def repair(self) -> ShippingOptionRepairReport:
        options_repaired, fields_fixed = run_with_conflict_retry(
            self._repair,
            policy=self.retry_policy,
            runtime_logger=self.runtime_logger,
            event_type="SHIPPING_OPTION_REPAIR_CONFLICT_RETRY",
        )

        report = ShippingOptionRepairReport(options_repaired=options_repaired, fields_fixed=fields_fixed)
        if options_repaired:
            self.runtime_logger.emit(event_type="SHIPPING_OPTION_DEFAULTS_REPAIRED", **report.to_dict())
        return report

    def _repair(self):
        options_repaired = 0
        fields_fixed = 0
        with self.store.transaction("repair_shipping_option_defaults") as tx:
            now = self.time_source.stamp()
            for row in self.repository.shipping_options_missing_defaults(tx):
                values = {
                    column: default
                    for column, default in self.defaults.items()
                    if _needs_default(column, getattr(row, column))
                }
                if not values:
                    continue
                if self.repository.fill_shipping_option_fields(tx, row.id, values, now):
                    options_repaired += 1
                    fields_fixed += len(values)
        return options_repaired, fields_fixed


def _needs_default(column: str, value) -> bool:
    if value is None:
        return True
    return column == "price_type" and value not in {p.value for p in PriceType}
