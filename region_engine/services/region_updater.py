from typing import Optional

from region_engine.domain.exceptions import RegionDisappeared, RegionEngineError, RegionNotFound, ValidationError
from region_engine.domain.region import RegionAggregate
from region_engine.domain.region_changes import RegionFieldChanges, RegionReplacementLists
from region_engine.interfaces.aggregate_store import AggregateStore, StoreTransaction
from region_engine.interfaces.time_source import TimeSource
from region_engine.observability.structured_runtime_logger import StructuredRuntimeLogger
from region_engine.services.conflict_retry import ConflictRetryPolicy, run_with_conflict_retry
from region_engine.services.region_reader import RegionReader
from region_engine.services.system_time_source import SystemTimeSource
from region_engine.store.region_repository import ProviderKind, RegionRepository


class RegionUpdater:
    """
    Applies a sparse field update plus wholesale replacement of the provider and
    country lists to one region, atomically.

    The region row is locked for the whole transaction, so two updates of the
    same region serialise while updates of different regions do not contend.
    Validation happens before the first mutating statement; any failure after
    that rolls the whole transaction back.
    """

    def __init__(
            self,
            store: AggregateStore,
            reader: Optional[RegionReader] = None,
            repository: Optional[RegionRepository] = None,
            time_source: Optional[TimeSource] = None,
            retry_policy: ConflictRetryPolicy = ConflictRetryPolicy(),
            runtime_logger: Optional[StructuredRuntimeLogger] = None,
    ):
        self.store = store
        self.repository = repository or RegionRepository()
        self.reader = reader or RegionReader(store, self.repository)
        self.time_source = time_source or SystemTimeSource()
        self.retry_policy = retry_policy
        self.runtime_logger = runtime_logger or StructuredRuntimeLogger(component="region_updater")

    def update(
            self,
            region_id: str,
            changes: Optional[RegionFieldChanges] = None,
            lists: Optional[RegionReplacementLists] = None,
    ) -> RegionAggregate:
        changes = (changes or RegionFieldChanges()).validate(region_id)
        lists = (lists or RegionReplacementLists()).validate(region_id)

        try:
            run_with_conflict_retry(
                lambda: self._apply(region_id, changes, lists),
                policy=self.retry_policy,
                runtime_logger=self.runtime_logger,
                event_type="REGION_UPDATE_CONFLICT_RETRY",
            )
        except RegionEngineError as exc:
            self.runtime_logger.emit(
                event_type="REGION_UPDATE_FAILED",
                region_id=region_id,
                error=type(exc).__name__,
                reason=exc.message,
            )
            raise

        aggregate = self.reader.get_or_none(region_id)
        if aggregate is None:
            raise RegionDisappeared(
                "region was removed concurrently after the update committed",
                "update_region",
                region_id,
            )

        self.runtime_logger.emit(
            event_type="REGION_UPDATED",
            region_id=region_id,
            fields=sorted(changes.present()),
            replaced=[
                name
                for name, value in (
                    ("fulfillment_providers", lists.fulfillment_providers),
                    ("payment_providers", lists.payment_providers),
                    ("countries", lists.countries),
                )
                if value is not None
            ],
        )
        return aggregate

    def _apply(self, region_id: str, changes: RegionFieldChanges, lists: RegionReplacementLists) -> None:
        with self.store.transaction("update_region", region_id) as tx:
            locked = tx.lock_regions([region_id])
            if not locked or locked[0].deleted_at is not None:
                raise RegionNotFound("region does not exist or is deleted", "update_region", region_id)

            self._check_references(tx, region_id, changes, lists)

            present = changes.present()
            if present:
                self.repository.update_region_fields(tx, region_id, present, self.time_source.stamp())

            if lists.fulfillment_providers is not None:
                self.repository.replace_provider_links(
                    tx, ProviderKind.FULFILLMENT, region_id, lists.fulfillment_providers
                )
            if lists.payment_providers is not None:
                self.repository.replace_provider_links(
                    tx, ProviderKind.PAYMENT, region_id, lists.payment_providers
                )
            if lists.countries is not None:
                self.repository.replace_countries(tx, region_id, lists.countries)

    def _check_references(
            self,
            tx: StoreTransaction,
            region_id: str,
            changes: RegionFieldChanges,
            lists: RegionReplacementLists,
    ) -> None:
        # Read-only checks; nothing has been written yet when these raise.
        currency_code = changes.present().get("currency_code")
        if currency_code is not None and self.repository.fetch_currency(tx, currency_code) is None:
            raise ValidationError(f"unknown currency code {currency_code!r}", "update_region", region_id)

        for kind, provider_ids in (
            (ProviderKind.FULFILLMENT, lists.fulfillment_providers),
            (ProviderKind.PAYMENT, lists.payment_providers),
        ):
            if not provider_ids:
                continue
            missing = self.repository.missing_provider_ids(tx, kind, provider_ids)
            if missing:
                raise ValidationError(
                    f"unknown {kind.value} providers: {', '.join(missing)}",
                    "update_region",
                    region_id,
                )
