from typing import List, Optional

from region_engine.domain.duplicate_group import DuplicateGroup
from region_engine.domain.exceptions import DuplicateGroupChanged, RegionEngineError, RegionNotFound
from region_engine.domain.reconciliation_report import DonorFailure, MergeOutcome
from region_engine.interfaces.aggregate_store import AggregateStore
from region_engine.observability.structured_runtime_logger import StructuredRuntimeLogger
from region_engine.services.conflict_retry import ConflictRetryPolicy, run_with_conflict_retry
from region_engine.store.region_repository import RegionRepository


class RegionMerger:
    """
    Folds the donors of a duplicate group into its survivor.

    Each donor is migrated in its own transaction with both rows locked:
    shipping options and countries move to the survivor, the donor's provider
    links are dropped, and the donor row is hard-deleted. A failing donor is
    rolled back untouched and reported; the remaining donors still merge.
    """

    def __init__(
            self,
            store: AggregateStore,
            repository: Optional[RegionRepository] = None,
            retry_policy: ConflictRetryPolicy = ConflictRetryPolicy(),
            runtime_logger: Optional[StructuredRuntimeLogger] = None,
    ):
        self.store = store
        self.repository = repository or RegionRepository()
        self.retry_policy = retry_policy
        self.runtime_logger = runtime_logger or StructuredRuntimeLogger(component="region_merger")

    def merge(self, group: DuplicateGroup) -> MergeOutcome:
        survivor_id = group.survivor.region_id
        merged: List[str] = []
        failures: List[DonorFailure] = []

        for donor in group.donors:
            try:
                moved = run_with_conflict_retry(
                    lambda: self._merge_donor(group, donor.region_id),
                    policy=self.retry_policy,
                    runtime_logger=self.runtime_logger,
                    event_type="REGION_MERGE_CONFLICT_RETRY",
                )
            except RegionEngineError as exc:
                failures.append(DonorFailure(donor_id=donor.region_id, reason=str(exc)))
                self.runtime_logger.emit(
                    event_type="REGION_DONOR_MERGE_FAILED",
                    survivor_id=survivor_id,
                    donor_id=donor.region_id,
                    error=type(exc).__name__,
                    reason=exc.message,
                )
                continue

            merged.append(donor.region_id)
            self.runtime_logger.emit(
                event_type="REGION_DONOR_MERGED",
                survivor_id=survivor_id,
                donor_id=donor.region_id,
                **moved,
            )

        return MergeOutcome(survivor_id=survivor_id, donor_ids=merged, failures=failures)

    def _merge_donor(self, group: DuplicateGroup, donor_id: str) -> dict:
        survivor_id = group.survivor.region_id
        with self.store.transaction("merge_region", donor_id) as tx:
            locked = {row.id: row for row in tx.lock_regions([survivor_id, donor_id])}
            survivor = locked.get(survivor_id)
            donor = locked.get(donor_id)
            if survivor is None or survivor.deleted_at is not None:
                raise RegionNotFound(f"survivor {survivor_id} no longer exists", "merge_region", donor_id)
            if donor is None or donor.deleted_at is not None:
                raise RegionNotFound("donor no longer exists", "merge_region", donor_id)

            # Detection ran without locks; the key may have moved since.
            key = (group.name, group.currency_code)
            for row in (survivor, donor):
                if (row.name, row.currency_code) != key:
                    raise DuplicateGroupChanged(
                        f"{row.id} is now {row.name!r}/{row.currency_code}, "
                        f"no longer {group.name!r}/{group.currency_code}",
                        "merge_region",
                        donor_id,
                    )

            options = self.repository.reassign_shipping_options(tx, donor_id, survivor_id)
            countries = self.repository.reassign_countries(tx, donor_id, survivor_id)
            self.repository.delete_provider_links(tx, donor_id)
            self.repository.delete_region(tx, donor_id)

        return {
            "shipping_options_moved": options["live"],
            "archived_shipping_options_moved": options["archived"],
            "countries_moved": countries,
        }
