from typing import Optional

from region_engine.domain.exceptions import RegionNotFound
from region_engine.domain.region import RegionAggregate
from region_engine.interfaces.aggregate_store import AggregateStore, StoreTransaction
from region_engine.store.region_repository import ProviderKind, RegionRepository


class RegionReader:
    """
    Loads a region and its dependent collections into one RegionAggregate.
    Missing associations yield empty collections.
    """

    def __init__(self, store: AggregateStore, repository: Optional[RegionRepository] = None):
        self.store = store
        self.repository = repository or RegionRepository()

    def get(self, region_id: str) -> RegionAggregate:
        aggregate = self.get_or_none(region_id)
        if aggregate is None:
            raise RegionNotFound("region does not exist or is deleted", "get_region", region_id)
        return aggregate

    def get_or_none(self, region_id: str) -> Optional[RegionAggregate]:
        with self.store.read("get_region", region_id) as tx:
            return self.load(tx, region_id)

    def load(self, tx: StoreTransaction, region_id: str) -> Optional[RegionAggregate]:
        region = self.repository.fetch_region(tx, region_id)
        if region is None:
            return None
        return RegionAggregate(
            region=region,
            fulfillment_provider_ids=self.repository.fetch_provider_ids(tx, ProviderKind.FULFILLMENT, region_id),
            payment_provider_ids=self.repository.fetch_provider_ids(tx, ProviderKind.PAYMENT, region_id),
            countries=self.repository.fetch_countries(tx, region_id),
            shipping_options=self.repository.fetch_shipping_options(tx, region_id),
            currency=self.repository.fetch_currency(tx, region.currency_code),
        )
