from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from region_engine.domain.duplicate_group import DuplicateGroup


@dataclass(frozen=True)
class DonorFailure:
    donor_id: str
    reason: str


@dataclass(frozen=True)
class MergeOutcome:
    survivor_id: str
    donor_ids: List[str] = field(default_factory=list)
    failures: List[DonorFailure] = field(default_factory=list)


@dataclass(frozen=True)
class RepairReport:
    regions_repaired: int
    fulfillment_links_added: int = 0
    payment_links_added: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regions_repaired": self.regions_repaired,
            "fulfillment_links_added": self.fulfillment_links_added,
            "payment_links_added": self.payment_links_added,
        }


@dataclass(frozen=True)
class ShippingOptionRepairReport:
    options_repaired: int
    fields_fixed: int

    def to_dict(self) -> Dict[str, Any]:
        return {"options_repaired": self.options_repaired, "fields_fixed": self.fields_fixed}


@dataclass(frozen=True)
class ReconciliationReport:
    groups_found: int
    merged: List[MergeOutcome] = field(default_factory=list)
    failures: List[DonorFailure] = field(default_factory=list)
    dry_run: bool = False
    planned: List[DuplicateGroup] = field(default_factory=list)
    repair: Optional[RepairReport] = None

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "groups_found": self.groups_found,
            "merged": [{"survivor_id": m.survivor_id, "donor_ids": list(m.donor_ids)} for m in self.merged],
            "failures": [{"donor_id": f.donor_id, "reason": f.reason} for f in self.failures],
        }
        if self.dry_run:
            payload["dry_run"] = True
            payload["planned"] = [group.to_dict() for group in self.planned]
        if self.repair is not None:
            payload["repair"] = self.repair.to_dict()
        return payload


@dataclass(frozen=True)
class RegionStatus:
    region_id: str
    name: str
    currency_code: str
    shipping_option_count: int
    country_count: int
    fulfillment_provider_count: int
    payment_provider_count: int

    @property
    def has_provider_links(self) -> bool:
        return self.fulfillment_provider_count > 0 and self.payment_provider_count > 0


@dataclass(frozen=True)
class RegionStatusReport:
    regions: List[RegionStatus] = field(default_factory=list)
    orphaned_shipping_option_ids: List[str] = field(default_factory=list)
    orphaned_country_codes: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return (
            not self.orphaned_shipping_option_ids
            and not self.orphaned_country_codes
            and all(r.has_provider_links for r in self.regions)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clean": self.clean,
            "regions": [
                {
                    "id": r.region_id,
                    "name": r.name,
                    "currency_code": r.currency_code,
                    "shipping_option_count": r.shipping_option_count,
                    "country_count": r.country_count,
                    "fulfillment_provider_count": r.fulfillment_provider_count,
                    "payment_provider_count": r.payment_provider_count,
                }
                for r in self.regions
            ],
            "orphaned_shipping_option_ids": list(self.orphaned_shipping_option_ids),
            "orphaned_country_codes": list(self.orphaned_country_codes),
        }
