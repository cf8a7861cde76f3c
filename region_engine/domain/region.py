from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class PriceType(Enum):
    FLAT_RATE = "flat_rate"
    CALCULATED = "calculated"


@dataclass(frozen=True)
class Currency:
    code: str
    symbol: str
    symbol_native: str
    name: str


@dataclass(frozen=True)
class Country:
    iso_2: str
    iso_3: str
    num_code: int
    name: str
    display_name: str
    region_id: Optional[str] = None


@dataclass(frozen=True)
class ShippingOption:
    id: str
    name: str
    region_id: str
    profile_id: Optional[str]
    provider_id: Optional[str]
    price_type: Optional[PriceType]
    amount: Optional[int]
    is_return: bool = False
    admin_only: bool = False
    requirements: List[Dict[str, Any]] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    deleted_at: Optional[datetime] = None


@dataclass(frozen=True)
class Region:
    id: str
    name: str
    currency_code: str
    tax_rate: Optional[Decimal]
    tax_code: Optional[str]
    gift_cards_taxable: bool
    automatic_taxes: bool
    metadata: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None


@dataclass(frozen=True)
class RegionAggregate:
    """
    Denormalized view of a region and everything it owns.
    Provider id lists are distinct and sorted; countries are ordered by iso_2.
    """
    region: Region
    fulfillment_provider_ids: List[str] = field(default_factory=list)
    payment_provider_ids: List[str] = field(default_factory=list)
    countries: List[Country] = field(default_factory=list)
    shipping_options: List[ShippingOption] = field(default_factory=list)
    currency: Optional[Currency] = None

    @property
    def id(self) -> str:
        return self.region.id

    def to_dict(self) -> Dict[str, Any]:
        region = self.region
        return {
            "id": region.id,
            "name": region.name,
            "currency_code": region.currency_code,
            "currency": (
                {
                    "code": self.currency.code,
                    "symbol": self.currency.symbol,
                    "symbol_native": self.currency.symbol_native,
                    "name": self.currency.name,
                }
                if self.currency
                else None
            ),
            "tax_rate": str(region.tax_rate) if region.tax_rate is not None else None,
            "tax_code": region.tax_code,
            "gift_cards_taxable": region.gift_cards_taxable,
            "automatic_taxes": region.automatic_taxes,
            "fulfillment_providers": [{"provider_id": p} for p in self.fulfillment_provider_ids],
            "payment_providers": [{"provider_id": p} for p in self.payment_provider_ids],
            "countries": [
                {
                    "iso_2": c.iso_2,
                    "iso_3": c.iso_3,
                    "num_code": c.num_code,
                    "name": c.name,
                    "display_name": c.display_name,
                    "region_id": c.region_id,
                }
                for c in self.countries
            ],
            "shipping_options": [
                {
                    "id": so.id,
                    "name": so.name,
                    "region_id": so.region_id,
                    "profile_id": so.profile_id,
                    "provider_id": so.provider_id,
                    "price_type": so.price_type.value if so.price_type else None,
                    "amount": so.amount,
                    "is_return": so.is_return,
                    "admin_only": so.admin_only,
                    "requirements": list(so.requirements),
                    "data": dict(so.data),
                    "metadata": dict(so.metadata),
                }
                for so in self.shipping_options
            ],
            "metadata": dict(region.metadata),
            "created_at": region.created_at.isoformat() if region.created_at else None,
            "updated_at": region.updated_at.isoformat() if region.updated_at else None,
            "deleted_at": region.deleted_at.isoformat() if region.deleted_at else None,
        }
