from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True)
class DuplicateMember:
    region_id: str
    shipping_option_count: int
    country_count: int
    created_at: datetime


def survivor_order_key(member: DuplicateMember) -> Tuple[int, datetime, str]:
    # Most live shipping options first, then oldest, then lowest id.
    return (-member.shipping_option_count, member.created_at, member.region_id)


@dataclass(frozen=True)
class DuplicateGroup:
    """
    Regions sharing (name, currency_code). Members are held in survivor order:
    the first member survives, the rest are donors.
    """
    name: str
    currency_code: str
    members: List[DuplicateMember] = field(default_factory=list)

    @staticmethod
    def build(name: str, currency_code: str, members: List[DuplicateMember]) -> "DuplicateGroup":
        if len(members) < 2:
            raise ValueError("a duplicate group needs at least two members")
        return DuplicateGroup(name=name, currency_code=currency_code, members=sorted(members, key=survivor_order_key))

    @property
    def survivor(self) -> DuplicateMember:
        return self.members[0]

    @property
    def donors(self) -> List[DuplicateMember]:
        return self.members[1:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "currency_code": self.currency_code,
            "survivor_id": self.survivor.region_id,
            "donor_ids": [d.region_id for d in self.donors],
            "members": [
                {
                    "region_id": m.region_id,
                    "shipping_option_count": m.shipping_option_count,
                    "country_count": m.country_count,
                    "created_at": m.created_at.isoformat(),
                }
                for m in self.members
            ],
        }
