import re
from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from region_engine.domain.exceptions import ValidationError


class _Unset:
    """Marker for a field that was omitted from a change set (as opposed to explicitly set to None)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

_ISO_2 = re.compile(r"^[a-z]{2}$")
_ISO_3 = re.compile(r"^[a-z]{3}$")

NON_NULLABLE_FIELDS = ("name", "currency_code", "gift_cards_taxable", "automatic_taxes")


@dataclass(frozen=True)
class RegionFieldChanges:
    """
    Sparse set of scalar changes for a region.
    Every field is UNSET (omitted), None (explicitly cleared) or a value.
    """
    name: Any = UNSET
    currency_code: Any = UNSET
    tax_rate: Any = UNSET
    tax_code: Any = UNSET
    gift_cards_taxable: Any = UNSET
    automatic_taxes: Any = UNSET

    def present(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}

    def is_empty(self) -> bool:
        return not self.present()

    def validate(self, region_id: Optional[str] = None) -> "RegionFieldChanges":
        """Returns a normalised copy or raises ValidationError. Never touches the store."""
        present = self.present()
        for name in NON_NULLABLE_FIELDS:
            if name in present and present[name] is None:
                raise ValidationError(f"'{name}' cannot be null", "update_region", region_id)

        normalised: Dict[str, Any] = {}
        for name in ("name", "currency_code"):
            if name in present:
                value = present[name]
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(f"'{name}' must be a non-empty string", "update_region", region_id)
                normalised[name] = value.strip().lower() if name == "currency_code" else value.strip()

        if "tax_rate" in present and present["tax_rate"] is not None:
            raw = present["tax_rate"]
            if isinstance(raw, bool):
                raise ValidationError("'tax_rate' must be a number", "update_region", region_id)
            try:
                rate = Decimal(str(raw))
            except (InvalidOperation, ValueError):
                raise ValidationError(f"'tax_rate' is not a number: {raw!r}", "update_region", region_id)
            if not rate.is_finite() or rate < 0:
                raise ValidationError("'tax_rate' must be a non-negative number", "update_region", region_id)
            normalised["tax_rate"] = rate

        if "tax_code" in present and present["tax_code"] is not None:
            if not isinstance(present["tax_code"], str):
                raise ValidationError("'tax_code' must be a string", "update_region", region_id)

        for name in ("gift_cards_taxable", "automatic_taxes"):
            if name in present and not isinstance(present[name], bool):
                raise ValidationError(f"'{name}' must be a boolean", "update_region", region_id)

        merged = dict(present)
        merged.update(normalised)
        return RegionFieldChanges(**merged)


@dataclass(frozen=True)
class CountryAssignment:
    iso_2: str
    iso_3: Optional[str] = None
    num_code: Optional[int] = None
    name: Optional[str] = None
    display_name: Optional[str] = None

    def row_defaults(self) -> Dict[str, Any]:
        # Only used when the country row does not exist yet; existing rows keep their fields.
        return {
            "iso_2": self.iso_2,
            "iso_3": self.iso_3 or self.iso_2,
            "num_code": self.num_code if self.num_code is not None else 0,
            "name": self.name or self.iso_2.upper(),
            "display_name": self.display_name or self.name or self.iso_2.upper(),
        }


@dataclass(frozen=True)
class RegionReplacementLists:
    """
    Full replacement lists for a region's dependent collections.
    None means "not supplied, leave as is"; an empty list means "clear all".
    """
    fulfillment_providers: Optional[List[str]] = None
    payment_providers: Optional[List[str]] = None
    countries: Optional[List[CountryAssignment]] = None

    def is_empty(self) -> bool:
        return self.fulfillment_providers is None and self.payment_providers is None and self.countries is None

    def validate(self, region_id: Optional[str] = None) -> "RegionReplacementLists":
        return RegionReplacementLists(
            fulfillment_providers=_distinct_provider_ids(self.fulfillment_providers, "fulfillment_providers", region_id),
            payment_providers=_distinct_provider_ids(self.payment_providers, "payment_providers", region_id),
            countries=_distinct_countries(self.countries, region_id),
        )


def _distinct_provider_ids(values: Optional[List[str]], label: str, region_id: Optional[str]) -> Optional[List[str]]:
    if values is None:
        return None
    result: List[str] = []
    for value in values:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"'{label}' entries must be non-empty provider ids", "update_region", region_id)
        if value.strip() not in result:
            result.append(value.strip())
    return result


def _distinct_countries(values: Optional[List[CountryAssignment]], region_id: Optional[str]) -> Optional[List[CountryAssignment]]:
    if values is None:
        return None
    seen: Dict[str, CountryAssignment] = {}
    for country in values:
        iso_2 = str(country.iso_2 or "").strip().lower()
        if not _ISO_2.match(iso_2):
            raise ValidationError(f"invalid country code {country.iso_2!r}", "update_region", region_id)
        iso_3 = None
        if country.iso_3 is not None:
            iso_3 = str(country.iso_3).strip().lower()
            if not _ISO_3.match(iso_3):
                raise ValidationError(f"invalid iso_3 code {country.iso_3!r} for {iso_2}", "update_region", region_id)
        if country.num_code is not None and (isinstance(country.num_code, bool) or not isinstance(country.num_code, int)):
            raise ValidationError(f"num_code for {iso_2} must be an integer", "update_region", region_id)
        if iso_2 not in seen:
            seen[iso_2] = CountryAssignment(
                iso_2=iso_2,
                iso_3=iso_3,
                num_code=country.num_code,
                name=country.name,
                display_name=country.display_name,
            )
    return list(seen.values())


REPLACEMENT_LIST_KEYS = ("fulfillment_providers", "payment_providers", "countries")


def field_changes_from_payload(payload: Dict[str, Any]) -> RegionFieldChanges:
    known = {f.name for f in fields(RegionFieldChanges)}
    unknown = sorted(key for key in payload if key not in known and key not in REPLACEMENT_LIST_KEYS)
    if unknown:
        raise ValidationError(f"unknown fields: {', '.join(unknown)}", "update_region")
    return RegionFieldChanges(**{key: value for key, value in payload.items() if key in known})


def replacement_lists_from_payload(payload: Dict[str, Any]) -> RegionReplacementLists:
    """
    Accepts provider entries as plain ids or {"provider_id": ...} objects,
    and countries as plain iso_2 codes or country objects.
    """

    def _providers(key: str) -> Optional[List[str]]:
        raw = payload.get(key)
        if raw is None:
            return None
        if not isinstance(raw, list):
            raise ValidationError(f"'{key}' must be a list", "update_region")
        return [entry.get("provider_id") if isinstance(entry, dict) else entry for entry in raw]

    countries = None
    raw_countries = payload.get("countries")
    if raw_countries is not None:
        if not isinstance(raw_countries, list):
            raise ValidationError("'countries' must be a list", "update_region")
        countries = []
        for entry in raw_countries:
            if isinstance(entry, dict):
                countries.append(
                    CountryAssignment(
                        iso_2=entry.get("iso_2"),
                        iso_3=entry.get("iso_3"),
                        num_code=entry.get("num_code"),
                        name=entry.get("name"),
                        display_name=entry.get("display_name"),
                    )
                )
            else:
                countries.append(CountryAssignment(iso_2=entry))

    return RegionReplacementLists(
        fulfillment_providers=_providers("fulfillment_providers"),
        payment_providers=_providers("payment_providers"),
        countries=countries,
    )
