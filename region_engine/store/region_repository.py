import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Numeric, bindparam, text

from region_engine.domain.duplicate_group import DuplicateMember
from region_engine.domain.reconciliation_report import RegionStatus
from region_engine.domain.region import Country, Currency, PriceType, Region, ShippingOption
from region_engine.domain.region_changes import CountryAssignment
from region_engine.interfaces.aggregate_store import StoreTransaction

logger = logging.getLogger(__name__)


class ProviderKind(Enum):
    FULFILLMENT = "fulfillment"
    PAYMENT = "payment"

    @property
    def catalog_table(self) -> str:
        return f"{self.value}_provider"

    @property
    def link_table(self) -> str:
        return f"region_{self.value}_providers"


# Canonical read defaults for the two nullable-in-practice tax flags.
DEFAULT_GIFT_CARDS_TAXABLE = True
DEFAULT_AUTOMATIC_TAXES = True


class RegionRepository:
    """
    SQL statements for the region aggregate.
    Every method runs inside a caller-owned StoreTransaction; none of them commit.
    """

    # --- reads ---

    def fetch_region(self, tx: StoreTransaction, region_id: str) -> Optional[Region]:
        rows = tx.execute(
            """
            SELECT id, name, currency_code, tax_rate, tax_code,
                   gift_cards_taxable, automatic_taxes, metadata,
                   created_at, updated_at, deleted_at
            FROM region
            WHERE id = :id AND deleted_at IS NULL
            """,
            {"id": region_id},
        )
        return self._row_to_region(rows[0]) if rows else None

    def fetch_provider_ids(self, tx: StoreTransaction, kind: ProviderKind, region_id: str) -> List[str]:
        rows = tx.execute(
            f"""
            SELECT DISTINCT provider_id
            FROM {kind.link_table}
            WHERE region_id = :region_id
            ORDER BY provider_id
            """,
            {"region_id": region_id},
        )
        return [row.provider_id for row in rows]

    def fetch_countries(self, tx: StoreTransaction, region_id: str) -> List[Country]:
        rows = tx.execute(
            """
            SELECT iso_2, iso_3, num_code, name, display_name, region_id
            FROM country
            WHERE region_id = :region_id
            ORDER BY iso_2
            """,
            {"region_id": region_id},
        )
        return [
            Country(
                iso_2=row.iso_2,
                iso_3=row.iso_3,
                num_code=int(row.num_code),
                name=row.name,
                display_name=row.display_name,
                region_id=row.region_id,
            )
            for row in rows
        ]

    def fetch_shipping_options(self, tx: StoreTransaction, region_id: str) -> List[ShippingOption]:
        rows = tx.execute(
            """
            SELECT id, name, region_id, profile_id, provider_id, price_type, amount,
                   is_return, admin_only, requirements, data, metadata, deleted_at
            FROM shipping_option
            WHERE region_id = :region_id AND deleted_at IS NULL
            ORDER BY id
            """,
            {"region_id": region_id},
        )
        return [
            ShippingOption(
                id=row.id,
                name=row.name,
                region_id=row.region_id,
                profile_id=row.profile_id,
                provider_id=row.provider_id,
                price_type=_as_price_type(row.price_type),
                amount=int(row.amount) if row.amount is not None else None,
                is_return=_as_bool(row.is_return, False),
                admin_only=_as_bool(row.admin_only, False),
                requirements=_as_json(row.requirements, []),
                data=_as_json(row.data, {}),
                metadata=_as_json(row.metadata, {}),
                deleted_at=_as_datetime(row.deleted_at),
            )
            for row in rows
        ]

    def fetch_currency(self, tx: StoreTransaction, code: str) -> Optional[Currency]:
        rows = tx.execute(
            """
            SELECT code, symbol, symbol_native, name
            FROM currency
            WHERE code = :code
            """,
            {"code": code},
        )
        if not rows:
            return None
        row = rows[0]
        return Currency(code=row.code, symbol=row.symbol, symbol_native=row.symbol_native, name=row.name)

    def missing_provider_ids(self, tx: StoreTransaction, kind: ProviderKind, provider_ids: List[str]) -> List[str]:
        if not provider_ids:
            return []
        statement = text(
            f"""
            SELECT id
            FROM {kind.catalog_table}
            WHERE id IN :ids
            """
        ).bindparams(bindparam("ids", expanding=True))
        known = {row.id for row in tx.execute(statement, {"ids": list(provider_ids)})}
        return [provider_id for provider_id in provider_ids if provider_id not in known]

    # --- region update ---

    def update_region_fields(self, tx: StoreTransaction, region_id: str, changes: Dict[str, Any], updated_at: datetime) -> int:
        if not changes:
            return 0
        columns = sorted(changes)
        assignments = ", ".join(f"{column} = :{column}" for column in columns)
        statement = text(
            f"""
            UPDATE region
            SET {assignments}, updated_at = :updated_at
            WHERE id = :id AND deleted_at IS NULL
            """
        ).bindparams(bindparam("updated_at", type_=DateTime(timezone=True)))
        if "tax_rate" in changes:
            statement = statement.bindparams(bindparam("tax_rate", type_=Numeric(asdecimal=True)))
        params = dict(changes)
        params["id"] = region_id
        params["updated_at"] = updated_at
        return tx.execute_write(statement, params)

    def replace_provider_links(self, tx: StoreTransaction, kind: ProviderKind, region_id: str, provider_ids: List[str]) -> None:
        tx.execute_write(
            f"DELETE FROM {kind.link_table} WHERE region_id = :region_id",
            {"region_id": region_id},
        )
        for provider_id in provider_ids:
            tx.execute_write(
                f"""
                INSERT INTO {kind.link_table} (region_id, provider_id)
                VALUES (:region_id, :provider_id)
                """,
                {"region_id": region_id, "provider_id": provider_id},
            )

    def detach_countries(self, tx: StoreTransaction, region_id: str) -> int:
        return tx.execute_write(
            "UPDATE country SET region_id = NULL WHERE region_id = :region_id",
            {"region_id": region_id},
        )

    def upsert_country(self, tx: StoreTransaction, region_id: str, country: CountryAssignment) -> None:
        params = country.row_defaults()
        params["region_id"] = region_id
        tx.execute_write(
            """
            INSERT INTO country (iso_2, iso_3, num_code, name, display_name, region_id)
            VALUES (:iso_2, :iso_3, :num_code, :name, :display_name, :region_id)
            ON CONFLICT (iso_2) DO UPDATE SET region_id = excluded.region_id
            """,
            params,
        )

    def replace_countries(self, tx: StoreTransaction, region_id: str, countries: List[CountryAssignment]) -> None:
        self.detach_countries(tx, region_id)
        for country in countries:
            self.upsert_country(tx, region_id, country)

    # --- duplicate detection and merge ---

    def list_region_members(self, tx: StoreTransaction) -> List[Dict[str, Any]]:
        rows = tx.execute(
            """
            SELECT r.id, r.name, r.currency_code, r.created_at,
                   (SELECT COUNT(*) FROM shipping_option so
                    WHERE so.region_id = r.id AND so.deleted_at IS NULL) AS shipping_option_count,
                   (SELECT COUNT(*) FROM country c
                    WHERE c.region_id = r.id) AS country_count
            FROM region r
            WHERE r.deleted_at IS NULL
            ORDER BY r.name, r.currency_code, r.id
            """
        )
        return [
            {
                "name": row.name,
                "currency_code": row.currency_code,
                "member": DuplicateMember(
                    region_id=row.id,
                    shipping_option_count=int(row.shipping_option_count),
                    country_count=int(row.country_count),
                    created_at=_as_datetime(row.created_at),
                ),
            }
            for row in rows
        ]

    def reassign_shipping_options(self, tx: StoreTransaction, from_region_id: str, to_region_id: str) -> Dict[str, int]:
        live = tx.execute_write(
            """
            UPDATE shipping_option
            SET region_id = :to_region_id
            WHERE region_id = :from_region_id AND deleted_at IS NULL
            """,
            {"from_region_id": from_region_id, "to_region_id": to_region_id},
        )
        # Soft-deleted options keep their deleted_at but must not point at a removed region.
        archived = tx.execute_write(
            """
            UPDATE shipping_option
            SET region_id = :to_region_id
            WHERE region_id = :from_region_id AND deleted_at IS NOT NULL
            """,
            {"from_region_id": from_region_id, "to_region_id": to_region_id},
        )
        return {"live": live, "archived": archived}

    def reassign_countries(self, tx: StoreTransaction, from_region_id: str, to_region_id: str) -> int:
        return tx.execute_write(
            "UPDATE country SET region_id = :to_region_id WHERE region_id = :from_region_id",
            {"from_region_id": from_region_id, "to_region_id": to_region_id},
        )

    def delete_provider_links(self, tx: StoreTransaction, region_id: str) -> None:
        for kind in ProviderKind:
            tx.execute_write(
                f"DELETE FROM {kind.link_table} WHERE region_id = :region_id",
                {"region_id": region_id},
            )

    def delete_region(self, tx: StoreTransaction, region_id: str) -> int:
        return tx.execute_write("DELETE FROM region WHERE id = :id", {"id": region_id})

    # --- repair ---

    def ensure_catalog_provider(self, tx: StoreTransaction, kind: ProviderKind, provider_id: str) -> None:
        tx.execute_write(
            f"""
            INSERT INTO {kind.catalog_table} (id, is_installed)
            VALUES (:id, TRUE)
            ON CONFLICT (id) DO UPDATE SET is_installed = TRUE
            """,
            {"id": provider_id},
        )

    def regions_without_provider(self, tx: StoreTransaction, kind: ProviderKind) -> List[str]:
        rows = tx.execute(
            f"""
            SELECT r.id
            FROM region r
            WHERE r.deleted_at IS NULL
            AND NOT EXISTS (
                SELECT 1 FROM {kind.link_table} l WHERE l.region_id = r.id
            )
            ORDER BY r.id
            """
        )
        return [row.id for row in rows]

    def link_provider_if_absent(self, tx: StoreTransaction, kind: ProviderKind, region_id: str, provider_id: str) -> int:
        return tx.execute_write(
            f"""
            INSERT INTO {kind.link_table} (region_id, provider_id)
            VALUES (:region_id, :provider_id)
            ON CONFLICT (region_id, provider_id) DO NOTHING
            """,
            {"region_id": region_id, "provider_id": provider_id},
        )

    def shipping_options_missing_defaults(self, tx: StoreTransaction) -> List[Any]:
        return tx.execute(
            """
            SELECT id, name, provider_id, price_type, profile_id
            FROM shipping_option
            WHERE deleted_at IS NULL
            AND (provider_id IS NULL OR profile_id IS NULL
                 OR price_type IS NULL OR price_type NOT IN ('flat_rate', 'calculated'))
            ORDER BY id
            """
        )

    def fill_shipping_option_fields(self, tx: StoreTransaction, option_id: str, values: Dict[str, Any], updated_at: datetime) -> int:
        columns = sorted(values)
        assignments = ", ".join(f"{column} = :{column}" for column in columns)
        params = dict(values)
        params["id"] = option_id
        params["updated_at"] = updated_at
        statement = text(
            f"""
            UPDATE shipping_option
            SET {assignments}, updated_at = :updated_at
            WHERE id = :id AND deleted_at IS NULL
            """
        ).bindparams(bindparam("updated_at", type_=DateTime(timezone=True)))
        return tx.execute_write(statement, params)

    # --- verification ---

    def region_statuses(self, tx: StoreTransaction) -> List[RegionStatus]:
        rows = tx.execute(
            """
            SELECT r.id, r.name, r.currency_code,
                   (SELECT COUNT(*) FROM shipping_option so
                    WHERE so.region_id = r.id AND so.deleted_at IS NULL) AS shipping_option_count,
                   (SELECT COUNT(*) FROM country c
                    WHERE c.region_id = r.id) AS country_count,
                   (SELECT COUNT(DISTINCT rfp.provider_id) FROM region_fulfillment_providers rfp
                    WHERE rfp.region_id = r.id) AS fulfillment_provider_count,
                   (SELECT COUNT(DISTINCT rpp.provider_id) FROM region_payment_providers rpp
                    WHERE rpp.region_id = r.id) AS payment_provider_count
            FROM region r
            WHERE r.deleted_at IS NULL
            ORDER BY r.name, r.id
            """
        )
        return [
            RegionStatus(
                region_id=row.id,
                name=row.name,
                currency_code=row.currency_code,
                shipping_option_count=int(row.shipping_option_count),
                country_count=int(row.country_count),
                fulfillment_provider_count=int(row.fulfillment_provider_count),
                payment_provider_count=int(row.payment_provider_count),
            )
            for row in rows
        ]

    def orphaned_shipping_option_ids(self, tx: StoreTransaction) -> List[str]:
        rows = tx.execute(
            """
            SELECT so.id
            FROM shipping_option so
            WHERE NOT EXISTS (SELECT 1 FROM region r WHERE r.id = so.region_id)
            ORDER BY so.id
            """
        )
        return [row.id for row in rows]

    def orphaned_country_codes(self, tx: StoreTransaction) -> List[str]:
        rows = tx.execute(
            """
            SELECT c.iso_2
            FROM country c
            WHERE c.region_id IS NOT NULL
            AND NOT EXISTS (SELECT 1 FROM region r WHERE r.id = c.region_id)
            ORDER BY c.iso_2
            """
        )
        return [row.iso_2 for row in rows]

    def _row_to_region(self, row) -> Region:
        return Region(
            id=row.id,
            name=row.name,
            currency_code=row.currency_code,
            tax_rate=_as_decimal(row.tax_rate),
            tax_code=row.tax_code,
            gift_cards_taxable=_as_bool(row.gift_cards_taxable, DEFAULT_GIFT_CARDS_TAXABLE),
            automatic_taxes=_as_bool(row.automatic_taxes, DEFAULT_AUTOMATIC_TAXES),
            metadata=_as_json(row.metadata, {}),
            created_at=_as_datetime(row.created_at),
            updated_at=_as_datetime(row.updated_at),
            deleted_at=_as_datetime(row.deleted_at),
        )


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    return bool(value)


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _as_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value) if value else default
    return value


def _as_datetime(value: Any) -> Optional[datetime]:
    # Postgres hands back datetimes; SQLite hands back ISO strings.
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _as_price_type(value: Any) -> Optional[PriceType]:
    # Values outside PriceType read as unset; the shipping repair pass overwrites them.
    try:
        return PriceType(value) if value else None
    except ValueError:
        logger.warning(f"Unknown shipping option price_type {value!r}, reading as unset")
        return None
