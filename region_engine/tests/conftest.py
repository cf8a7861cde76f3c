import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from region_engine.config.settings import Settings
from region_engine.interfaces.time_source import TimeSource
from region_engine.observability.structured_runtime_logger import StructuredRuntimeLogger
from region_engine.services.region_consistency_service import StandardRegionConsistencyService
from region_engine.store.sql_aggregate_store import SqlAggregateStore


def _ts(value: Optional[datetime]) -> Optional[str]:
    # SQLite stores timestamps as ISO text.
    return value.isoformat() if value else None


# --- Mocks ---

class FrozenTimeSource(TimeSource):
    def __init__(self, start_time: datetime):
        self._current_time = start_time

    def now(self) -> datetime:
        return self._current_time

    def advance(self, delta: timedelta):
        self._current_time += delta


class RecordingRuntimeLogger(StructuredRuntimeLogger):
    def __init__(self, events: Optional[List[Dict[str, Any]]] = None, **defaults: Any):
        super().__init__(**defaults)
        self.events: List[Dict[str, Any]] = events if events is not None else []

    def bind(self, **fields: Any) -> "RecordingRuntimeLogger":
        # Bound children share the parent's event list.
        return RecordingRuntimeLogger(self.events, **{**self.defaults, **fields})

    def emit(self, event_type: str, **fields: Any) -> None:
        self.events.append({"event_type": event_type, **self.defaults, **fields})

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["event_type"] == event_type]


class Seeder:
    """Writes fixture rows straight into the store, bypassing the engine."""

    def __init__(self, store: SqlAggregateStore):
        self.store = store

    def _exec(self, sql: str, params: Dict[str, Any]) -> None:
        with self.store.engine.begin() as conn:
            conn.execute(text(sql), params)

    def currency(self, code: str = "usd", symbol: str = "$", name: str = "US Dollar") -> str:
        self._exec(
            "INSERT INTO currency (code, symbol, symbol_native, name) VALUES (:code, :symbol, :symbol, :name)",
            {"code": code, "symbol": symbol, "name": name},
        )
        return code

    def provider(self, kind: str, provider_id: str) -> str:
        self._exec(
            f"INSERT INTO {kind}_provider (id, is_installed) VALUES (:id, TRUE)",
            {"id": provider_id},
        )
        return provider_id

    def region(
        self,
        region_id: str,
        name: str = "US",
        currency_code: str = "usd",
        created_at: Optional[datetime] = None,
        tax_rate: Optional[float] = None,
        tax_code: Optional[str] = None,
        gift_cards_taxable: Optional[bool] = True,
        automatic_taxes: Optional[bool] = True,
        metadata: Optional[dict] = None,
        deleted_at: Optional[datetime] = None,
    ) -> str:
        created = _ts(created_at or datetime(2024, 1, 1, tzinfo=timezone.utc))
        self._exec(
            """
            INSERT INTO region (
                id, name, currency_code, tax_rate, tax_code, gift_cards_taxable,
                automatic_taxes, metadata, created_at, updated_at, deleted_at
            ) VALUES (
                :id, :name, :currency_code, :tax_rate, :tax_code, :gift_cards_taxable,
                :automatic_taxes, :metadata, :created_at, :created_at, :deleted_at
            )
            """,
            {
                "id": region_id,
                "name": name,
                "currency_code": currency_code,
                "tax_rate": tax_rate,
                "tax_code": tax_code,
                "gift_cards_taxable": gift_cards_taxable,
                "automatic_taxes": automatic_taxes,
                "metadata": json.dumps(metadata) if metadata is not None else None,
                "created_at": created,
                "deleted_at": _ts(deleted_at),
            },
        )
        return region_id

    def shipping_option(
        self,
        option_id: str,
        region_id: str,
        name: Optional[str] = None,
        provider_id: Optional[str] = "manual",
        price_type: Optional[str] = "flat_rate",
        profile_id: Optional[str] = "sp_01",
        amount: int = 1000,
        deleted_at: Optional[datetime] = None,
    ) -> str:
        now = _ts(datetime(2024, 1, 1, tzinfo=timezone.utc))
        self._exec(
            """
            INSERT INTO shipping_option (
                id, name, region_id, profile_id, provider_id, price_type, amount,
                is_return, admin_only, requirements, data, metadata,
                created_at, updated_at, deleted_at
            ) VALUES (
                :id, :name, :region_id, :profile_id, :provider_id, :price_type, :amount,
                FALSE, FALSE, :requirements, :data, NULL,
                :now, :now, :deleted_at
            )
            """,
            {
                "id": option_id,
                "name": name or option_id,
                "region_id": region_id,
                "profile_id": profile_id,
                "provider_id": provider_id,
                "price_type": price_type,
                "amount": amount,
                "requirements": json.dumps([{"type": "min_subtotal", "amount": 0}]),
                "data": json.dumps({}),
                "now": now,
                "deleted_at": _ts(deleted_at),
            },
        )
        return option_id

    def country(self, iso_2: str, region_id: Optional[str] = None, name: Optional[str] = None, iso_3: Optional[str] = None, num_code: int = 0) -> str:
        self._exec(
            """
            INSERT INTO country (iso_2, iso_3, num_code, name, display_name, region_id)
            VALUES (:iso_2, :iso_3, :num_code, :name, :name, :region_id)
            """,
            {
                "iso_2": iso_2,
                "iso_3": iso_3 or iso_2 + "x",
                "num_code": num_code,
                "name": name or iso_2.upper(),
                "region_id": region_id,
            },
        )
        return iso_2

    def link(self, kind: str, region_id: str, provider_id: str) -> None:
        self._exec(
            f"INSERT INTO region_{kind}_providers (region_id, provider_id) VALUES (:region_id, :provider_id)",
            {"region_id": region_id, "provider_id": provider_id},
        )

    # --- raw reads for assertions ---

    def scalar(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Any:
        with self.store.engine.connect() as conn:
            return conn.execute(text(sql), params or {}).scalar()

    def column(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        with self.store.engine.connect() as conn:
            return [row[0] for row in conn.execute(text(sql), params or {})]

    def region_row(self, region_id: str) -> Optional[Dict[str, Any]]:
        with self.store.engine.connect() as conn:
            row = conn.execute(text("SELECT * FROM region WHERE id = :id"), {"id": region_id}).first()
        return dict(row._mapping) if row else None

    def snapshot(self, region_id: str) -> Dict[str, Any]:
        return {
            "region": self.region_row(region_id),
            "fulfillment": self.column(
                "SELECT provider_id FROM region_fulfillment_providers WHERE region_id = :id ORDER BY provider_id",
                {"id": region_id},
            ),
            "payment": self.column(
                "SELECT provider_id FROM region_payment_providers WHERE region_id = :id ORDER BY provider_id",
                {"id": region_id},
            ),
            "countries": self.column(
                "SELECT iso_2 FROM country WHERE region_id = :id ORDER BY iso_2",
                {"id": region_id},
            ),
        }


# --- Fixtures ---

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SqlAggregateStore(engine)


@pytest.fixture
def seed(store):
    seeder = Seeder(store)
    seeder.currency("usd")
    seeder.currency("eur", symbol="€", name="Euro")
    for provider_id in ("manual", "webshipper"):
        seeder.provider("fulfillment", provider_id)
    for provider_id in ("manual", "stripe"):
        seeder.provider("payment", provider_id)
    return seeder


@pytest.fixture
def fixed_time():
    return datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def time_source(fixed_time):
    return FrozenTimeSource(fixed_time)


@pytest.fixture
def runtime_logger():
    return RecordingRuntimeLogger()


@pytest.fixture
def config():
    return Settings(
        DATABASE_URL="sqlite+pysqlite:///:memory:",
        DEFAULT_FULFILLMENT_PROVIDER_ID="manual",
        DEFAULT_PAYMENT_PROVIDER_ID="manual",
        REPAIR_AFTER_RECONCILE=False,
    )


@pytest.fixture
def service(store, config, time_source, runtime_logger):
    return StandardRegionConsistencyService.build(
        store, config, time_source=time_source, runtime_logger=runtime_logger
    )
