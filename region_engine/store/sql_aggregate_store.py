from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from region_engine.domain.exceptions import ConflictError, TransactionFailure
from region_engine.interfaces.aggregate_store import AggregateStore, StoreTransaction


class SqlStoreTransaction(StoreTransaction):
    def __init__(self, connection: Connection, dialect: str):
        self.connection = connection
        self.dialect = dialect

    def execute(self, sql: Any, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        statement = text(sql) if isinstance(sql, str) else sql
        result = self.connection.execute(statement, params or {})
        if not result.returns_rows:
            return []
        return list(result.fetchall())

    def execute_write(self, sql: Any, params: Optional[Dict[str, Any]] = None) -> int:
        statement = text(sql) if isinstance(sql, str) else sql
        return self.connection.execute(statement, params or {}).rowcount

    def lock_regions(self, region_ids: Iterable[str]) -> List[Any]:
        ids = sorted(set(region_ids))
        if not ids:
            return []
        lock_clause = "FOR UPDATE" if self.dialect == "postgresql" else ""
        statement = text(
            f"""
            SELECT id, name, currency_code, deleted_at
            FROM region
            WHERE id IN :ids
            ORDER BY id
            {lock_clause}
            """
        ).bindparams(bindparam("ids", expanding=True))
        return list(self.connection.execute(statement, {"ids": ids}).fetchall())


class SqlAggregateStore(AggregateStore):
    """
    SQLAlchemy-backed aggregate store.
    PostgreSQL in production (row locks, statement timeout); SQLite for tests.
    """

    def __init__(self, engine: Engine, statement_timeout_ms: int = 5000, create_schema: bool = True):
        self.engine = engine
        self.statement_timeout_ms = statement_timeout_ms
        if create_schema:
            self.ensure_schema()

    @classmethod
    def from_dsn(cls, dsn: str, statement_timeout_ms: int = 5000, create_schema: bool = True) -> "SqlAggregateStore":
        engine = create_engine(dsn, pool_pre_ping=True, future=True)
        return cls(engine, statement_timeout_ms=statement_timeout_ms, create_schema=create_schema)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def transaction(self, operation: str, entity_id: Optional[str] = None) -> Iterator[StoreTransaction]:
        try:
            with self.engine.begin() as conn:
                if self.dialect == "postgresql":
                    conn.execute(text(f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}"))
                yield SqlStoreTransaction(conn, self.dialect)
        except IntegrityError as exc:
            raise ConflictError(str(exc.orig), operation, entity_id) from exc
        except SQLAlchemyError as exc:
            raise TransactionFailure(str(exc), operation, entity_id) from exc

    @contextmanager
    def read(self, operation: str, entity_id: Optional[str] = None) -> Iterator[StoreTransaction]:
        try:
            with self.engine.connect() as conn:
                if self.dialect == "postgresql":
                    conn.execute(text(f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}"))
                yield SqlStoreTransaction(conn, self.dialect)
        except SQLAlchemyError as exc:
            raise TransactionFailure(str(exc), operation, entity_id) from exc

    def ensure_schema(self) -> None:
        if self.dialect == "postgresql":
            types = {"ts": "TIMESTAMPTZ", "json": "JSONB"}
        else:
            types = {"ts": "TIMESTAMP", "json": "TEXT"}

        statements = [
            """
            CREATE TABLE IF NOT EXISTS currency (
                code TEXT PRIMARY KEY,
                symbol TEXT NOT NULL,
                symbol_native TEXT NOT NULL,
                name TEXT NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS region (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                currency_code TEXT NOT NULL REFERENCES currency (code),
                tax_rate NUMERIC NULL,
                tax_code TEXT NULL,
                gift_cards_taxable BOOLEAN NULL DEFAULT TRUE,
                automatic_taxes BOOLEAN NULL DEFAULT TRUE,
                metadata {json} NULL,
                created_at {ts} NOT NULL,
                updated_at {ts} NOT NULL,
                deleted_at {ts} NULL
            )
            """,
            """
            CREATE INDEX IF NOT EXISTS ix_region_name_currency
            ON region (name, currency_code)
            """,
            """
            CREATE TABLE IF NOT EXISTS country (
                iso_2 TEXT PRIMARY KEY,
                iso_3 TEXT NOT NULL,
                num_code INTEGER NOT NULL,
                name TEXT NOT NULL,
                display_name TEXT NOT NULL,
                region_id TEXT NULL REFERENCES region (id)
            )
            """,
            """
            CREATE INDEX IF NOT EXISTS ix_country_region
            ON country (region_id)
            """,
            """
            CREATE TABLE IF NOT EXISTS fulfillment_provider (
                id TEXT PRIMARY KEY,
                is_installed BOOLEAN NOT NULL DEFAULT TRUE
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS payment_provider (
                id TEXT PRIMARY KEY,
                is_installed BOOLEAN NOT NULL DEFAULT TRUE
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS region_fulfillment_providers (
                region_id TEXT NOT NULL REFERENCES region (id),
                provider_id TEXT NOT NULL REFERENCES fulfillment_provider (id),
                PRIMARY KEY (region_id, provider_id)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS region_payment_providers (
                region_id TEXT NOT NULL REFERENCES region (id),
                provider_id TEXT NOT NULL REFERENCES payment_provider (id),
                PRIMARY KEY (region_id, provider_id)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS shipping_option (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                region_id TEXT NOT NULL REFERENCES region (id),
                profile_id TEXT NULL,
                provider_id TEXT NULL,
                price_type TEXT NULL,
                amount INTEGER NULL,
                is_return BOOLEAN NOT NULL DEFAULT FALSE,
                admin_only BOOLEAN NOT NULL DEFAULT FALSE,
                requirements {json} NULL,
                data {json} NULL,
                metadata {json} NULL,
                created_at {ts} NOT NULL,
                updated_at {ts} NOT NULL,
                deleted_at {ts} NULL
            )
            """,
            """
            CREATE INDEX IF NOT EXISTS ix_shipping_option_region
            ON shipping_option (region_id)
            """,
        ]
        with self.engine.begin() as conn:
            for statement in statements:
                conn.execute(text(statement.format(**types)))
