"""
Sales Order Repository

Data access layer for sales orders, their lines and inventory lots using an
asyncpg connection pool. Every multi-record write runs in one transaction
and header writes are conditional on the stored version.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from core.config import SalesOrderServiceConfig, get_settings
from .models import (
    InventoryLot,
    PostalAddress,
    SalesOrder,
    SalesOrderLine,
    SalesOrderStatus,
    SignatureStatus,
    TaxBreakdown,
)
from .protocols import ConcurrentModificationError, SalesOrderPersistenceError

logger = logging.getLogger(__name__)

HEADER_COLUMNS: List[str] = [name for name in SalesOrder.model_fields if name != "lines"]
LINE_COLUMNS: List[str] = list(SalesOrderLine.model_fields)

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _affected_rows(status: str) -> int:
    """Row count from an asyncpg command status such as 'UPDATE 1'"""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def _header_values(order: SalesOrder) -> Dict[str, Any]:
    values = order.model_dump(exclude={"lines", "bill_to", "ship_to", "tax_breakdown"})
    values["bill_to"] = order.bill_to.model_dump()
    values["ship_to"] = order.ship_to.model_dump()
    values["tax_breakdown"] = order.tax_breakdown.to_storage() if order.tax_breakdown else None
    values["status"] = order.status.value
    values["signature_status"] = order.signature_status.value if order.signature_status else None
    return values


def _line_values(line: SalesOrderLine) -> List[Any]:
    values = line.model_dump()
    return [values[column] for column in LINE_COLUMNS]


def _row_to_line(row: asyncpg.Record) -> SalesOrderLine:
    return SalesOrderLine(**dict(row))


def _row_to_order(row: asyncpg.Record, lines: List[SalesOrderLine]) -> SalesOrder:
    data = dict(row)
    data["bill_to"] = PostalAddress(**(data.get("bill_to") or {}))
    data["ship_to"] = PostalAddress(**(data.get("ship_to") or {}))
    breakdown = data.get("tax_breakdown")
    data["tax_breakdown"] = TaxBreakdown.model_validate(breakdown) if breakdown else None
    data["status"] = SalesOrderStatus(data["status"])
    data["signature_status"] = SignatureStatus(data["signature_status"]) if data.get("signature_status") else None
    return SalesOrder(**data, lines=lines)


async def _init_connection(conn: asyncpg.Connection):
    await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


class SalesOrderRepository:
    """
    Repository for sales order data operations

    Tables (schema from settings.db_schema):
        sales_orders, sales_order_lines, inventory_lots
    """

    def __init__(self, config: Optional[SalesOrderServiceConfig] = None):
        self.config = config or get_settings()
        self.schema = self.config.db_schema
        self.orders_table = f"{self.schema}.sales_orders"
        self.lines_table = f"{self.schema}.sales_order_lines"
        self.inventory_table = f"{self.schema}.inventory_lots"
        self._pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Create the connection pool and ensure tables exist"""
        logger.info(f"Connecting to PostgreSQL for schema {self.schema}")
        self._pool = await asyncpg.create_pool(
            dsn=self.config.database_url,
            min_size=self.config.db_pool_min_size,
            max_size=self.config.db_pool_max_size,
            init=_init_connection,
        )
        async with self._pool.acquire() as conn:
            await conn.execute(self._schema_sql())
        logger.info("Sales order repository initialized with PostgreSQL")

    async def close(self):
        """Close the connection pool"""
        if self._pool:
            await self._pool.close()
            self._pool = None
        logger.info("Sales order repository database connection closed")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise SalesOrderPersistenceError("Sales order repository is not initialized")
        return self._pool

    async def health_check(self) -> bool:
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except _DB_ERRORS as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    def _schema_sql(self) -> str:
        return f'''
            CREATE SCHEMA IF NOT EXISTS {self.schema};

            CREATE TABLE IF NOT EXISTS {self.orders_table} (
                order_id TEXT PRIMARY KEY,
                so_number TEXT NOT NULL,
                tenant_id TEXT NOT NULL,
                customer_id TEXT NOT NULL,
                customer_name TEXT,
                po_number TEXT,
                customer_tax_exempt BOOLEAN NOT NULL DEFAULT FALSE,
                tax_exemption_reason TEXT,
                bill_to JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                ship_to JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                currency TEXT NOT NULL,
                shipping_amount NUMERIC(14, 2) NOT NULL DEFAULT 0,
                subtotal NUMERIC(14, 2) NOT NULL DEFAULT 0,
                tax_total NUMERIC(14, 2) NOT NULL DEFAULT 0,
                tax_gst NUMERIC(14, 2) NOT NULL DEFAULT 0,
                tax_hst NUMERIC(14, 2) NOT NULL DEFAULT 0,
                tax_pst NUMERIC(14, 2) NOT NULL DEFAULT 0,
                tax_qst NUMERIC(14, 2) NOT NULL DEFAULT 0,
                total_amount NUMERIC(14, 2) NOT NULL DEFAULT 0,
                tax_breakdown JSONB,
                tax_inputs_hash TEXT,
                status TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                comments_internal TEXT,
                signature_request_id TEXT,
                signature_status TEXT,
                signed_document_url TEXT,
                created_by TEXT,
                created_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ,
                converted_at TIMESTAMPTZ,
                customer_signature_requested_at TIMESTAMPTZ,
                customer_signature_received_at TIMESTAMPTZ,
                printed_order_confirmation_at TIMESTAMPTZ,
                approved_by TEXT,
                approved_at TIMESTAMPTZ,
                released_by TEXT,
                released_at TIMESTAMPTZ,
                partially_invoiced_at TIMESTAMPTZ,
                closed_at TIMESTAMPTZ,
                cancelled_by TEXT,
                cancelled_at TIMESTAMPTZ,
                cancelled_reason TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_sales_orders_tenant_created
                ON {self.orders_table} (tenant_id, created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_sales_orders_signature_request
                ON {self.orders_table} (signature_request_id);

            CREATE TABLE IF NOT EXISTS {self.lines_table} (
                line_id TEXT PRIMARY KEY,
                order_id TEXT NOT NULL REFERENCES {self.orders_table} (order_id) ON DELETE CASCADE,
                line_number INTEGER NOT NULL,
                product_id TEXT,
                sku TEXT,
                description TEXT,
                category TEXT,
                sub_category TEXT,
                product_type TEXT,
                tax_category TEXT,
                external_tax_code TEXT,
                quantity_ordered NUMERIC(14, 4) NOT NULL,
                unit_price NUMERIC(14, 4) NOT NULL,
                discount_amount NUMERIC(14, 2) NOT NULL DEFAULT 0,
                uom TEXT,
                line_subtotal NUMERIC(14, 2) NOT NULL DEFAULT 0,
                line_tax_amount NUMERIC(14, 2) NOT NULL DEFAULT 0,
                line_total NUMERIC(14, 2) NOT NULL DEFAULT 0,
                quantity_allocated NUMERIC(14, 4),
                quantity_backordered NUMERIC(14, 4),
                created_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ
            );

            CREATE INDEX IF NOT EXISTS idx_sales_order_lines_order
                ON {self.lines_table} (order_id, line_number);

            CREATE TABLE IF NOT EXISTS {self.inventory_table} (
                lot_id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                sku TEXT NOT NULL,
                quantity NUMERIC(14, 4) NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                location TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_inventory_lots_tenant_sku
                ON {self.inventory_table} (tenant_id, sku);
        '''

    # ====================
    # Writes
    # ====================

    def _line_upsert_sql(self) -> str:
        columns = ", ".join(LINE_COLUMNS)
        placeholders = ", ".join(f"${i}" for i in range(1, len(LINE_COLUMNS) + 1))
        updates = ", ".join(
            f"{column} = EXCLUDED.{column}"
            for column in LINE_COLUMNS
            if column not in ("line_id", "order_id", "created_at")
        )
        return f'''
            INSERT INTO {self.lines_table} ({columns})
            VALUES ({placeholders})
            ON CONFLICT (line_id) DO UPDATE SET {updates}
        '''

    async def create_order(self, order: SalesOrder) -> SalesOrder:
        """Insert header and lines in one transaction"""
        values = _header_values(order)
        columns = ", ".join(HEADER_COLUMNS)
        placeholders = ", ".join(f"${i}" for i in range(1, len(HEADER_COLUMNS) + 1))
        query = f"INSERT INTO {self.orders_table} ({columns}) VALUES ({placeholders})"

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(query, *[values[column] for column in HEADER_COLUMNS])
                    if order.lines:
                        await conn.executemany(
                            self._line_upsert_sql(),
                            [_line_values(line) for line in order.lines],
                        )
        except _DB_ERRORS as e:
            logger.error(f"Error creating sales order {order.so_number}: {e}")
            raise SalesOrderPersistenceError(f"Failed to create sales order: {e}") from e

        created = await self.get_order(order.order_id, order.tenant_id)
        if created is None:
            raise SalesOrderPersistenceError(f"Sales order {order.order_id} not found after create")
        return created

    async def save_order(
        self,
        order: SalesOrder,
        expected_version: int,
        deleted_line_ids: Sequence[str] = (),
    ) -> SalesOrder:
        """Conditional header update plus line deletes/upserts in one transaction"""
        values = _header_values(order)
        mutable = [c for c in HEADER_COLUMNS if c not in ("order_id", "tenant_id", "version", "created_at", "created_by")]
        assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(mutable, start=1))
        n = len(mutable)
        query = f'''
            UPDATE {self.orders_table}
            SET {assignments}, version = version + 1
            WHERE order_id = ${n + 1} AND tenant_id = ${n + 2} AND version = ${n + 3}
        '''
        params = [values[column] for column in mutable] + [order.order_id, order.tenant_id, expected_version]

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    status = await conn.execute(query, *params)
                    if _affected_rows(status) == 0:
                        raise ConcurrentModificationError(
                            f"Sales order {order.so_number} was modified concurrently",
                            expected_version=expected_version,
                        )
                    if deleted_line_ids:
                        await conn.execute(
                            f"DELETE FROM {self.lines_table} WHERE order_id = $1 AND line_id = ANY($2::text[])",
                            order.order_id,
                            list(deleted_line_ids),
                        )
                    if order.lines:
                        await conn.executemany(
                            self._line_upsert_sql(),
                            [_line_values(line) for line in order.lines],
                        )
        except _DB_ERRORS as e:
            logger.error(f"Error saving sales order {order.so_number}: {e}")
            raise SalesOrderPersistenceError(f"Failed to save sales order: {e}") from e

        saved = await self.get_order(order.order_id, order.tenant_id)
        if saved is None:
            raise SalesOrderPersistenceError(f"Sales order {order.order_id} not found after save")
        return saved

    async def delete_order(self, order_id: str, tenant_id: str, expected_version: int) -> bool:
        """Delete header (lines cascade) if the version still matches"""
        try:
            async with self.pool.acquire() as conn:
                status = await conn.execute(
                    f"DELETE FROM {self.orders_table} WHERE order_id = $1 AND tenant_id = $2 AND version = $3",
                    order_id, tenant_id, expected_version,
                )
        except _DB_ERRORS as e:
            logger.error(f"Error deleting sales order {order_id}: {e}")
            raise SalesOrderPersistenceError(f"Failed to delete sales order: {e}") from e

        if _affected_rows(status) == 0:
            raise ConcurrentModificationError(
                f"Sales order {order_id} was modified concurrently",
                expected_version=expected_version,
            )
        return True

    # ====================
    # Reads
    # ====================

    async def _fetch_lines(self, conn: asyncpg.Connection, order_ids: List[str]) -> Dict[str, List[SalesOrderLine]]:
        rows = await conn.fetch(
            f"SELECT * FROM {self.lines_table} WHERE order_id = ANY($1::text[]) ORDER BY order_id, line_number",
            order_ids,
        )
        lines: Dict[str, List[SalesOrderLine]] = {order_id: [] for order_id in order_ids}
        for row in rows:
            lines[row["order_id"]].append(_row_to_line(row))
        return lines

    async def get_order(self, order_id: str, tenant_id: str) -> Optional[SalesOrder]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT * FROM {self.orders_table} WHERE order_id = $1 AND tenant_id = $2",
                    order_id, tenant_id,
                )
                if row is None:
                    return None
                lines = await self._fetch_lines(conn, [order_id])
        except _DB_ERRORS as e:
            logger.error(f"Error getting sales order {order_id}: {e}")
            raise SalesOrderPersistenceError(f"Failed to read sales order: {e}") from e

        return _row_to_order(row, lines[order_id])

    async def list_orders(
        self,
        tenant_id: str,
        status: Optional[SalesOrderStatus] = None,
        customer_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SalesOrder]:
        conditions = ["tenant_id = $1"]
        params: List[Any] = [tenant_id]
        if status is not None:
            params.append(status.value)
            conditions.append(f"status = ${len(params)}")
        if customer_id:
            params.append(customer_id)
            conditions.append(f"customer_id = ${len(params)}")
        params.extend([limit, offset])

        query = f'''
            SELECT * FROM {self.orders_table}
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC
            LIMIT ${len(params) - 1} OFFSET ${len(params)}
        '''

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *params)
                lines = await self._fetch_lines(conn, [row["order_id"] for row in rows]) if rows else {}
        except _DB_ERRORS as e:
            logger.error(f"Error listing sales orders for tenant {tenant_id}: {e}")
            raise SalesOrderPersistenceError(f"Failed to list sales orders: {e}") from e

        return [_row_to_order(row, lines[row["order_id"]]) for row in rows]

    async def list_available_inventory(self, tenant_id: str, skus: Sequence[str]) -> List[InventoryLot]:
        if not skus:
            return []
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f'''
                    SELECT lot_id, sku, quantity, status, location
                    FROM {self.inventory_table}
                    WHERE tenant_id = $1 AND sku = ANY($2::text[])
                    ''',
                    tenant_id, list(skus),
                )
        except _DB_ERRORS as e:
            logger.error(f"Error reading inventory for tenant {tenant_id}: {e}")
            raise SalesOrderPersistenceError(f"Failed to read inventory: {e}") from e

        return [InventoryLot(**dict(row)) for row in rows]

    async def get_order_by_signature_request(self, signature_request_id: str) -> Optional[SalesOrder]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT order_id, tenant_id FROM {self.orders_table} WHERE signature_request_id = $1",
                    signature_request_id,
                )
        except _DB_ERRORS as e:
            logger.error(f"Error finding order for signature request {signature_request_id}: {e}")
            raise SalesOrderPersistenceError(f"Failed to read sales order: {e}") from e

        if row is None:
            return None
        return await self.get_order(row["order_id"], row["tenant_id"])
