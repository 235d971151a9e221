"""Persistence: the CommerceStore protocol and its Postgres implementation.

Idempotency for webhook-created orders lives here, not in application code:
orders.external_order_id is UNIQUE and insert_order_if_absent() is a single
INSERT ... ON CONFLICT DO NOTHING, so two concurrent deliveries of the same
event cannot both create an order. Variant SKUs are UNIQUE per product and
a duplicate insert surfaces as ConflictError.

Driver errors are logged and re-raised as ProcessingError with a generic
message so callers never see storage internals.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from storefront.catalog.models import Product, ProductVariant
from storefront.catalog.variants import GeneratedVariant
from storefront.errors import ConflictError, ProcessingError
from storefront.orders.models import Order, OrderItem, OrderStatus, StatusChange

logger = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex


@runtime_checkable
class CommerceStore(Protocol):
    """Storage operations used by the catalog, checkout and order layers."""

    # Catalog
    def get_product(self, product_id: str) -> Product | None: ...

    def get_product_by_slug(self, slug: str) -> Product | None: ...

    def mark_product_synced(self, product_id: str, synced_at: datetime) -> None: ...

    def link_product(
        self,
        product_id: str,
        lemonsqueezy_product_id: str | None,
        synced_at: datetime | None,
    ) -> Product | None: ...

    def list_variants(self, product_id: str) -> list[ProductVariant]: ...

    def get_variant(self, variant_id: str) -> ProductVariant | None: ...

    def add_variant(self, product_id: str, variant: GeneratedVariant) -> ProductVariant: ...

    def update_variant_price(self, variant_id: str, price: float) -> ProductVariant | None: ...

    def link_variant(
        self,
        variant_id: str,
        lemonsqueezy_variant_id: str,
        price: float,
        synced_at: datetime,
    ) -> None: ...

    # Orders
    def get_order(self, order_id: str) -> Order | None: ...

    def get_order_by_external_id(self, external_order_id: str) -> Order | None: ...

    def list_orders(self, status: OrderStatus | None = None, limit: int = 100) -> list[Order]: ...

    def insert_order_if_absent(self, order: Order, item: OrderItem) -> Order | None: ...

    def set_order_status(
        self,
        order_id: str,
        from_status: OrderStatus,
        to_status: OrderStatus,
        changed_at: datetime,
        paid_at: datetime | None = None,
        delivered_at: datetime | None = None,
    ) -> None: ...

    def delete_order(self, order_id: str) -> bool: ...

    def count_orders_by_status(self) -> dict[str, int]: ...

    def revenue(self, statuses: Iterable[OrderStatus]) -> float: ...

    def recent_orders(self, limit: int = 5) -> list[Order]: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA = """
CREATE TABLE IF NOT EXISTS products (
    id                       TEXT PRIMARY KEY,
    slug                     TEXT NOT NULL UNIQUE,
    title                    TEXT NOT NULL,
    base_price               NUMERIC(12, 2),
    lemonsqueezy_product_id  TEXT,
    synced_at                TIMESTAMPTZ,
    created_at               TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS product_variants (
    id                       TEXT PRIMARY KEY,
    product_id               TEXT NOT NULL REFERENCES products(id) ON DELETE CASCADE,
    sku                      TEXT NOT NULL,
    capacity                 TEXT,
    length                   TEXT,
    end_connection_style     TEXT,
    price                    NUMERIC(12, 2) NOT NULL DEFAULT 0,
    stock                    INT NOT NULL DEFAULT 0,
    lemonsqueezy_variant_id  TEXT,
    synced_at                TIMESTAMPTZ,
    created_at               TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (product_id, sku)
);

CREATE TABLE IF NOT EXISTS orders (
    id                    TEXT PRIMARY KEY,
    order_number          TEXT NOT NULL,
    external_order_id     TEXT NOT NULL UNIQUE,
    external_customer_id  TEXT,
    customer_email        TEXT,
    customer_name         TEXT,
    product_id            TEXT REFERENCES products(id),
    status                TEXT NOT NULL,
    total_amount          NUMERIC(12, 2) NOT NULL,
    currency              TEXT NOT NULL DEFAULT 'USD',
    paid_at               TIMESTAMPTZ,
    delivered_at          TIMESTAMPTZ,
    metadata              JSONB NOT NULL DEFAULT '{}',
    created_at            TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS order_items (
    id            TEXT PRIMARY KEY,
    order_id      TEXT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
    variant_id    TEXT REFERENCES product_variants(id) ON DELETE SET NULL,
    product_name  TEXT NOT NULL,
    variant_name  TEXT,
    quantity      INT NOT NULL DEFAULT 1,
    price         NUMERIC(12, 2) NOT NULL
);

CREATE TABLE IF NOT EXISTS order_status_history (
    id           SERIAL PRIMARY KEY,
    order_id     TEXT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
    from_status  TEXT NOT NULL,
    to_status    TEXT NOT NULL,
    changed_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_orders_status ON orders (status);
CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders (created_at DESC);
"""

_ORDER_COLUMNS = """id, order_number, external_order_id, external_customer_id,
    customer_email, customer_name, product_id, status, total_amount, currency,
    paid_at, delivered_at, metadata, created_at"""

_VARIANT_COLUMNS = """id, product_id, sku, capacity, length, end_connection_style,
    price, stock, lemonsqueezy_variant_id, synced_at"""


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _money(value: Any) -> float | None:
    return float(value) if value is not None else None


def _row_to_product(row: dict[str, Any]) -> Product:
    return Product(
        id=row["id"],
        slug=row["slug"],
        title=row["title"],
        base_price=_money(row["base_price"]),
        lemonsqueezy_product_id=row["lemonsqueezy_product_id"],
        synced_at=row["synced_at"],
    )


def _row_to_variant(row: dict[str, Any]) -> ProductVariant:
    return ProductVariant(
        id=row["id"],
        product_id=row["product_id"],
        sku=row["sku"],
        capacity=row["capacity"],
        length=row["length"],
        end_connection_style=row["end_connection_style"],
        price=_money(row["price"]) or 0.0,
        stock=row["stock"],
        lemonsqueezy_variant_id=row["lemonsqueezy_variant_id"],
        synced_at=row["synced_at"],
    )


def _row_to_order(row: dict[str, Any]) -> Order:
    return Order(
        id=row["id"],
        order_number=row["order_number"],
        external_order_id=row["external_order_id"],
        external_customer_id=row["external_customer_id"],
        customer_email=row["customer_email"],
        customer_name=row["customer_name"],
        product_id=row["product_id"],
        status=OrderStatus(row["status"]),
        total_amount=_money(row["total_amount"]) or 0.0,
        currency=row["currency"],
        paid_at=row["paid_at"],
        delivered_at=row["delivered_at"],
        metadata=row["metadata"] or {},
        created_at=row["created_at"],
    )


def _row_to_item(row: dict[str, Any]) -> OrderItem:
    return OrderItem(
        id=row["id"],
        order_id=row["order_id"],
        variant_id=row["variant_id"],
        product_name=row["product_name"],
        variant_name=row["variant_name"],
        quantity=row["quantity"],
        price=_money(row["price"]) or 0.0,
    )


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------


class PostgresStore:
    """CommerceStore backed by Postgres through psycopg 3."""

    def __init__(self, dsn: str):
        self._dsn = dsn

    def _get_conn(self) -> psycopg.Connection:
        return psycopg.connect(self._dsn, autocommit=True, row_factory=dict_row)

    @contextlib.contextmanager
    def _storage_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except psycopg.Error:
            logger.exception("Storage operation failed: %s", operation)
            raise ProcessingError("Storage operation failed") from None

    def init_schema(self) -> None:
        """Create tables if they don't exist. Idempotent."""
        with self._storage_errors("init_schema"), self._get_conn() as conn:
            conn.execute(SCHEMA)
        logger.info("Storefront schema ready")

    # -- Catalog ------------------------------------------------------------

    def get_product(self, product_id: str) -> Product | None:
        with self._storage_errors("get_product"), self._get_conn() as conn:
            row = conn.execute(
                """SELECT id, slug, title, base_price, lemonsqueezy_product_id, synced_at
                   FROM products WHERE id = %s""",
                (product_id,),
            ).fetchone()
        return _row_to_product(row) if row else None

    def get_product_by_slug(self, slug: str) -> Product | None:
        with self._storage_errors("get_product_by_slug"), self._get_conn() as conn:
            row = conn.execute(
                """SELECT id, slug, title, base_price, lemonsqueezy_product_id, synced_at
                   FROM products WHERE slug = %s""",
                (slug,),
            ).fetchone()
        return _row_to_product(row) if row else None

    def mark_product_synced(self, product_id: str, synced_at: datetime) -> None:
        with self._storage_errors("mark_product_synced"), self._get_conn() as conn:
            conn.execute(
                "UPDATE products SET synced_at = %s WHERE id = %s",
                (synced_at, product_id),
            )

    def link_product(
        self,
        product_id: str,
        lemonsqueezy_product_id: str | None,
        synced_at: datetime | None,
    ) -> Product | None:
        with self._storage_errors("link_product"), self._get_conn() as conn:
            row = conn.execute(
                """UPDATE products
                   SET lemonsqueezy_product_id = %s, synced_at = %s
                   WHERE id = %s
                   RETURNING id, slug, title, base_price, lemonsqueezy_product_id, synced_at""",
                (lemonsqueezy_product_id, synced_at, product_id),
            ).fetchone()
        return _row_to_product(row) if row else None

    def list_variants(self, product_id: str) -> list[ProductVariant]:
        with self._storage_errors("list_variants"), self._get_conn() as conn:
            rows = conn.execute(
                f"""SELECT {_VARIANT_COLUMNS} FROM product_variants
                    WHERE product_id = %s
                    ORDER BY capacity NULLS FIRST, length NULLS FIRST,
                             end_connection_style NULLS FIRST""",
                (product_id,),
            ).fetchall()
        return [_row_to_variant(r) for r in rows]

    def get_variant(self, variant_id: str) -> ProductVariant | None:
        with self._storage_errors("get_variant"), self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {_VARIANT_COLUMNS} FROM product_variants WHERE id = %s",
                (variant_id,),
            ).fetchone()
        return _row_to_variant(row) if row else None

    def add_variant(self, product_id: str, variant: GeneratedVariant) -> ProductVariant:
        variant_id = new_id()
        try:
            with self._get_conn() as conn:
                row = conn.execute(
                    f"""INSERT INTO product_variants
                            (id, product_id, sku, capacity, length,
                             end_connection_style, price, stock)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_VARIANT_COLUMNS}""",
                    (
                        variant_id,
                        product_id,
                        variant.sku,
                        variant.capacity,
                        variant.length,
                        variant.end_connection_style,
                        variant.price,
                        variant.stock,
                    ),
                ).fetchone()
        except pg_errors.UniqueViolation:
            raise ConflictError("Variant", variant.sku) from None
        except psycopg.Error:
            logger.exception("Storage operation failed: add_variant %s", variant.sku)
            raise ProcessingError("Storage operation failed") from None
        return _row_to_variant(row)

    def update_variant_price(self, variant_id: str, price: float) -> ProductVariant | None:
        with self._storage_errors("update_variant_price"), self._get_conn() as conn:
            row = conn.execute(
                f"""UPDATE product_variants SET price = %s WHERE id = %s
                    RETURNING {_VARIANT_COLUMNS}""",
                (price, variant_id),
            ).fetchone()
        return _row_to_variant(row) if row else None

    def link_variant(
        self,
        variant_id: str,
        lemonsqueezy_variant_id: str,
        price: float,
        synced_at: datetime,
    ) -> None:
        with self._storage_errors("link_variant"), self._get_conn() as conn:
            conn.execute(
                """UPDATE product_variants
                   SET lemonsqueezy_variant_id = %s, price = %s, synced_at = %s
                   WHERE id = %s""",
                (lemonsqueezy_variant_id, price, synced_at, variant_id),
            )

    # -- Orders -------------------------------------------------------------

    def get_order(self, order_id: str) -> Order | None:
        with self._storage_errors("get_order"), self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = %s",
                (order_id,),
            ).fetchone()
            if not row:
                return None
            order = _row_to_order(row)
            items = conn.execute(
                """SELECT id, order_id, variant_id, product_name, variant_name,
                          quantity, price
                   FROM order_items WHERE order_id = %s""",
                (order_id,),
            ).fetchall()
            history = conn.execute(
                """SELECT order_id, from_status, to_status, changed_at
                   FROM order_status_history WHERE order_id = %s
                   ORDER BY changed_at ASC, id ASC""",
                (order_id,),
            ).fetchall()
        order.items = [_row_to_item(r) for r in items]
        order.status_history = [StatusChange(**r) for r in history]
        return order

    def get_order_by_external_id(self, external_order_id: str) -> Order | None:
        with self._storage_errors("get_order_by_external_id"), self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {_ORDER_COLUMNS} FROM orders WHERE external_order_id = %s",
                (external_order_id,),
            ).fetchone()
        return _row_to_order(row) if row else None

    def list_orders(self, status: OrderStatus | None = None, limit: int = 100) -> list[Order]:
        with self._storage_errors("list_orders"), self._get_conn() as conn:
            if status is None:
                rows = conn.execute(
                    f"""SELECT {_ORDER_COLUMNS} FROM orders
                        ORDER BY created_at DESC LIMIT %s""",
                    (limit,),
                ).fetchall()
            else:
                rows = conn.execute(
                    f"""SELECT {_ORDER_COLUMNS} FROM orders WHERE status = %s
                        ORDER BY created_at DESC LIMIT %s""",
                    (status.value, limit),
                ).fetchall()
        return [_row_to_order(r) for r in rows]

    def insert_order_if_absent(self, order: Order, item: OrderItem) -> Order | None:
        """Insert order + item atomically; None if the external id already exists."""
        order_id = order.id or new_id()
        with self._storage_errors("insert_order_if_absent"), self._get_conn() as conn:
            with conn.transaction():
                row = conn.execute(
                    f"""INSERT INTO orders
                            (id, order_number, external_order_id, external_customer_id,
                             customer_email, customer_name, product_id, status,
                             total_amount, currency, paid_at, metadata)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (external_order_id) DO NOTHING
                        RETURNING {_ORDER_COLUMNS}""",
                    (
                        order_id,
                        order.order_number,
                        order.external_order_id,
                        order.external_customer_id,
                        order.customer_email,
                        order.customer_name,
                        order.product_id,
                        order.status.value,
                        order.total_amount,
                        order.currency,
                        order.paid_at,
                        Jsonb(order.metadata),
                    ),
                ).fetchone()
                if row is None:
                    return None
                item_id = item.id or new_id()
                conn.execute(
                    """INSERT INTO order_items
                           (id, order_id, variant_id, product_name, variant_name,
                            quantity, price)
                       VALUES (%s, %s, %s, %s, %s, %s, %s)""",
                    (
                        item_id,
                        order_id,
                        item.variant_id,
                        item.product_name,
                        item.variant_name,
                        item.quantity,
                        item.price,
                    ),
                )
        created = _row_to_order(row)
        item.id = item_id
        item.order_id = order_id
        created.items = [item]
        return created

    def set_order_status(
        self,
        order_id: str,
        from_status: OrderStatus,
        to_status: OrderStatus,
        changed_at: datetime,
        paid_at: datetime | None = None,
        delivered_at: datetime | None = None,
    ) -> None:
        with self._storage_errors("set_order_status"), self._get_conn() as conn:
            with conn.transaction():
                conn.execute(
                    """UPDATE orders
                       SET status = %s,
                           paid_at = COALESCE(%s, paid_at),
                           delivered_at = COALESCE(%s, delivered_at)
                       WHERE id = %s""",
                    (to_status.value, paid_at, delivered_at, order_id),
                )
                conn.execute(
                    """INSERT INTO order_status_history
                           (order_id, from_status, to_status, changed_at)
                       VALUES (%s, %s, %s, %s)""",
                    (order_id, from_status.value, to_status.value, changed_at),
                )

    def delete_order(self, order_id: str) -> bool:
        with self._storage_errors("delete_order"), self._get_conn() as conn:
            result = conn.execute("DELETE FROM orders WHERE id = %s", (order_id,))
            return result.rowcount > 0

    def count_orders_by_status(self) -> dict[str, int]:
        with self._storage_errors("count_orders_by_status"), self._get_conn() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM orders GROUP BY status"
            ).fetchall()
        return {r["status"]: r["n"] for r in rows}

    def revenue(self, statuses: Iterable[OrderStatus]) -> float:
        names = [s.value for s in statuses]
        with self._storage_errors("revenue"), self._get_conn() as conn:
            row = conn.execute(
                """SELECT COALESCE(SUM(total_amount), 0) AS total
                   FROM orders WHERE status = ANY(%s)""",
                (names,),
            ).fetchone()
        return _money(row["total"]) if row else 0.0

    def recent_orders(self, limit: int = 5) -> list[Order]:
        return self.list_orders(limit=limit)
