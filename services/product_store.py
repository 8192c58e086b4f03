"""
SQLite-backed product catalog with an append-only price history.
"""
import logging
import sqlite3
import uuid
from decimal import Decimal
from typing import List, Optional

from adapters.base import ProductStore
from core.exceptions import ProductNotFoundError
from core.models import Platform, PriceHistoryEntry, Product, utcnow
from core.money import from_minor_units, parse_price, to_minor_units
from services.database import connect, format_ts, init_db, parse_ts

logger = logging.getLogger(__name__)


class SqliteProductStore(ProductStore):
    """Products keyed by internal id, optionally mapped to a storefront id."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def init_db(self) -> None:
        init_db(self.db_path)

    @staticmethod
    def _row_to_product(row: sqlite3.Row) -> Product:
        return Product(
            id=row["id"],
            merchant_id=row["merchant_id"],
            current_price=from_minor_units(row["current_price_minor"], row["currency"]),
            currency=row["currency"],
            title=row["title"],
            platform=Platform(row["platform"]),
            external_id=row["external_id"],
            updated_at=parse_ts(row["updated_at"]),
        )

    def create_product(
        self,
        *,
        merchant_id: str,
        current_price,
        currency: str,
        title: str = "",
        platform: Platform = Platform.MANUAL,
        external_id: Optional[str] = None,
        product_id: Optional[str] = None,
        source: str = "manual",
    ) -> Product:
        """Insert a product and its first price history row."""
        price = parse_price(current_price)
        currency = currency.upper()
        product_id = product_id or str(uuid.uuid4())
        now = format_ts(utcnow())
        minor = to_minor_units(price, currency)
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO products (id, merchant_id, title, platform, external_id, currency, current_price_minor, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (product_id, merchant_id, title, Platform(platform).value, external_id, currency, minor, now, now),
            )
            conn.execute(
                """
                INSERT INTO price_history (product_id, price_minor, currency, source, recorded_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (product_id, minor, currency, source, now),
            )
        logger.info(f"Created product {product_id} ({Platform(platform).value}:{external_id}) at {price} {currency}")
        return self.get_product(product_id)

    def get_product(self, product_id: str) -> Optional[Product]:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM products WHERE id = ? AND deleted_at IS NULL", (product_id,)
            ).fetchone()
        return self._row_to_product(row) if row else None

    def find_by_external_id(self, platform: Platform, external_id: str) -> Optional[Product]:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM products WHERE platform = ? AND external_id = ? AND deleted_at IS NULL",
                (Platform(platform).value, str(external_id)),
            ).fetchone()
        return self._row_to_product(row) if row else None

    def update_price(self, product_id: str, new_price: Decimal, source: str = "manual") -> Decimal:
        price = parse_price(new_price)
        now = format_ts(utcnow())
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT current_price_minor, currency FROM products WHERE id = ? AND deleted_at IS NULL",
                (product_id,),
            ).fetchone()
            if row is None:
                raise ProductNotFoundError(f"Product '{product_id}' not found")
            currency = row["currency"]
            minor = to_minor_units(price, currency)
            conn.execute(
                "UPDATE products SET current_price_minor = ?, updated_at = ? WHERE id = ?",
                (minor, now, product_id),
            )
            conn.execute(
                """
                INSERT INTO price_history (product_id, price_minor, currency, source, recorded_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (product_id, minor, currency, source, now),
            )
        old_price = from_minor_units(row["current_price_minor"], currency)
        logger.info(f"Product {product_id} price updated: {old_price} -> {price} ({source})")
        return old_price

    def update_title(self, product_id: str, title: str) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE products SET title = ?, updated_at = ? WHERE id = ?",
                (title, format_ts(utcnow()), product_id),
            )

    def mark_deleted(self, product_id: str) -> bool:
        """Soft delete; rows are kept for analytics."""
        with connect(self.db_path) as conn:
            cur = conn.execute(
                "UPDATE products SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (format_ts(utcnow()), product_id),
            )
        return cur.rowcount == 1

    def price_history(self, product_id: str) -> List[PriceHistoryEntry]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT product_id, price_minor, currency, source, recorded_at
                FROM price_history
                WHERE product_id = ?
                ORDER BY id
                """,
                (product_id,),
            ).fetchall()
        return [
            PriceHistoryEntry(
                product_id=r["product_id"],
                price=from_minor_units(r["price_minor"], r["currency"]),
                recorded_at=parse_ts(r["recorded_at"]),
                source=r["source"],
            )
            for r in rows
        ]
