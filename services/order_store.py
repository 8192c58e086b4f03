"""
SQLite-backed buy order store.

Every status change is a single ``UPDATE ... WHERE status = ...`` and the
caller learns whether it won from ``rowcount``. SQLite serializes writers,
so two processes racing on the same order can never both see rowcount 1.
"""
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_CEILING
from typing import List, Optional

from adapters.base import OrderStore
from config.settings import settings
from core.exceptions import InvalidPriceError
from core.models import BuyOrder, OrderStatus, PaymentStatus, utcnow
from core.money import from_minor_units, parse_price, to_minor_units
from services.database import connect, format_ts, init_db, parse_ts

logger = logging.getLogger(__name__)


class SqliteOrderStore(OrderStore):
    """Buy orders persisted in the ``buy_orders`` table."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def init_db(self) -> None:
        init_db(self.db_path)

    @staticmethod
    def _row_to_order(row: sqlite3.Row) -> BuyOrder:
        currency = row["currency"]
        fulfilled_minor = row["fulfilled_price_minor"]
        return BuyOrder(
            id=row["id"],
            merchant_id=row["merchant_id"],
            product_id=row["product_id"],
            customer_id=row["customer_id"],
            target_price=from_minor_units(row["target_price_minor"], currency),
            current_price_at_creation=from_minor_units(row["current_price_minor"], currency),
            currency=currency,
            status=OrderStatus(row["status"]),
            payment_status=PaymentStatus(row["payment_status"]),
            expires_at=parse_ts(row["expires_at"]),
            fulfilled_at=parse_ts(row["fulfilled_at"]),
            escrow_reference=row["escrow_reference"],
            fulfilled_price=None if fulfilled_minor is None else from_minor_units(fulfilled_minor, currency),
            discount_code=row["discount_code"],
            created_at=parse_ts(row["created_at"]),
            cancelled_at=parse_ts(row["cancelled_at"]),
        )

    # ------------------------------------------------
    # Intake
    # ------------------------------------------------

    def create_order(
        self,
        *,
        merchant_id: str,
        product_id: str,
        customer_id: str,
        target_price,
        current_price,
        currency: str,
        expires_at: Optional[datetime] = None,
        escrow_reference: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> BuyOrder:
        """
        Persist a new buy order.

        A buy order is strictly conditional: when target_price already meets
        current_price the order is stored as fulfilled at current_price,
        never as monitoring.
        """
        target = parse_price(target_price)
        current = parse_price(current_price)
        if target == 0:
            raise InvalidPriceError("target_price must be > 0")

        currency = currency.upper()
        now = utcnow()
        order_id = order_id or str(uuid.uuid4())
        if expires_at is None:
            expires_at = now + timedelta(days=settings.DEFAULT_ORDER_EXPIRY_DAYS)

        payment_status = PaymentStatus.AUTHORIZED if escrow_reference else PaymentStatus.NONE
        if target >= current:
            status = OrderStatus.FULFILLED
            fulfilled_at = format_ts(now)
            fulfilled_minor = to_minor_units(current, currency)
        else:
            status = OrderStatus.MONITORING
            fulfilled_at = None
            fulfilled_minor = None

        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO buy_orders (
                    id, merchant_id, product_id, customer_id, target_price_minor, current_price_minor,
                    currency, status, payment_status, expires_at, fulfilled_at, fulfilled_price_minor,
                    escrow_reference, discount_code, created_at, cancelled_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, NULL, ?)
                """,
                (
                    order_id,
                    merchant_id,
                    product_id,
                    customer_id,
                    to_minor_units(target, currency),
                    to_minor_units(current, currency),
                    currency,
                    status.value,
                    payment_status.value,
                    format_ts(expires_at),
                    fulfilled_at,
                    fulfilled_minor,
                    escrow_reference,
                    format_ts(now),
                    format_ts(now),
                ),
            )
        logger.info(
            f"Buy order {order_id} created as {status.value}: product={product_id} "
            f"target={target} current={current} {currency}"
        )
        return self.get_order(order_id)

    # ------------------------------------------------
    # Reads
    # ------------------------------------------------

    def get_order(self, order_id: str) -> Optional[BuyOrder]:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM buy_orders WHERE id = ?", (order_id,)).fetchone()
        return self._row_to_order(row) if row else None

    def find_by_escrow_reference(self, escrow_reference: str) -> Optional[BuyOrder]:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM buy_orders WHERE escrow_reference = ?", (escrow_reference,)
            ).fetchone()
        return self._row_to_order(row) if row else None

    def list_orders(self, product_id: Optional[str] = None, status: Optional[OrderStatus] = None) -> List[BuyOrder]:
        query = "SELECT * FROM buy_orders WHERE 1 = 1"
        params: list = []
        if product_id is not None:
            query += " AND product_id = ?"
            params.append(product_id)
        if status is not None:
            query += " AND status = ?"
            params.append(OrderStatus(status).value)
        query += " ORDER BY created_at DESC"
        with connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_order(r) for r in rows]

    def find_monitoring_orders(self, product_id: str, max_target_price: Decimal) -> List[BuyOrder]:
        with connect(self.db_path) as conn:
            currency_row = conn.execute(
                "SELECT currency FROM products WHERE id = ?", (product_id,)
            ).fetchone()
            if currency_row is None:
                return []
            # Round up: a target below an over-precise price must not qualify
            threshold = to_minor_units(
                parse_price(max_target_price), currency_row["currency"], rounding=ROUND_CEILING
            )
            rows = conn.execute(
                """
                SELECT * FROM buy_orders
                WHERE product_id = ? AND status = 'monitoring' AND target_price_minor >= ?
                ORDER BY created_at, rowid
                """,
                (product_id, threshold),
            ).fetchall()
        return [self._row_to_order(r) for r in rows]

    def find_expired(self, now: datetime) -> List[BuyOrder]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM buy_orders
                WHERE status = 'monitoring' AND expires_at <= ?
                ORDER BY expires_at
                """,
                (format_ts(now),),
            ).fetchall()
        return [self._row_to_order(r) for r in rows]

    # ------------------------------------------------
    # Conditional transitions
    # ------------------------------------------------

    def try_transition_to_fulfilled(self, order_id: str) -> bool:
        with connect(self.db_path) as conn:
            cur = conn.execute(
                """
                UPDATE buy_orders SET status = 'fulfilled', updated_at = ?
                WHERE id = ? AND status = 'monitoring'
                """,
                (format_ts(utcnow()), order_id),
            )
        return cur.rowcount == 1

    def revert_transition(self, order_id: str) -> None:
        with connect(self.db_path) as conn:
            cur = conn.execute(
                """
                UPDATE buy_orders
                SET status = 'monitoring', fulfilled_at = NULL, fulfilled_price_minor = NULL, updated_at = ?
                WHERE id = ? AND status = 'fulfilled'
                """,
                (format_ts(utcnow()), order_id),
            )
        if cur.rowcount != 1:
            logger.warning(f"Revert of buy order {order_id} matched no fulfilled row")

    def record_fulfillment(
        self,
        order_id: str,
        payment_status: PaymentStatus,
        fulfilled_at: datetime,
        fulfilled_price: Decimal,
        escrow_reference: Optional[str] = None,
        discount_code: Optional[str] = None,
    ) -> None:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT currency FROM buy_orders WHERE id = ?", (order_id,)).fetchone()
            if row is None:
                return
            conn.execute(
                """
                UPDATE buy_orders
                SET payment_status = ?, fulfilled_at = ?, fulfilled_price_minor = ?,
                    escrow_reference = COALESCE(?, escrow_reference),
                    discount_code = COALESCE(?, discount_code),
                    updated_at = ?
                WHERE id = ? AND status = 'fulfilled'
                """,
                (
                    PaymentStatus(payment_status).value,
                    format_ts(fulfilled_at),
                    to_minor_units(parse_price(fulfilled_price), row["currency"]),
                    escrow_reference,
                    discount_code,
                    format_ts(utcnow()),
                    order_id,
                ),
            )

    def set_payment_status(
        self,
        order_id: str,
        payment_status: PaymentStatus,
        expected: Optional[PaymentStatus] = None,
    ) -> bool:
        """Change payment_status only; guarded by ``expected`` when given."""
        query = "UPDATE buy_orders SET payment_status = ?, updated_at = ? WHERE id = ?"
        params: list = [PaymentStatus(payment_status).value, format_ts(utcnow()), order_id]
        if expected is not None:
            query += " AND payment_status = ?"
            params.append(PaymentStatus(expected).value)
        with connect(self.db_path) as conn:
            cur = conn.execute(query, params)
        return cur.rowcount == 1

    def cancel_order(self, order_id: str) -> bool:
        now = format_ts(utcnow())
        with connect(self.db_path) as conn:
            cur = conn.execute(
                """
                UPDATE buy_orders SET status = 'cancelled', cancelled_at = ?, updated_at = ?
                WHERE id = ? AND status IN ('pending', 'monitoring')
                """,
                (now, now, order_id),
            )
        return cur.rowcount == 1

    def try_transition_to_expired(self, order_id: str, now: datetime) -> bool:
        with connect(self.db_path) as conn:
            cur = conn.execute(
                """
                UPDATE buy_orders SET status = 'expired', updated_at = ?
                WHERE id = ? AND status = 'monitoring' AND expires_at <= ?
                """,
                (format_ts(utcnow()), order_id, format_ts(now)),
            )
        return cur.rowcount == 1
