"""
Notification sinks.

Notifications are fire-and-forget: enqueue() logs and swallows storage
errors because a missed message must never undo a fulfillment.
"""
import json
import logging
from typing import Any, Dict, List

from adapters.base import NotificationSink
from core.exceptions import OrderStoreError
from core.models import utcnow
from services.database import connect, format_ts, init_db

logger = logging.getLogger(__name__)


class SqliteNotificationSink(NotificationSink):
    """Writes notifications to the ``notifications`` table for the dashboard to read."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def init_db(self) -> None:
        init_db(self.db_path)

    def enqueue(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None:
        try:
            with connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO notifications (user_id, kind, payload_json, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (user_id, str(getattr(kind, "value", kind)), json.dumps(payload, default=str), format_ts(utcnow())),
                )
        except OrderStoreError as e:
            logger.error(f"Failed to enqueue {kind} notification for {user_id}: {e}")

    def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id, kind, payload_json, created_at, read_at FROM notifications WHERE user_id = ? ORDER BY id",
                (user_id,),
            ).fetchall()
        return [
            {
                "id": r["id"],
                "kind": r["kind"],
                "payload": json.loads(r["payload_json"]),
                "created_at": r["created_at"],
                "read_at": r["read_at"],
            }
            for r in rows
        ]
