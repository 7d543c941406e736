"""DB helper for ops_alerts.

Alerts are operator-facing records for conditions that need a human:
unmapped provider events, failed compensations, funding shortfalls.
Written within the caller's transaction.
"""
import json
import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_common.enums import AlertSeverity, AlertType

logger = logging.getLogger(__name__)

_INSERT_ALERT_SQL = text("""
    INSERT INTO ops_alerts (alert_type, severity, order_id, message, data)
    VALUES (:alert_type, :severity, :order_id, :message, CAST(:data AS JSONB))
""")


async def write_alert(
    alert_type: AlertType,
    severity: AlertSeverity,
    message: str,
    db: AsyncSession,
    order_id: str | None = None,
    data: dict[str, Any] | None = None,
) -> None:
    """Insert one row into ops_alerts within the caller's transaction."""
    log = logger.error if severity == AlertSeverity.CRITICAL else logger.warning
    log("ops alert %s (order=%s): %s", alert_type.value, order_id, message)
    await db.execute(
        _INSERT_ALERT_SQL,
        {
            "alert_type": alert_type.value,
            "severity": severity.value,
            "order_id": order_id,
            "message": message,
            "data": json.dumps(data or {}, default=str),
        },
    )


_RESOLVE_ALERTS_SQL = text("""
    UPDATE ops_alerts
    SET resolved = TRUE, resolved_by = :resolved_by, resolved_at = NOW()
    WHERE alert_type = :alert_type AND resolved = FALSE
""")


async def resolve_alerts(alert_type: AlertType, resolved_by: str, db: AsyncSession) -> int:
    """Mark every open alert of `alert_type` resolved. Returns the row count."""
    result = await db.execute(
        _RESOLVE_ALERTS_SQL, {"alert_type": alert_type.value, "resolved_by": resolved_by}
    )
    return int(result.rowcount or 0)
