"""DB helper for admin_audit_log.

One row per admin call, including rejected and unauthorized ones.
"""
import json
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_common.enums import AuditResult

_INSERT_AUDIT_SQL = text("""
    INSERT INTO admin_audit_log (actor, action, target, result, detail)
    VALUES (:actor, :action, :target, :result, CAST(:detail AS JSONB))
""")


async def write_audit(
    actor: str,
    action: str,
    target: str | None,
    result: AuditResult,
    detail: dict[str, Any],
    db: AsyncSession,
) -> None:
    """Insert one row into admin_audit_log within the caller's transaction."""
    await db.execute(
        _INSERT_AUDIT_SQL,
        {
            "actor": actor,
            "action": action,
            "target": target,
            "result": result.value,
            "detail": json.dumps(detail, default=str),
        },
    )
