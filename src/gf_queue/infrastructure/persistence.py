# src/gf_queue/infrastructure/persistence.py
"""WorkQueueRepository — raw SQL over the work_queue table.

Claims use FOR UPDATE SKIP LOCKED, so any number of workers can poll the
same table without handing one item to two of them.

Transaction ownership: the CALLER commits or rolls back.
"""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_common.database import load_json
from src.gf_queue.domain.models import WorkItem

_COLUMNS = """
    id, kind, dedupe_key, payload, status, attempts, max_attempts,
    next_run_at, last_error, created_at, updated_at
"""

_ENQUEUE_SQL = text("""
    INSERT INTO work_queue (kind, dedupe_key, payload, status, max_attempts, next_run_at)
    VALUES (:kind, :dedupe_key, CAST(:payload AS JSONB), 'pending', :max_attempts, :run_at)
    ON CONFLICT (dedupe_key) DO NOTHING
    RETURNING id
""")

_CLAIM_DUE_SQL = text(f"""
    UPDATE work_queue
    SET attempts = attempts + 1,
        next_run_at = NOW() + make_interval(secs => :lease_seconds),
        updated_at = NOW()
    WHERE id IN (
        SELECT id FROM work_queue
        WHERE status = 'pending' AND next_run_at <= NOW()
        ORDER BY next_run_at ASC, id ASC
        LIMIT :limit
        FOR UPDATE SKIP LOCKED
    )
    RETURNING {_COLUMNS}
""")

_MARK_DONE_SQL = text("""
    UPDATE work_queue SET status = 'done', last_error = NULL, updated_at = NOW()
    WHERE id = :id
""")

_RESCHEDULE_SQL = text("""
    UPDATE work_queue SET last_error = :error, next_run_at = :run_at, updated_at = NOW()
    WHERE id = :id AND status = 'pending'
""")

_MARK_DEAD_SQL = text("""
    UPDATE work_queue SET status = 'dead', last_error = :error, updated_at = NOW()
    WHERE id = :id
""")


def _row_to_item(row: Any) -> WorkItem:
    return WorkItem(
        id=row.id,
        kind=row.kind,
        dedupe_key=row.dedupe_key,
        payload=load_json(row.payload, {}),
        status=row.status,
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        next_run_at=row.next_run_at,
        last_error=row.last_error,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class WorkQueueRepository:
    async def enqueue(
        self,
        kind: str,
        dedupe_key: str,
        payload: dict[str, Any],
        run_at: datetime,
        max_attempts: int,
        db: AsyncSession,
    ) -> bool:
        row = (
            await db.execute(
                _ENQUEUE_SQL,
                {
                    "kind": kind,
                    "dedupe_key": dedupe_key,
                    "payload": json.dumps(payload, default=str),
                    "max_attempts": max_attempts,
                    "run_at": run_at,
                },
            )
        ).fetchone()
        return row is not None

    async def claim_due(self, limit: int, lease_seconds: int, db: AsyncSession) -> list[WorkItem]:
        rows = (
            await db.execute(_CLAIM_DUE_SQL, {"limit": limit, "lease_seconds": lease_seconds})
        ).fetchall()
        items = [_row_to_item(row) for row in rows]
        items.sort(key=lambda i: i.id)
        return items

    async def mark_done(self, item_id: int, db: AsyncSession) -> None:
        await db.execute(_MARK_DONE_SQL, {"id": item_id})

    async def reschedule(
        self, item_id: int, error: str, run_at: datetime, db: AsyncSession
    ) -> None:
        await db.execute(_RESCHEDULE_SQL, {"id": item_id, "error": error[:2000], "run_at": run_at})

    async def mark_dead(self, item_id: int, error: str, db: AsyncSession) -> None:
        await db.execute(_MARK_DEAD_SQL, {"id": item_id, "error": error[:2000]})
