"""Domain models for gf_queue — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.gf_common.enums import WorkItemStatus


@dataclass
class WorkItem:
    id: int
    kind: str                    # WorkItemKind value
    dedupe_key: str              # unique; a second enqueue with the same key is a no-op
    payload: dict[str, Any] = field(default_factory=dict)
    status: str = WorkItemStatus.PENDING.value
    attempts: int = 0            # incremented on every claim
    max_attempts: int = 5
    next_run_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts
