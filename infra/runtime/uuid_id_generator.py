from __future__ import annotations

import uuid


class UuidIdGenerator:
    def new_task_id(self) -> str:
        return f"task-{uuid.uuid4().hex[:12]}"
