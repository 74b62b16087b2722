from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_ledger.models.ledger_models import AuditLog

from .pagination import paginate


ACTIVITY_LOGGER = logging.getLogger("rental_ledger.activity")


def _to_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=True, default=str, sort_keys=True)


def _from_json(value: str | None) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return value


def snapshot(record: Any, fields: tuple[str, ...]) -> dict[str, Any] | None:
    if record is None:
        return None
    return {field: getattr(record, field, None) for field in fields}


def _write_entry(
    db: Session,
    actor_id: int | None,
    action: str,
    table_name: str,
    record_id: int | None,
    before: Any,
    after: Any,
) -> None:
    db.add(
        AuditLog(
            user_id=actor_id,
            action=action,
            table_name=table_name,
            record_id=record_id,
            old_values=_to_json(before),
            new_values=_to_json(after),
            created_at=datetime.now(),
        )
    )
    db.commit()


def record_activity(
    db: Session,
    actor_id: int | None,
    action: str,
    table_name: str,
    record_id: int | None,
    before: Any = None,
    after: Any = None,
) -> bool:
    """Append one audit entry after the primary mutation has committed.

    Runs in its own short transaction. A failure is logged and discarded so
    the caller never sees it.
    """
    try:
        _write_entry(db, actor_id, action, table_name, record_id, before, after)
    except Exception:
        db.rollback()
        ACTIVITY_LOGGER.exception(
            "Audit entry %s on %s#%s for actor %s was dropped", action, table_name, record_id, actor_id
        )
        return False
    return True


def serialize_audit_log(entry: AuditLog) -> dict:
    return {
        "id": entry.id,
        "userId": entry.user_id,
        "action": entry.action,
        "tableName": entry.table_name,
        "recordId": entry.record_id,
        "oldValues": _from_json(entry.old_values),
        "newValues": _from_json(entry.new_values),
        "createdAt": entry.created_at,
    }


def list_audit_logs(db: Session, page: int = 1, limit: int = 20) -> dict:
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    return paginate(db, stmt, serialize_audit_log, page, limit)
