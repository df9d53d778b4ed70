from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .db import db_session
from .models import AuditLog

logger = logging.getLogger(__name__)


def record(
    s: Session,
    user_id: int | None,
    action: str,
    table_name: str | None = None,
    record_id: int | None = None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
) -> None:
    """Registra um evento de auditoria na sessão corrente (mesma transação)."""
    s.add(
        AuditLog(
            user_id=user_id,
            action=action,
            table_name=table_name,
            record_id=record_id,
            old_values=old_values,
            new_values=new_values,
        )
    )
    logger.info("audit action=%s user=%s table=%s record=%s", action, user_id, table_name, record_id)


def list_audit_logs(
    page: int = 1,
    limit: int = 50,
    user_id: int | None = None,
    action: str | None = None,
) -> dict[str, Any]:
    page = max(page, 1)
    limit = max(min(limit, 200), 1)

    with db_session() as s:
        q = select(AuditLog)
        count_q = select(func.count(AuditLog.id))
        if user_id is not None:
            q = q.where(AuditLog.user_id == user_id)
            count_q = count_q.where(AuditLog.user_id == user_id)
        if action:
            q = q.where(AuditLog.action == action)
            count_q = count_q.where(AuditLog.action == action)

        total = s.execute(count_q).scalar_one()
        rows = s.scalars(
            q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).offset((page - 1) * limit)
        ).all()

        return {
            "logs": [
                {
                    "id": r.id,
                    "user_id": r.user_id,
                    "action": r.action,
                    "table_name": r.table_name,
                    "record_id": r.record_id,
                    "old_values": r.old_values,
                    "new_values": r.new_values,
                    "created_at": r.created_at.isoformat(),
                }
                for r in rows
            ],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": (total + limit - 1) // limit,
            },
        }
