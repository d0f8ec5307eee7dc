from __future__ import annotations

from datetime import datetime

from equipment_loans.db.store import LoanStore
from equipment_loans.models.loan_models import AuditLog


def log_audit(
    store: LoanStore,
    entity_type: str,
    entity_id: str,
    action: str,
    details: str | None = None,
    user_id: str | None = None,
    created_at: datetime | None = None,
) -> None:
    store.add(
        "audit_logs",
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=created_at or datetime.now(),
        ),
    )
