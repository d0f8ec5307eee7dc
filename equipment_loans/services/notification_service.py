from __future__ import annotations

import logging
import os
from datetime import datetime, time, timedelta

from equipment_loans.db.store import LoanStore
from equipment_loans.models.loan_models import Loan, Notification
from equipment_loans.schemas.actors import Actor
from equipment_loans.services.errors import Forbidden
from equipment_loans.services.loan_state_machine import OUTSTANDING_STATUSES, persist_notifications, resolve_now
from equipment_loans.services.notification_emitter import build_due_notification


NOTIFY_LOGGER = logging.getLogger("equipment_loans.notifications")

DEFAULT_REMINDER_DAYS = 2


def reminder_days_from_env() -> int:
    raw = (os.environ.get("LOAN_REMINDER_DAYS") or "").strip()
    if not raw:
        return DEFAULT_REMINDER_DAYS
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"LOAN_REMINDER_DAYS must be a whole number of days, got {raw!r}") from None


def mark_notification_read(store: LoanStore, actor: Actor, notification_id: str, now: datetime | None = None) -> Notification:
    with store.atomic():
        notification = store.get("notifications", notification_id)
        if notification.UserID != actor.id:
            raise Forbidden(
                "Only the recipient can mark a notification as read.",
                entity_type="notifications",
                entity_id=notification_id,
            )
        if notification.IsRead:
            return notification
        notification = store.put(
            "notifications",
            notification_id,
            {"IsRead": True, "ReadAt": resolve_now(now)},
        )
    return notification


def _already_sent_today(store: LoanStore, loan_id: str, kind: str, day_start: datetime) -> bool:
    existing = store.query(
        "notifications",
        Notification.RelatedLoanID == loan_id,
        Notification.Type == kind,
        Notification.CreatedAt >= day_start,
    )
    return bool(existing)


def run_due_notifications(
    store: LoanStore,
    as_of: datetime | None = None,
    reminder_days: int | None = None,
) -> dict:
    """Queue overdue and due-soon notices for every outstanding loan.

    Meant to be polled by an external scheduler; sends at most one notice of
    each kind per loan per calendar day.
    """
    as_of = resolve_now(as_of)
    window = reminder_days_from_env() if reminder_days is None else reminder_days
    due_soon = as_of + timedelta(days=max(window, 0))
    day_start = datetime.combine(as_of.date(), time.min)

    created = {"overdue": 0, "reminder": 0}
    with store.atomic():
        loans = store.query("loans", Loan.Status.in_(sorted(OUTSTANDING_STATUSES)))
        for loan in loans:
            if loan.PreferredEndDate is None:
                continue
            if as_of > loan.PreferredEndDate:
                kind = "overdue"
            elif loan.PreferredEndDate <= due_soon:
                kind = "reminder"
            else:
                continue
            if _already_sent_today(store, loan.LoanID, kind, day_start):
                continue
            equipment = store.find("equipment", loan.EquipmentID)
            record = build_due_notification(kind, loan, equipment.Name if equipment else None)
            persist_notifications(store, [record], as_of)
            created[kind] += 1
    NOTIFY_LOGGER.info("Due notifications queued: %s overdue, %s reminders", created["overdue"], created["reminder"])
    return created


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.NotificationID,
        "userId": notification.UserID,
        "type": notification.Type,
        "title": notification.Title,
        "message": notification.Message,
        "isRead": bool(notification.IsRead),
        "relatedLoanId": notification.RelatedLoanID,
        "createdAt": notification.CreatedAt,
        "readAt": notification.ReadAt,
    }
