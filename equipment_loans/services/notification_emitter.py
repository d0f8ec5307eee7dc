"""Pure mapping from a loan transition to the notification records it produces.

Nothing here touches storage. The state machine persists the returned
records inside the same atomic unit as the loan and ledger writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from equipment_loans.models.loan_models import Loan
from equipment_loans.schemas.actors import Actor


NOTIFICATION_TYPES = {
    "pending",
    "approved",
    "rejected",
    "return_request",
    "return_processed",
    "return_approved",
    "damaged",
    "overdue",
    "reminder",
}


@dataclass(frozen=True)
class NotificationRecord:
    userId: str
    type: str
    title: str
    message: str
    relatedLoanId: Optional[str] = None


def _label(equipment_name: str | None) -> str:
    return f'"{equipment_name}"' if equipment_name else "the requested equipment"


def supervisor_recipients(loan: Loan, admin_ids: Iterable[str], teacher_id: str | None = None) -> list[str]:
    """Supervising teacher when one resolves, otherwise every active admin."""
    supervisor = loan.TeacherID or teacher_id
    if supervisor:
        return [supervisor]
    return sorted(set(admin_ids))


def build_notifications(
    kind: str,
    loan: Loan,
    actor: Actor,
    *,
    admin_ids: Iterable[str] = (),
    equipment_name: str | None = None,
    reason: str | None = None,
    damaged: bool = False,
) -> list[NotificationRecord]:
    label = _label(equipment_name)

    if kind == "create":
        return [
            NotificationRecord(
                userId=recipient,
                type="pending",
                title="New Loan Request",
                message=f"Student {actor.id} has requested {label}. Review the request to approve or reject it.",
                relatedLoanId=loan.LoanID,
            )
            for recipient in supervisor_recipients(loan, admin_ids, actor.teacherId)
        ]

    if kind == "approve":
        return [
            NotificationRecord(
                userId=loan.UserID,
                type="approved",
                title="Loan Approved",
                message=f"Your request for {label} has been approved. You can pick up the equipment.",
                relatedLoanId=loan.LoanID,
            )
        ]

    if kind == "reject":
        message = f"Your request for {label} has been rejected."
        if reason:
            message = f"{message} Reason: {reason}"
        return [
            NotificationRecord(
                userId=loan.UserID,
                type="rejected",
                title="Loan Rejected",
                message=message,
                relatedLoanId=loan.LoanID,
            )
        ]

    if kind == "requestReturn":
        return [
            NotificationRecord(
                userId=recipient,
                type="return_request",
                title="Return Requested",
                message=f"Student {loan.UserID} has asked to return {label}. Review the return.",
                relatedLoanId=loan.LoanID,
            )
            for recipient in supervisor_recipients(loan, admin_ids, actor.teacherId)
        ]

    if kind == "processReturn":
        condition = loan.EquipmentConditionOnReturn
        if actor.role == "teacher":
            records = [
                NotificationRecord(
                    userId=loan.UserID,
                    type="return_approved",
                    title="Return Approved",
                    message=f"Your return of {label} has been approved and processed. Equipment condition: {condition}",
                    relatedLoanId=loan.LoanID,
                )
            ]
        else:
            records = [
                NotificationRecord(
                    userId=loan.UserID,
                    type="return_processed",
                    title="Return Processed",
                    message=f"Your return of {label} has been processed. Equipment condition: {condition}",
                    relatedLoanId=loan.LoanID,
                )
            ]
        if damaged:
            records.append(
                NotificationRecord(
                    userId=loan.UserID,
                    type="damaged",
                    title="Equipment Damaged",
                    message=f"The returned {label} shows damage. Check the details in your loan history.",
                    relatedLoanId=loan.LoanID,
                )
            )
        return records

    if kind == "activate":
        return []

    raise ValueError(f"No notification mapping for transition {kind!r}")


def build_due_notification(kind: str, loan: Loan, equipment_name: str | None = None) -> NotificationRecord:
    label = _label(equipment_name)
    due = loan.PreferredEndDate.strftime("%Y-%m-%d") if loan.PreferredEndDate else "the agreed date"
    if kind == "overdue":
        return NotificationRecord(
            userId=loan.UserID,
            type="overdue",
            title="Loan Overdue",
            message=f"Your loan of {label} was due on {due}. Please return it as soon as possible.",
            relatedLoanId=loan.LoanID,
        )
    if kind == "reminder":
        return NotificationRecord(
            userId=loan.UserID,
            type="reminder",
            title="Loan Due Soon",
            message=f"Your loan of {label} is due on {due}.",
            relatedLoanId=loan.LoanID,
        )
    raise ValueError(f"No due notification of kind {kind!r}")
