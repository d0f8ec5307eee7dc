"""Role-scoped views derived on demand from loans, equipment and users."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, time, timedelta

from sqlalchemy import or_, select

from equipment_loans.db.store import LoanStore
from equipment_loans.models.loan_models import Equipment, Loan, Notification, User
from equipment_loans.schemas.actors import Actor
from equipment_loans.schemas.loans import DateRange
from equipment_loans.services.equipment_ledger import is_available_for_loan
from equipment_loans.services.errors import LoanValidationError
from equipment_loans.services.loan_state_machine import OUTSTANDING_STATUSES, is_overdue, resolve_now


def available_equipment(store: LoanStore) -> list[Equipment]:
    units = store.query(
        "equipment",
        Equipment.Status == "available",
        Equipment.AvailableQuantity > 0,
        order_by=Equipment.Name,
    )
    return [unit for unit in units if is_available_for_loan(unit)]


def _scope_criteria(actor: Actor) -> tuple:
    if actor.role == "admin":
        return ()
    if actor.role == "teacher":
        my_students = select(User.UserID).where(User.TeacherID == actor.id)
        return (or_(Loan.TeacherID == actor.id, Loan.UserID.in_(my_students)),)
    return (Loan.UserID == actor.id,)


def loans_for(store: LoanStore, actor: Actor) -> list[Loan]:
    return store.query("loans", *_scope_criteria(actor), order_by=Loan.CreatedAt.desc())


def overdue_loans(store: LoanStore, as_of: datetime | None = None, actor: Actor | None = None) -> list[Loan]:
    as_of = resolve_now(as_of)
    criteria = [Loan.Status.in_(sorted(OUTSTANDING_STATUSES)), Loan.PreferredEndDate < as_of]
    if actor is not None:
        criteria.extend(_scope_criteria(actor))
    return store.query("loans", *criteria, order_by=Loan.PreferredEndDate)


def _range_bounds(date_range: DateRange) -> tuple[datetime, datetime]:
    if date_range.endDate < date_range.startDate:
        raise LoanValidationError("endDate must be on or after startDate.", field="endDate")
    start = datetime.combine(date_range.startDate, time.min)
    end = datetime.combine(date_range.endDate + timedelta(days=1), time.min)
    return start, end


def _loans_in_range(store: LoanStore, date_range: DateRange, actor: Actor | None = None) -> list[Loan]:
    start, end = _range_bounds(date_range)
    criteria = [Loan.CreatedAt >= start, Loan.CreatedAt < end]
    if actor is not None:
        criteria.extend(_scope_criteria(actor))
    return store.query("loans", *criteria)


def equipment_usage_stats(store: LoanStore, date_range: DateRange, actor: Actor | None = None) -> list[dict]:
    loans = _loans_in_range(store, date_range, actor)
    totals = Counter(loan.EquipmentID for loan in loans)
    active = Counter(loan.EquipmentID for loan in loans if loan.Status in OUTSTANDING_STATUSES)
    completed = Counter(loan.EquipmentID for loan in loans if loan.Status == "returned")

    rows = []
    for unit in store.query("equipment", order_by=Equipment.Name):
        rows.append(
            {
                "equipmentId": unit.EquipmentID,
                "name": unit.Name,
                "category": unit.Category,
                "totalLoans": totals[unit.EquipmentID],
                "activeLoans": active[unit.EquipmentID],
                "completedLoans": completed[unit.EquipmentID],
                "utilization": round(
                    (unit.TotalQuantity - unit.AvailableQuantity) / unit.TotalQuantity * 100, 1
                ) if unit.TotalQuantity else 0.0,
            }
        )
    rows.sort(key=lambda row: row["totalLoans"], reverse=True)
    return rows


def student_activity_stats(
    store: LoanStore,
    date_range: DateRange,
    actor: Actor | None = None,
    as_of: datetime | None = None,
) -> list[dict]:
    loans = _loans_in_range(store, date_range, actor)
    criteria = [User.Role == "student"]
    if actor is not None and actor.role == "teacher":
        criteria.append(User.TeacherID == actor.id)
    elif actor is not None and actor.role == "student":
        criteria.append(User.UserID == actor.id)

    rows = []
    for student in store.query("users", *criteria, order_by=User.Name):
        mine = [loan for loan in loans if loan.UserID == student.UserID]
        rows.append(
            {
                "userId": student.UserID,
                "name": student.Name,
                "totalLoans": len(mine),
                "activeLoans": sum(1 for loan in mine if loan.Status in OUTSTANDING_STATUSES),
                "completedLoans": sum(1 for loan in mine if loan.Status == "returned"),
                "overdueLoans": sum(1 for loan in mine if is_overdue(loan, as_of)),
            }
        )
    rows.sort(key=lambda row: row["totalLoans"], reverse=True)
    return rows


def dashboard_stats(
    store: LoanStore,
    actor: Actor,
    date_range: DateRange,
    as_of: datetime | None = None,
) -> dict:
    loans = _loans_in_range(store, date_range, actor)
    by_status = Counter(loan.Status for loan in loans)
    return {
        "dateRange": {"startDate": date_range.startDate, "endDate": date_range.endDate},
        "totalLoans": len(loans),
        "pendingLoans": by_status["pending"],
        "activeLoans": sum(by_status[status] for status in OUTSTANDING_STATUSES),
        "completedLoans": by_status["returned"],
        "rejectedLoans": by_status["rejected"],
        "overdueLoans": sum(1 for loan in loans if is_overdue(loan, as_of)),
        "availableEquipment": len(available_equipment(store)),
    }


def notifications_for(store: LoanStore, actor: Actor, unread_only: bool = False) -> list[Notification]:
    criteria = [Notification.UserID == actor.id]
    if unread_only:
        criteria.append(Notification.IsRead.is_(False))
    return store.query("notifications", *criteria, order_by=Notification.CreatedAt.desc())


def ledger_discrepancies(store: LoanStore) -> list[dict]:
    """Units whose checked-out count disagrees with their outstanding loans."""
    outstanding = Counter(
        loan.EquipmentID
        for loan in store.query("loans", Loan.Status.in_(sorted(OUTSTANDING_STATUSES)))
    )
    issues = []
    for unit in store.query("equipment", order_by=Equipment.Name):
        checked_out = int(unit.TotalQuantity or 0) - int(unit.AvailableQuantity or 0)
        in_bounds = 0 <= int(unit.AvailableQuantity or 0) <= int(unit.TotalQuantity or 0)
        if checked_out != outstanding[unit.EquipmentID] or not in_bounds:
            issues.append(
                {
                    "equipmentId": unit.EquipmentID,
                    "name": unit.Name,
                    "totalQuantity": unit.TotalQuantity,
                    "availableQuantity": unit.AvailableQuantity,
                    "outstandingLoans": outstanding[unit.EquipmentID],
                }
            )
    return issues
