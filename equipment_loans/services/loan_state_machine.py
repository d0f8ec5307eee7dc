from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, NamedTuple

from equipment_loans.db.store import LoanStore
from equipment_loans.models.loan_models import Loan, Notification, User
from equipment_loans.schemas.actors import Actor
from equipment_loans.schemas.loans import CreateLoanDto, ProcessReturnDto, RejectLoanRequest, ReturnRequestDto
from equipment_loans.services.access_policy import require_transition
from equipment_loans.services.audit_service import log_audit
from equipment_loans.services.equipment_ledger import adjust_availability, set_condition
from equipment_loans.services.errors import Conflict, InvalidTransition, LoanError, LoanValidationError
from equipment_loans.services.notification_emitter import NotificationRecord, build_notifications


LOAN_LOGGER = logging.getLogger("equipment_loans.loans")

LOAN_STATUSES = ("pending", "approved", "active", "return_requested", "returned", "rejected")
TERMINAL_STATUSES = {"returned", "rejected"}
ON_LOAN_STATUSES = {"approved", "active"}
OUTSTANDING_STATUSES = ON_LOAN_STATUSES | {"return_requested"}
RETURN_CONDITIONS = {"excellent", "good", "fair", "poor", "damaged"}


class Transition(NamedTuple):
    sources: frozenset
    target: str
    ledger_delta: int


TRANSITIONS = {
    "approve": Transition(frozenset({"pending"}), "approved", -1),
    "reject": Transition(frozenset({"pending"}), "rejected", 0),
    "activate": Transition(frozenset({"approved"}), "active", 0),
    "requestReturn": Transition(frozenset(ON_LOAN_STATUSES), "return_requested", 0),
    "processReturn": Transition(frozenset(OUTSTANDING_STATUSES), "returned", 1),
}

AUDIT_ACTIONS = {
    "approve": "ApproveLoan",
    "reject": "RejectLoan",
    "activate": "ActivateLoan",
    "requestReturn": "RequestReturn",
    "processReturn": "ProcessReturn",
}


def _as_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def resolve_now(now: datetime | None) -> datetime:
    return _as_naive(now or datetime.now())


def _clean(value: str | None) -> str | None:
    text = (value or "").strip()
    return text or None


def check_status(loan: Loan) -> str:
    if loan.Status not in LOAN_STATUSES:
        raise InvalidTransition(
            f"Loan {loan.LoanID} has unrecognized status {loan.Status!r}.",
            entity_type="loans",
            entity_id=loan.LoanID,
            field="status",
        )
    return loan.Status


def check_transition(loan: Loan, action: str) -> Transition:
    transition = TRANSITIONS.get(action)
    if transition is None:
        raise InvalidTransition(f"Unknown loan action: {action}", entity_type="loans", entity_id=loan.LoanID)
    current = check_status(loan)
    if current not in transition.sources:
        raise InvalidTransition(
            f"Cannot {action} loan {loan.LoanID} while it is {current}.",
            entity_type="loans",
            entity_id=loan.LoanID,
            field="status",
        )
    return transition


def is_overdue(loan: Loan, as_of: datetime | None = None) -> bool:
    if loan.Status not in OUTSTANDING_STATUSES or loan.PreferredEndDate is None:
        return False
    return resolve_now(as_of) > loan.PreferredEndDate


def validate_loan_request(payload: CreateLoanDto, now: datetime) -> tuple[str, datetime, datetime, datetime]:
    purpose = _clean(payload.purpose)
    if not purpose:
        raise LoanValidationError("purpose is required.", entity_type="loans", field="purpose")
    if not _clean(payload.equipmentId):
        raise LoanValidationError("equipmentId is required.", entity_type="loans", field="equipmentId")
    start = _as_naive(payload.preferredStartDate)
    end = _as_naive(payload.preferredEndDate)
    if end <= start:
        raise LoanValidationError(
            "preferredEndDate must be after preferredStartDate.",
            entity_type="loans",
            field="preferredEndDate",
        )
    if start.date() < now.date():
        raise LoanValidationError(
            "preferredStartDate cannot be before today.",
            entity_type="loans",
            field="preferredStartDate",
        )
    expected = _as_naive(payload.expectedReturnDate) if payload.expectedReturnDate else end
    if expected <= start:
        raise LoanValidationError(
            "expectedReturnDate must be after preferredStartDate.",
            entity_type="loans",
            field="expectedReturnDate",
        )
    return purpose, start, end, expected


def _active_admin_ids(store: LoanStore) -> list[str]:
    admins = store.query("users", User.Role == "admin", User.IsActive.is_(True))
    return [admin.UserID for admin in admins]


def persist_notifications(store: LoanStore, records: list[NotificationRecord], now: datetime) -> None:
    for record in records:
        store.add(
            "notifications",
            Notification(
                NotificationID=str(uuid.uuid4()),
                UserID=record.userId,
                Type=record.type,
                Title=record.title,
                Message=record.message,
                IsRead=False,
                RelatedLoanID=record.relatedLoanId,
                CreatedAt=now,
            ),
        )


def _emit(store: LoanStore, kind: str, loan: Loan, actor: Actor, now: datetime, **kwargs) -> list[NotificationRecord]:
    admin_ids: list[str] = []
    if kind in {"create", "requestReturn"} and not (loan.TeacherID or actor.teacherId):
        admin_ids = _active_admin_ids(store)
    records = build_notifications(kind, loan, actor, admin_ids=admin_ids, **kwargs)
    persist_notifications(store, records, now)
    return records


def create_loan(store: LoanStore, actor: Actor, payload: CreateLoanDto, now: datetime | None = None) -> Loan:
    now = resolve_now(now)
    try:
        require_transition(actor, None, "create")
        purpose, start, end, expected = validate_loan_request(payload, now)
        with store.atomic():
            equipment = store.get("equipment", payload.equipmentId)
            if int(equipment.AvailableQuantity or 0) <= 0:
                raise Conflict(
                    f"No units of {equipment.Name} are available.",
                    entity_type="equipment",
                    entity_id=equipment.EquipmentID,
                    field="availableQuantity",
                )
            loan = Loan(
                LoanID=str(uuid.uuid4()),
                UserID=actor.id,
                EquipmentID=equipment.EquipmentID,
                TeacherID=actor.teacherId,
                Status="pending",
                RequestDate=now,
                PreferredStartDate=start,
                PreferredEndDate=end,
                ExpectedReturnDate=expected,
                Purpose=purpose,
                Notes=_clean(payload.notes),
                CreatedAt=now,
                UpdatedAt=now,
            )
            store.add("loans", loan)
            _emit(store, "create", loan, actor, now, equipment_name=equipment.Name)
            log_audit(store, "loans", loan.LoanID, "CreateLoan", f"Requested equipment {equipment.EquipmentID}", actor.id, now)
    except LoanError as exc:
        LOAN_LOGGER.warning("create failed for %s: %s %s", actor.id, exc.kind, exc.message)
        raise
    LOAN_LOGGER.info("Loan %s created (pending) by %s", loan.LoanID, actor.id)
    return loan


def _apply_transition(
    store: LoanStore,
    actor: Actor,
    loan_id: str,
    action: str,
    changes: dict,
    now: datetime,
    *,
    reason: str | None = None,
    return_condition: str | None = None,
    requires_maintenance: bool = False,
    validate: Callable[[], None] | None = None,
) -> Loan:
    try:
        with store.atomic():
            loan = store.get("loans", loan_id)
            borrower = store.find("users", loan.UserID)
            require_transition(actor, loan, action, borrower)
            if validate is not None:
                validate()
            transition = check_transition(loan, action)
            previous = loan.Status

            # Compare-and-swap on status: a concurrent writer that already moved
            # this loan makes the update match no row.
            loan = store.put(
                "loans",
                loan_id,
                {**changes, "Status": transition.target, "UpdatedAt": now},
                expected={"Status": previous},
            )
            if transition.ledger_delta:
                equipment = adjust_availability(store, loan.EquipmentID, transition.ledger_delta, now)
            else:
                equipment = store.get("equipment", loan.EquipmentID)
            damaged = return_condition == "damaged"
            if return_condition is not None:
                equipment = set_condition(store, loan.EquipmentID, return_condition, damaged, requires_maintenance, now)

            _emit(
                store,
                action,
                loan,
                actor,
                now,
                equipment_name=equipment.Name,
                reason=reason,
                damaged=damaged,
            )
            log_audit(
                store,
                "loans",
                loan_id,
                AUDIT_ACTIONS[action],
                f"{previous} -> {transition.target}",
                actor.id,
                now,
            )
    except LoanError as exc:
        LOAN_LOGGER.warning("%s failed on loan %s by %s: %s %s", action, loan_id, actor.id, exc.kind, exc.message)
        raise
    LOAN_LOGGER.info("Loan %s %s -> %s by %s", loan_id, previous, transition.target, actor.id)
    return loan


def approve_loan(store: LoanStore, actor: Actor, loan_id: str, now: datetime | None = None) -> Loan:
    now = resolve_now(now)
    changes = {"ApprovedDate": now, "ActualStartDate": now, "ApprovedBy": actor.id}
    return _apply_transition(store, actor, loan_id, "approve", changes, now)


def reject_loan(
    store: LoanStore,
    actor: Actor,
    loan_id: str,
    payload: RejectLoanRequest | None = None,
    now: datetime | None = None,
) -> Loan:
    now = resolve_now(now)
    reason = _clean(payload.reason if payload else None)
    default_note = "Rejected by teacher" if actor.role == "teacher" else "Rejected by administrator"
    changes = {"ReturnNotes": reason or default_note}
    return _apply_transition(store, actor, loan_id, "reject", changes, now, reason=reason)


def activate_loan(store: LoanStore, actor: Actor, loan_id: str, now: datetime | None = None) -> Loan:
    now = resolve_now(now)
    return _apply_transition(store, actor, loan_id, "activate", {"ActualStartDate": now}, now)


def request_return(
    store: LoanStore,
    actor: Actor,
    loan_id: str,
    payload: ReturnRequestDto | None = None,
    now: datetime | None = None,
) -> Loan:
    now = resolve_now(now)
    changes = {"ReturnRequestDate": now}
    notes = _clean(payload.notes if payload else None)
    if notes:
        changes["ReturnNotes"] = notes
    return _apply_transition(store, actor, loan_id, "requestReturn", changes, now)


def process_return(
    store: LoanStore,
    actor: Actor,
    loan_id: str,
    payload: ProcessReturnDto,
    now: datetime | None = None,
) -> Loan:
    now = resolve_now(now)
    condition = _clean(payload.equipmentConditionOnReturn)

    def check_condition() -> None:
        if not condition or condition not in RETURN_CONDITIONS:
            raise LoanValidationError(
                "equipmentConditionOnReturn must be one of: " + ", ".join(sorted(RETURN_CONDITIONS)),
                entity_type="loans",
                entity_id=loan_id,
                field="equipmentConditionOnReturn",
            )

    changes = {
        "ActualEndDate": now,
        "ReturnDate": now,
        "EquipmentConditionOnReturn": condition,
        "EquipmentConditionNotes": _clean(payload.equipmentConditionNotes),
        "ReturnNotes": _clean(payload.returnNotes),
    }
    if actor.role == "teacher":
        changes["ReturnApprovedBy"] = actor.id
    else:
        changes["ReturnProcessedBy"] = actor.id
    return _apply_transition(
        store,
        actor,
        loan_id,
        "processReturn",
        changes,
        now,
        return_condition=condition,
        requires_maintenance=payload.requiresMaintenance,
        validate=check_condition,
    )


def serialize_loan(loan: Loan, as_of: datetime | None = None) -> dict:
    return {
        "id": loan.LoanID,
        "userId": loan.UserID,
        "equipmentId": loan.EquipmentID,
        "teacherId": loan.TeacherID,
        "status": loan.Status,
        "isOverdue": is_overdue(loan, as_of),
        "requestDate": loan.RequestDate,
        "approvedDate": loan.ApprovedDate,
        "preferredStartDate": loan.PreferredStartDate,
        "preferredEndDate": loan.PreferredEndDate,
        "actualStartDate": loan.ActualStartDate,
        "actualEndDate": loan.ActualEndDate,
        "expectedReturnDate": loan.ExpectedReturnDate,
        "returnDate": loan.ReturnDate,
        "returnRequestDate": loan.ReturnRequestDate,
        "purpose": loan.Purpose,
        "notes": loan.Notes,
        "returnNotes": loan.ReturnNotes,
        "equipmentConditionOnReturn": loan.EquipmentConditionOnReturn,
        "equipmentConditionNotes": loan.EquipmentConditionNotes,
        "approvedBy": loan.ApprovedBy,
        "returnProcessedBy": loan.ReturnProcessedBy,
        "returnApprovedBy": loan.ReturnApprovedBy,
        "createdAt": loan.CreatedAt,
        "updatedAt": loan.UpdatedAt,
    }
