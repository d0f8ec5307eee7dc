from __future__ import annotations

import logging

from equipment_loans.models.loan_models import Loan, User
from equipment_loans.schemas.actors import Actor
from equipment_loans.services.errors import Forbidden, InvalidTransition


POLICY_LOGGER = logging.getLogger("equipment_loans.policy")

SUPERVISED_ACTIONS = {"approve", "reject", "activate", "processReturn"}
KNOWN_ACTIONS = SUPERVISED_ACTIONS | {"create", "requestReturn"}


def supervises(actor: Actor, loan: Loan | None, borrower: User | None = None) -> bool:
    if actor.role != "teacher" or loan is None:
        return False
    if loan.TeacherID and loan.TeacherID == actor.id:
        return True
    return bool(borrower and borrower.TeacherID and borrower.TeacherID == actor.id)


def can_transition(actor: Actor, loan: Loan | None, action: str, borrower: User | None = None) -> bool:
    if action not in KNOWN_ACTIONS:
        raise InvalidTransition(f"Unknown loan action: {action}", field="action")
    if action == "create":
        return actor.role == "student" and actor.isActive
    if action == "requestReturn":
        return loan is not None and actor.id == loan.UserID
    if actor.role == "admin":
        return True
    return supervises(actor, loan, borrower)


def require_transition(actor: Actor, loan: Loan | None, action: str, borrower: User | None = None) -> None:
    if can_transition(actor, loan, action, borrower):
        return
    loan_id = loan.LoanID if loan is not None else None
    POLICY_LOGGER.warning("Denied %s on loan %s for %s %s", action, loan_id, actor.role, actor.id)
    raise Forbidden(
        f"{actor.role} {actor.id} may not {action} this loan.",
        entity_type="loans",
        entity_id=loan_id,
    )
