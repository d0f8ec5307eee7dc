"""Persistence contract used by the loan core.

The core never talks to a Session directly: it reads entities, applies
partial updates and groups its writes inside ``atomic()``. ``SqlAlchemyStore``
is the adapter used by the application and the tests.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from equipment_loans.models.loan_models import AuditLog, Equipment, Loan, Notification, User
from equipment_loans.services.errors import Conflict, InvariantViolation, NotFound


STORE_LOGGER = logging.getLogger("equipment_loans.store")

ENTITY_MODELS = {
    "users": (User, "UserID"),
    "equipment": (Equipment, "EquipmentID"),
    "loans": (Loan, "LoanID"),
    "notifications": (Notification, "NotificationID"),
    "audit_logs": (AuditLog, "AuditID"),
}


def _resolve(entity_type: str):
    try:
        return ENTITY_MODELS[entity_type]
    except KeyError:
        raise ValueError(f"Unknown entity type: {entity_type}") from None


class LoanStore:
    """Abstract read / partial-update / atomic-unit contract."""

    def get(self, entity_type: str, entity_id: str):
        raise NotImplementedError

    def find(self, entity_type: str, entity_id: str | None):
        raise NotImplementedError

    def put(self, entity_type: str, entity_id: str, changes: dict[str, Any], expected: dict[str, Any] | None = None):
        raise NotImplementedError

    def add(self, entity_type: str, entity) -> None:
        raise NotImplementedError

    def adjust_counter(self, entity_type: str, entity_id: str, field: str, delta: int, upper_field: str | None = None):
        raise NotImplementedError

    def atomic(self):
        raise NotImplementedError

    def query(self, entity_type: str, *criteria, order_by=None) -> list:
        raise NotImplementedError

    def subscribe(self, entity_type: str, criteria, callback: Callable[[list], None]) -> Callable[[], None]:
        raise NotImplementedError


class SqlAlchemyStore(LoanStore):
    def __init__(self, db: Session):
        self.db = db
        self._depth = 0
        self._touched: set[str] = set()
        self._subscribers: dict[int, tuple[str, tuple, Callable[[list], None]]] = {}
        self._next_token = 0

    def get(self, entity_type: str, entity_id: str):
        entity = self.find(entity_type, entity_id)
        if entity is None:
            raise NotFound(
                f"{entity_type} {entity_id} not found.",
                entity_type=entity_type,
                entity_id=entity_id,
            )
        return entity

    def find(self, entity_type: str, entity_id: str | None):
        model, _ = _resolve(entity_type)
        if entity_id is None:
            return None
        return self.db.get(model, entity_id)

    def put(self, entity_type: str, entity_id: str, changes: dict[str, Any], expected: dict[str, Any] | None = None):
        model, pk_attr = _resolve(entity_type)
        stmt = update(model).where(getattr(model, pk_attr) == entity_id)
        for name, value in (expected or {}).items():
            stmt = stmt.where(getattr(model, name) == value)
        stmt = stmt.values({getattr(model, name): value for name, value in changes.items()})
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount != 1:
            current = self.db.get(model, entity_id, populate_existing=True)
            if current is None:
                raise NotFound(
                    f"{entity_type} {entity_id} not found.",
                    entity_type=entity_type,
                    entity_id=entity_id,
                )
            raise Conflict(
                f"{entity_type} {entity_id} was modified concurrently.",
                entity_type=entity_type,
                entity_id=entity_id,
                field=next(iter(expected), None) if expected else None,
            )
        self._touched.add(entity_type)
        return self.db.get(model, entity_id, populate_existing=True)

    def add(self, entity_type: str, entity) -> None:
        _resolve(entity_type)
        self.db.add(entity)
        self.db.flush()
        self._touched.add(entity_type)

    def adjust_counter(self, entity_type: str, entity_id: str, field: str, delta: int, upper_field: str | None = None):
        model, pk_attr = _resolve(entity_type)
        column = getattr(model, field)
        stmt = (
            update(model)
            .where(getattr(model, pk_attr) == entity_id)
            .where(column + delta >= 0)
        )
        if upper_field:
            stmt = stmt.where(column + delta <= getattr(model, upper_field))
        stmt = stmt.values({column: column + delta})
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        current = self.db.get(model, entity_id, populate_existing=True)
        if current is None:
            raise NotFound(
                f"{entity_type} {entity_id} not found.",
                entity_type=entity_type,
                entity_id=entity_id,
            )
        if result.rowcount != 1:
            raise InvariantViolation(
                f"{field} of {entity_type} {entity_id} cannot change by {delta:+d} from {getattr(current, field)}.",
                entity_type=entity_type,
                entity_id=entity_id,
                field=field,
            )
        self._touched.add(entity_type)
        return current

    @contextmanager
    def atomic(self) -> Iterator["SqlAlchemyStore"]:
        outermost = self._depth == 0
        self._depth += 1
        try:
            yield self
            if outermost:
                self.db.commit()
        except Exception:
            if outermost:
                self.db.rollback()
                self._touched.clear()
            raise
        finally:
            self._depth -= 1
        if outermost:
            touched, self._touched = self._touched, set()
            self._publish(touched)

    def query(self, entity_type: str, *criteria, order_by=None) -> list:
        model, _ = _resolve(entity_type)
        stmt = select(model)
        if criteria:
            stmt = stmt.where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        return list(self.db.execute(stmt).scalars().all())

    def subscribe(self, entity_type: str, criteria, callback: Callable[[list], None]) -> Callable[[], None]:
        _resolve(entity_type)
        if criteria is None:
            criteria = ()
        elif not isinstance(criteria, (list, tuple)):
            criteria = (criteria,)
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = (entity_type, tuple(criteria), callback)

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def _publish(self, touched: set[str]) -> None:
        for entity_type, criteria, callback in list(self._subscribers.values()):
            if entity_type not in touched:
                continue
            try:
                callback(self.query(entity_type, *criteria))
            except Exception:
                STORE_LOGGER.exception("Subscriber for %s failed", entity_type)
