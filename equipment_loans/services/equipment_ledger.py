from __future__ import annotations

import logging
from datetime import datetime

from equipment_loans.db.store import LoanStore
from equipment_loans.models.loan_models import Equipment
from equipment_loans.services.errors import LoanValidationError


LEDGER_LOGGER = logging.getLogger("equipment_loans.ledger")

EQUIPMENT_STATUSES = {"available", "loaned", "damaged", "maintenance"}
EQUIPMENT_CONDITIONS = {"excellent", "good", "fair", "poor"}


def adjust_availability(store: LoanStore, equipment_id: str, delta: int, now: datetime | None = None) -> Equipment:
    """Move one unit in or out of the available pool.

    Must run inside the same ``store.atomic()`` block as the loan update that
    triggered it. Fails with NotFound, or with InvariantViolation (a Conflict)
    when the count would leave ``[0, totalQuantity]``.
    """
    if delta not in (-1, 1):
        raise ValueError(f"Availability can only change by one unit, got {delta}.")
    equipment = store.adjust_counter(
        "equipment",
        equipment_id,
        "AvailableQuantity",
        delta,
        upper_field="TotalQuantity",
    )
    store.put("equipment", equipment_id, {"UpdatedAt": now or datetime.now()})
    LEDGER_LOGGER.debug(
        "Equipment %s availability %+d -> %s/%s",
        equipment_id,
        delta,
        equipment.AvailableQuantity,
        equipment.TotalQuantity,
    )
    return equipment


def resolve_return_status(damaged: bool, requires_maintenance: bool = False) -> str:
    if damaged:
        return "damaged"
    if requires_maintenance:
        return "maintenance"
    return "available"


def set_condition(
    store: LoanStore,
    equipment_id: str,
    condition: str,
    damaged: bool,
    requires_maintenance: bool = False,
    now: datetime | None = None,
) -> Equipment:
    # Damaged units keep the lowest grade on the condition scale.
    if damaged:
        condition = "poor"
    if condition not in EQUIPMENT_CONDITIONS:
        raise LoanValidationError(
            f"Unknown equipment condition: {condition}",
            entity_type="equipment",
            entity_id=equipment_id,
            field="condition",
        )
    status = resolve_return_status(damaged, requires_maintenance)
    return store.put(
        "equipment",
        equipment_id,
        {"Condition": condition, "Status": status, "UpdatedAt": now or datetime.now()},
    )


def is_available_for_loan(equipment: Equipment) -> bool:
    return equipment.Status == "available" and int(equipment.AvailableQuantity or 0) > 0


def serialize_equipment(equipment: Equipment) -> dict:
    return {
        "id": equipment.EquipmentID,
        "name": equipment.Name,
        "description": equipment.Description,
        "code": equipment.Code,
        "category": equipment.Category,
        "brand": equipment.Brand,
        "model": equipment.Model,
        "serialNumber": equipment.SerialNumber,
        "status": equipment.Status,
        "condition": equipment.Condition,
        "location": equipment.Location,
        "totalQuantity": equipment.TotalQuantity,
        "availableQuantity": equipment.AvailableQuantity,
        "purchaseDate": equipment.PurchaseDate,
        "lastMaintenanceDate": equipment.LastMaintenanceDate,
        "createdAt": equipment.CreatedAt,
        "updatedAt": equipment.UpdatedAt,
    }
