"""Equipment quantity counters.

Nothing outside this module writes ``quantity_available``,
``maintenance_quantity`` or ``status`` on an equipment row once it exists.
Every helper expects to run inside the caller's ``ledger_transaction`` and
takes the row lock before touching the counters.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rental_ledger.models.ledger_models import Equipment
from rental_ledger.schemas.equipment import MaintenanceAdjustRequest

from .activity_service import record_activity, snapshot
from .errors import CapacityExceededError, InsufficientQuantityError, InvalidQuantityError, NotFoundError
from .status_rules import derive_equipment_status
from .transaction import ledger_transaction


INVENTORY_LOGGER = logging.getLogger("rental_ledger.inventory")

EQUIPMENT_AUDIT_FIELDS = ("quantity_total", "quantity_available", "maintenance_quantity", "status")

MAINTENANCE_ACTIONS = {
    "send_to_maintenance": "to_maintenance",
    "mark_as_repaired": "to_available",
}


def lock_equipment(db: Session, equipment_id: int) -> Equipment:
    stmt = (
        select(Equipment)
        .where(Equipment.id == equipment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    equipment = db.execute(stmt).scalars().first()
    if not equipment:
        raise NotFoundError(f"Equipment {equipment_id} not found.")
    return equipment


def refresh_equipment_status(db: Session, equipment: Equipment) -> Equipment:
    equipment.status = derive_equipment_status(
        int(equipment.quantity_available or 0),
        int(equipment.maintenance_quantity or 0),
        int(equipment.quantity_total or 0),
    )
    equipment.updated_at = datetime.now()
    db.flush()
    return equipment


def _require_positive(quantity: int, label: str = "quantity") -> int:
    value = int(quantity)
    if value < 1:
        raise InvalidQuantityError(f"{label} must be at least 1.")
    return value


def _shift_counters(db: Session, equipment_id: int, available_delta: int, maintenance_delta: int) -> Equipment:
    # The guards live in the WHERE clause so the check and the write are one
    # statement; zero matched rows means a guard failed.
    lock_equipment(db, equipment_id)
    new_available = Equipment.quantity_available + available_delta
    new_maintenance = Equipment.maintenance_quantity + maintenance_delta
    stmt = (
        update(Equipment)
        .where(
            Equipment.id == equipment_id,
            new_available >= 0,
            new_maintenance >= 0,
            new_available + new_maintenance <= Equipment.quantity_total,
        )
        .values(quantity_available=new_available, maintenance_quantity=new_maintenance)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    equipment = lock_equipment(db, equipment_id)
    if result.rowcount == 0:
        _raise_rejected_shift(equipment, available_delta, maintenance_delta)
    return refresh_equipment_status(db, equipment)


def _raise_rejected_shift(equipment: Equipment, available_delta: int, maintenance_delta: int) -> None:
    available = int(equipment.quantity_available or 0)
    maintenance = int(equipment.maintenance_quantity or 0)
    total = int(equipment.quantity_total or 0)
    if available + available_delta < 0:
        INVENTORY_LOGGER.warning(
            "Equipment %s: %s units requested, %s available", equipment.id, -available_delta, available
        )
        raise InsufficientQuantityError(
            f"Insufficient equipment quantity available: requested {-available_delta}, available {available}."
        )
    if maintenance + maintenance_delta < 0:
        INVENTORY_LOGGER.warning(
            "Equipment %s: %s units requested from maintenance, %s in maintenance",
            equipment.id,
            -maintenance_delta,
            maintenance,
        )
        raise InsufficientQuantityError(
            f"Insufficient quantity in maintenance: requested {-maintenance_delta}, in maintenance {maintenance}."
        )
    INVENTORY_LOGGER.warning(
        "Equipment %s: shift (%+d available, %+d maintenance) exceeds total %s",
        equipment.id,
        available_delta,
        maintenance_delta,
        total,
    )
    raise CapacityExceededError(
        f"Equipment {equipment.id} would hold {available + available_delta} available and "
        f"{maintenance + maintenance_delta} in maintenance, exceeding its total of {total}."
    )


def reserve(db: Session, equipment_id: int, quantity: int) -> Equipment:
    qty = _require_positive(quantity)
    equipment = _shift_counters(db, equipment_id, -qty, 0)
    INVENTORY_LOGGER.info("Reserved %s unit(s) of equipment %s", qty, equipment_id)
    return equipment


def release(db: Session, equipment_id: int, quantity: int) -> Equipment:
    qty = _require_positive(quantity)
    equipment = _shift_counters(db, equipment_id, qty, 0)
    INVENTORY_LOGGER.info("Released %s unit(s) of equipment %s", qty, equipment_id)
    return equipment


def resolve_damaged_count(quantity: int, condition: str, damaged_count: int | None) -> int:
    qty = int(quantity)
    if condition == "damaged":
        count = qty if damaged_count is None else int(damaged_count)
        if count < 0:
            raise InvalidQuantityError("damaged_count cannot be negative.")
        if count > qty:
            raise InvalidQuantityError(f"damaged_count {count} exceeds rented quantity {qty}.")
        return count
    if condition == "lost":
        return qty
    return 0


def dispose_on_return(
    db: Session,
    equipment_id: int,
    quantity: int,
    condition: str,
    damaged_count: int | None = None,
) -> Equipment:
    qty = _require_positive(quantity)
    if condition == "good":
        available_delta, maintenance_delta = qty, 0
    elif condition == "damaged":
        damaged = resolve_damaged_count(qty, condition, damaged_count)
        available_delta, maintenance_delta = qty - damaged, damaged
    elif condition == "lost":
        # Lost units are parked in maintenance; quantity_total is never written off here.
        available_delta, maintenance_delta = 0, qty
    else:
        raise InvalidQuantityError(f"Unknown return condition: {condition}")

    equipment = _shift_counters(db, equipment_id, available_delta, maintenance_delta)
    INVENTORY_LOGGER.info(
        "Equipment %s returned %s unit(s) as %s: +%s available, +%s maintenance",
        equipment_id,
        qty,
        condition,
        available_delta,
        maintenance_delta,
    )
    return equipment


def undo_disposition(
    db: Session,
    equipment_id: int,
    quantity: int,
    condition: str,
    damaged_count: int | None = None,
) -> Equipment:
    """Take a deleted return's units back out of the pools it put them in.

    The units count as rented out again afterwards. Fails with
    ``InsufficientQuantityError`` when they have since left those pools
    (reserved by another rental or repaired out of maintenance).
    """
    qty = _require_positive(quantity)
    if condition not in {"good", "damaged", "lost"}:
        raise InvalidQuantityError(f"Unknown return condition: {condition}")
    damaged = resolve_damaged_count(qty, condition, damaged_count)
    equipment = _shift_counters(db, equipment_id, -(qty - damaged), -damaged)
    INVENTORY_LOGGER.info(
        "Equipment %s: return of %s unit(s) as %s undone: -%s available, -%s maintenance",
        equipment_id,
        qty,
        condition,
        qty - damaged,
        damaged,
    )
    return equipment


def adjust_maintenance(db: Session, equipment_id: int, quantity: int, direction: str) -> Equipment:
    qty = _require_positive(quantity)
    if direction == "to_maintenance":
        return _shift_counters(db, equipment_id, -qty, qty)
    if direction == "to_available":
        return _shift_counters(db, equipment_id, qty, -qty)
    raise InvalidQuantityError(f"Unknown maintenance direction: {direction}")


def resize_stock(db: Session, equipment_id: int, new_total: int) -> Equipment:
    """Change ``quantity_total``; added or removed units go through the available pool."""
    target = int(new_total)
    if target < 0:
        raise InvalidQuantityError("quantity_total cannot be negative.")
    equipment = lock_equipment(db, equipment_id)
    delta = target - int(equipment.quantity_total or 0)
    if delta == 0:
        return equipment
    available = int(equipment.quantity_available or 0)
    if available + delta < 0:
        raise CapacityExceededError(
            f"Cannot shrink equipment {equipment_id} to {target} unit(s): "
            f"only {available} available, the rest are rented or in maintenance."
        )
    equipment.quantity_total = target
    equipment.quantity_available = available + delta
    INVENTORY_LOGGER.info("Equipment %s resized to %s unit(s)", equipment_id, target)
    return refresh_equipment_status(db, equipment)


def mark_equipment_rented(db: Session, equipment_id: int) -> Equipment | None:
    stmt = select(Equipment).where(Equipment.id == equipment_id).with_for_update()
    equipment = db.execute(stmt).scalars().first()
    if not equipment:
        return None
    equipment.status = "rented"
    equipment.updated_at = datetime.now()
    db.flush()
    return equipment


def update_equipment_maintenance(
    db: Session,
    equipment_id: int,
    payload: MaintenanceAdjustRequest,
    actor_id: int | None = None,
) -> dict:
    direction = MAINTENANCE_ACTIONS[payload.action]
    with ledger_transaction(db):
        before = snapshot(lock_equipment(db, equipment_id), EQUIPMENT_AUDIT_FIELDS)
        equipment = adjust_maintenance(db, equipment_id, payload.quantity, direction)
        after = snapshot(equipment, EQUIPMENT_AUDIT_FIELDS)

    INVENTORY_LOGGER.info(
        "Equipment %s: %s x%s by actor %s", equipment_id, payload.action, payload.quantity, actor_id
    )
    action = "SendToMaintenance" if direction == "to_maintenance" else "MarkAsRepaired"
    record_activity(db, actor_id, action, "equipment", equipment_id, before, after)
    return {
        "affectedCount": 1,
        "newAvailable": int(equipment.quantity_available),
        "newMaintenance": int(equipment.maintenance_quantity),
    }
