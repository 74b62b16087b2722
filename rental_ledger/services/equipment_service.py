from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rental_ledger.models.ledger_models import Equipment, Rental
from rental_ledger.schemas.equipment import EquipmentUpsert

from .activity_service import record_activity, snapshot
from .errors import CapacityExceededError, InvalidStateError, NotFoundError
from .inventory_service import lock_equipment, refresh_equipment_status, resize_stock
from .status_rules import to_money
from .transaction import ledger_transaction


EQUIPMENT_LOGGER = logging.getLogger("rental_ledger.inventory")

EQUIPMENT_FIELDS = (
    "name",
    "type",
    "rate_per_hour",
    "status",
    "description",
    "quantity_total",
    "quantity_available",
    "maintenance_quantity",
)


def add_equipment(db: Session, payload: EquipmentUpsert, actor_id: int | None = None) -> dict:
    if not (payload.name or "").strip() or not (payload.type or "").strip():
        raise InvalidStateError("Equipment name and type are required.")
    total = 1 if payload.quantityTotal is None else int(payload.quantityTotal)
    available = total if payload.quantityAvailable is None else int(payload.quantityAvailable)
    if available > total:
        raise CapacityExceededError(f"quantity_available {available} exceeds quantity_total {total}.")

    with ledger_transaction(db):
        equipment = Equipment(
            name=payload.name.strip(),
            type=payload.type.strip(),
            rate_per_hour=to_money(payload.ratePerHour),
            description=payload.description,
            quantity_total=total,
            quantity_available=available,
            maintenance_quantity=0,
            created_at=datetime.now(),
        )
        db.add(equipment)
        db.flush()
        refresh_equipment_status(db, equipment)
        after = snapshot(equipment, EQUIPMENT_FIELDS)

    EQUIPMENT_LOGGER.info("Equipment %s (%s) added with %s unit(s)", equipment.id, equipment.name, total)
    record_activity(db, actor_id, "CreateEquipment", "equipment", equipment.id, None, after)
    return {"id": equipment.id}


def update_equipment(db: Session, equipment_id: int, payload: EquipmentUpsert, actor_id: int | None = None) -> dict:
    with ledger_transaction(db):
        equipment = lock_equipment(db, equipment_id)
        before = snapshot(equipment, EQUIPMENT_FIELDS)
        if payload.name is not None:
            equipment.name = payload.name.strip()
        if payload.type is not None:
            equipment.type = payload.type.strip()
        if payload.ratePerHour is not None:
            equipment.rate_per_hour = to_money(payload.ratePerHour)
        if payload.description is not None:
            equipment.description = payload.description
        db.flush()
        if payload.quantityTotal is not None:
            equipment = resize_stock(db, equipment_id, payload.quantityTotal)
        equipment.updated_at = datetime.now()
        db.flush()
        after = snapshot(equipment, EQUIPMENT_FIELDS)

    record_activity(db, actor_id, "UpdateEquipment", "equipment", equipment_id, before, after)
    return {"affectedCount": 1}


def delete_equipment(db: Session, equipment_id: int, actor_id: int | None = None) -> dict:
    with ledger_transaction(db):
        equipment = lock_equipment(db, equipment_id)
        rental_count = db.execute(
            select(func.count(Rental.id)).where(Rental.equipment_id == equipment_id)
        ).scalar_one()
        if rental_count:
            raise InvalidStateError(
                f"Equipment {equipment_id} is referenced by {rental_count} rental(s) and cannot be deleted."
            )
        before = snapshot(equipment, EQUIPMENT_FIELDS)
        db.delete(equipment)

    EQUIPMENT_LOGGER.info("Equipment %s deleted", equipment_id)
    record_activity(db, actor_id, "DeleteEquipment", "equipment", equipment_id, before, None)
    return {"affectedCount": 1}


def serialize_equipment(equipment: Equipment) -> dict:
    return {
        "id": equipment.id,
        "name": equipment.name,
        "type": equipment.type,
        "ratePerHour": equipment.rate_per_hour,
        "status": equipment.status,
        "description": equipment.description,
        "quantityTotal": equipment.quantity_total,
        "quantityAvailable": equipment.quantity_available,
        "maintenanceQuantity": equipment.maintenance_quantity,
        "createdAt": equipment.created_at,
        "updatedAt": equipment.updated_at,
    }


def get_equipment(db: Session, equipment_id: int) -> dict:
    equipment = db.get(Equipment, equipment_id)
    if not equipment:
        raise NotFoundError(f"Equipment {equipment_id} not found.")
    return serialize_equipment(equipment)


def list_equipment(db: Session) -> list[dict]:
    rows = db.execute(select(Equipment).order_by(Equipment.created_at.desc(), Equipment.id.desc())).scalars().all()
    return [serialize_equipment(row) for row in rows]


def list_available_equipment(db: Session) -> list[dict]:
    rows = db.execute(
        select(Equipment).where(Equipment.status == "available").order_by(Equipment.name)
    ).scalars().all()
    return [serialize_equipment(row) for row in rows]
