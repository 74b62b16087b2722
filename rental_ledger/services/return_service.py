from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rental_ledger.models.ledger_models import Rental, Return
from rental_ledger.schemas.returns import AddReturnDto, UpdateReturnDto

from .activity_service import record_activity, snapshot
from .errors import InvalidStateError, NotFoundError, PaymentIncompleteError
from .inventory_service import dispose_on_return, mark_equipment_rented, resolve_damaged_count, undo_disposition
from .pagination import paginate
from .payment_service import (
    adjust_rental_totals,
    find_damage_charge,
    lock_rental,
    record_damage_charge,
    remove_payment,
)
from .status_rules import derive_payment_type, to_money
from .transaction import ledger_transaction


RETURN_LOGGER = logging.getLogger("rental_ledger.returns")

RETURN_AUDIT_FIELDS = (
    "rental_id",
    "return_date",
    "condition",
    "damage_description",
    "additional_charges",
    "damaged_count",
    "notes",
)

# condition and damaged_count are fixed once the units have been disposed of.
_RETURN_FIELD_MAP = {
    "returnDate": "return_date",
    "damageDescription": "damage_description",
    "notes": "notes",
}


def add_return(db: Session, payload: AddReturnDto, actor_id: int | None = None) -> dict:
    with ledger_transaction(db):
        rental = lock_rental(db, payload.rentalID)
        if rental.status == "returned":
            raise InvalidStateError(f"Rental {rental.id} has already been returned.")
        # Damaged returns may go through unpaid: their surcharge can be what settles the rental.
        if rental.payment_status != "paid" and payload.condition != "damaged":
            RETURN_LOGGER.warning(
                "Return of rental %s blocked: payment status %s", rental.id, rental.payment_status
            )
            raise PaymentIncompleteError(
                f"Cannot return equipment: Payment status is {rental.payment_status}. "
                "Please complete payment first."
            )

        quantity = int(rental.quantity or 1)
        damaged_count = resolve_damaged_count(quantity, payload.condition, payload.damagedCount)
        charges = to_money(payload.additionalCharges)
        return_date = payload.returnDate or datetime.now()

        record = Return(
            rental_id=rental.id,
            return_date=return_date,
            condition=payload.condition,
            damage_description=payload.damageDescription,
            additional_charges=charges,
            damaged_count=damaged_count,
            notes=payload.notes,
            created_at=datetime.now(),
        )
        db.add(record)
        rental.status = "returned"
        rental.updated_at = datetime.now()
        db.flush()

        if charges > 0:
            record_damage_charge(db, rental.id, charges, return_id=record.id, payment_date=return_date)

        dispose_on_return(db, rental.equipment_id, quantity, payload.condition, damaged_count)
        after = snapshot(record, RETURN_AUDIT_FIELDS)

    RETURN_LOGGER.info(
        "Rental %s returned as %s (damaged=%s, charges=%s)",
        record.rental_id,
        record.condition,
        damaged_count,
        charges,
    )
    record_activity(db, actor_id, "AddReturn", "returns", record.id, None, after)
    return {"id": record.id}


def _reconcile_damage_charge(db: Session, record: Return, old_charge: Decimal, new_charge: Decimal) -> None:
    delta = new_charge - old_charge
    payment = find_damage_charge(db, record.rental_id)
    if payment is None:
        if new_charge > 0:
            record_damage_charge(
                db,
                record.rental_id,
                new_charge,
                return_id=record.id,
                payment_date=record.return_date,
                amount_increase=delta,
            )
        else:
            adjust_rental_totals(db, record.rental_id, amount_delta=delta)
        return

    if new_charge == 0:
        remove_payment(db, payment)
        adjust_rental_totals(db, record.rental_id, amount_delta=delta)
        return

    paid_delta = new_charge - to_money(payment.amount)
    payment.amount = new_charge
    db.flush()
    rental = adjust_rental_totals(db, record.rental_id, paid_delta=paid_delta, amount_delta=delta)
    payment.payment_type = derive_payment_type(rental.total_paid, rental.total_amount)
    db.flush()


def update_return(db: Session, return_id: int, payload: UpdateReturnDto, actor_id: int | None = None) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    with ledger_transaction(db):
        record = db.get(Return, return_id)
        if not record:
            raise NotFoundError(f"Return {return_id} not found.")
        # The rental row lock serialises every mutation of its returns and payments.
        lock_rental(db, record.rental_id)
        before = snapshot(record, RETURN_AUDIT_FIELDS)
        new_condition = changes.get("condition")
        if new_condition is not None and new_condition != record.condition:
            raise InvalidStateError(
                "Return condition cannot be changed. Delete the return and record it again."
            )

        for key, value in changes.items():
            column = _RETURN_FIELD_MAP.get(key)
            if column is None:
                continue
            if column == "return_date" and value is None:
                continue
            setattr(record, column, value)

        if changes.get("additionalCharges") is not None:
            old_charge = to_money(record.additional_charges)
            new_charge = to_money(changes["additionalCharges"])
            if new_charge != old_charge:
                _reconcile_damage_charge(db, record, old_charge, new_charge)
                RETURN_LOGGER.info(
                    "Return %s charges changed %s -> %s", return_id, old_charge, new_charge
                )
            record.additional_charges = new_charge
        db.flush()
        after = snapshot(record, RETURN_AUDIT_FIELDS)

    record_activity(db, actor_id, "UpdateReturn", "returns", return_id, before, after)
    return {"affectedCount": 1}


def delete_return(db: Session, return_id: int, actor_id: int | None = None) -> dict:
    with ledger_transaction(db):
        record = db.get(Return, return_id)
        if not record:
            return {"affectedCount": 0}
        rental_id = record.rental_id
        rental = lock_rental(db, rental_id)
        before = snapshot(record, RETURN_AUDIT_FIELDS)

        charges = to_money(record.additional_charges)
        if charges > 0:
            payment = find_damage_charge(db, rental_id)
            if payment is not None:
                rental = remove_payment(db, payment, lower_total=False)
            rental = adjust_rental_totals(db, rental_id, amount_delta=-charges)

        undo_disposition(
            db,
            rental.equipment_id,
            int(rental.quantity or 1),
            record.condition,
            record.damaged_count,
        )
        db.delete(record)
        rental.status = "active"
        rental.updated_at = datetime.now()
        db.flush()
        mark_equipment_rented(db, rental.equipment_id)

    RETURN_LOGGER.info("Return %s deleted; rental %s reopened", return_id, rental_id)
    record_activity(db, actor_id, "DeleteReturn", "returns", return_id, before, None)
    return {"affectedCount": 1}


def serialize_return(record: Return) -> dict:
    rental = record.rental
    return {
        "id": record.id,
        "rentalID": record.rental_id,
        "returnDate": record.return_date,
        "condition": record.condition,
        "damageDescription": record.damage_description,
        "additionalCharges": record.additional_charges,
        "damagedCount": record.damaged_count,
        "notes": record.notes,
        "createdAt": record.created_at,
        "clientID": rental.client_id if rental else None,
        "equipmentID": rental.equipment_id if rental else None,
        "totalAmount": rental.total_amount if rental else None,
    }


def list_returns(db: Session, page: int = 1, limit: int = 10) -> dict:
    stmt = (
        select(Return)
        .options(selectinload(Return.rental).selectinload(Rental.equipment))
        .order_by(Return.created_at.desc(), Return.id.desc())
    )
    return paginate(db, stmt, serialize_return, page, limit)
