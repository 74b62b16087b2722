from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rental_ledger.models.ledger_models import Client, Rental
from rental_ledger.schemas.rentals import CreateRentalDto, UpdateRentalDto

from .activity_service import record_activity, snapshot
from .errors import InvalidStateError, NotFoundError
from .inventory_service import release, reserve
from .pagination import paginate
from .payment_service import lock_rental
from .status_rules import derive_rental_payment_status, to_money
from .transaction import ledger_transaction


RENTAL_LOGGER = logging.getLogger("rental_ledger.rentals")

RENTAL_AUDIT_FIELDS = (
    "client_id",
    "equipment_id",
    "start_date",
    "end_date",
    "rate_per_hour",
    "total_amount",
    "quantity",
    "status",
    "payment_status",
    "total_paid",
    "overnight_custody",
)

# Units of a returned rental are already back in inventory.
UNITS_OUT_STATES = {"active", "overdue", "released"}

_RENTAL_FIELD_MAP = {
    "clientID": "client_id",
    "startDate": "start_date",
    "endDate": "end_date",
    "ratePerHour": "rate_per_hour",
    "totalAmount": "total_amount",
    "status": "status",
    "overnightCustody": "overnight_custody",
}


def _require_client(db: Session, client_id: int) -> Client:
    client = db.get(Client, client_id)
    if not client:
        raise NotFoundError(f"Client {client_id} not found.")
    return client


def create_rental(db: Session, payload: CreateRentalDto, actor_id: int | None = None) -> dict:
    with ledger_transaction(db):
        _require_client(db, payload.clientID)
        reserve(db, payload.equipmentID, payload.quantity)
        rental = Rental(
            client_id=payload.clientID,
            equipment_id=payload.equipmentID,
            start_date=payload.startDate,
            end_date=payload.endDate,
            rate_per_hour=to_money(payload.ratePerHour),
            total_amount=to_money(payload.totalAmount),
            quantity=payload.quantity,
            status=payload.status,
            payment_status="unpaid",
            total_paid=to_money(0),
            overnight_custody=payload.overnightCustody,
            created_at=datetime.now(),
            updated_at=datetime.now(),
        )
        db.add(rental)
        db.flush()
        after = snapshot(rental, RENTAL_AUDIT_FIELDS)

    RENTAL_LOGGER.info(
        "Rental %s created: %s x equipment %s for client %s",
        rental.id,
        rental.quantity,
        rental.equipment_id,
        rental.client_id,
    )
    record_activity(db, actor_id, "CreateRental", "rentals", rental.id, None, after)
    return {"id": rental.id}


def update_rental(db: Session, rental_id: int, payload: UpdateRentalDto, actor_id: int | None = None) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    with ledger_transaction(db):
        rental = lock_rental(db, rental_id)
        before = snapshot(rental, RENTAL_AUDIT_FIELDS)
        previous_status = rental.status

        for key, value in changes.items():
            column = _RENTAL_FIELD_MAP.get(key)
            if column is None or value is None:
                continue
            if column == "client_id":
                _require_client(db, value)
            if column in {"rate_per_hour", "total_amount"}:
                value = to_money(value)
            setattr(rental, column, value)

        if rental.end_date < rental.start_date:
            raise InvalidStateError("endDate must be on or after startDate.")
        if "totalAmount" in changes:
            rental.payment_status = derive_rental_payment_status(rental.total_paid, rental.total_amount)
        rental.updated_at = datetime.now()
        db.flush()
        after = snapshot(rental, RENTAL_AUDIT_FIELDS)

    action = "UpdateRental"
    if previous_status != "released" and rental.status == "released":
        action = "Release"
    RENTAL_LOGGER.info("Rental %s updated (%s)", rental_id, action)
    record_activity(db, actor_id, action, "rentals", rental_id, before, after)
    return {"affectedCount": 1}


def delete_rental(db: Session, rental_id: int, actor_id: int | None = None) -> dict:
    with ledger_transaction(db):
        rental = lock_rental(db, rental_id)
        before = snapshot(rental, RENTAL_AUDIT_FIELDS)
        equipment_id = rental.equipment_id
        quantity = int(rental.quantity or 1)
        units_out = rental.status in UNITS_OUT_STATES

        db.delete(rental)
        db.flush()
        if units_out:
            release(db, equipment_id, quantity)

    RENTAL_LOGGER.info(
        "Rental %s deleted; %s unit(s) of equipment %s released",
        rental_id,
        quantity if units_out else 0,
        equipment_id,
    )
    record_activity(db, actor_id, "DeleteRental", "rentals", rental_id, before, None)
    return {"affectedCount": 1}


def serialize_rental(rental: Rental) -> dict:
    return {
        "id": rental.id,
        "clientID": rental.client_id,
        "clientName": rental.client.name if rental.client else None,
        "equipmentID": rental.equipment_id,
        "equipmentName": rental.equipment.name if rental.equipment else None,
        "equipmentType": rental.equipment.type if rental.equipment else None,
        "startDate": rental.start_date,
        "endDate": rental.end_date,
        "ratePerHour": rental.rate_per_hour,
        "totalAmount": rental.total_amount,
        "quantity": rental.quantity,
        "status": rental.status,
        "paymentStatus": rental.payment_status,
        "totalPaid": rental.total_paid,
        "overnightCustody": rental.overnight_custody,
        "createdAt": rental.created_at,
        "updatedAt": rental.updated_at,
    }


def _rental_query():
    return select(Rental).options(selectinload(Rental.client), selectinload(Rental.equipment))


def get_rental(db: Session, rental_id: int) -> dict:
    rental = db.execute(_rental_query().where(Rental.id == rental_id)).scalars().first()
    if not rental:
        raise NotFoundError(f"Rental {rental_id} not found.")
    return serialize_rental(rental)


def list_rentals(db: Session, page: int = 1, limit: int = 10, status: str | None = None) -> dict:
    stmt = _rental_query()
    if status and status != "all":
        stmt = stmt.where(Rental.status == status)
    stmt = stmt.order_by(Rental.created_at.desc(), Rental.id.desc())
    return paginate(db, stmt, serialize_rental, page, limit)


def list_active_rentals(db: Session) -> list[dict]:
    stmt = _rental_query().where(Rental.status == "active").order_by(Rental.end_date.asc())
    return [serialize_rental(row) for row in db.execute(stmt).scalars().all()]
