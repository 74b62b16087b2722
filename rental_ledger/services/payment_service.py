from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session, selectinload

from rental_ledger.models.ledger_models import Payment, Rental
from rental_ledger.schemas.payments import AddPaymentDto, UpdatePaymentDto

from .activity_service import record_activity, snapshot
from .errors import NotFoundError
from .pagination import paginate
from .status_rules import derive_payment_type, derive_rental_payment_status, to_money
from .transaction import ledger_transaction


PAYMENT_LOGGER = logging.getLogger("rental_ledger.payments")

DAMAGE_CHARGE_NOTE = "Damage charges from return"
PAYMENT_AUDIT_FIELDS = ("rental_id", "amount", "payment_type", "source", "payment_date", "notes")
RENTAL_TOTAL_FIELDS = ("total_amount", "total_paid", "payment_status")

_PAYMENT_FIELD_MAP = {
    "rentalID": "rental_id",
    "amount": "amount",
    "paymentType": "payment_type",
    "paymentDate": "payment_date",
    "notes": "notes",
}


def lock_rental(db: Session, rental_id: int) -> Rental:
    stmt = (
        select(Rental)
        .where(Rental.id == rental_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    rental = db.execute(stmt).scalars().first()
    if not rental:
        raise NotFoundError(f"Rental {rental_id} not found.")
    return rental


def adjust_rental_totals(
    db: Session,
    rental_id: int,
    *,
    paid_delta: Decimal = Decimal("0"),
    amount_delta: Decimal = Decimal("0"),
) -> Rental:
    """Shift a rental's cached totals in place and re-derive its payment status.

    Both totals are floored at zero.
    """
    lock_rental(db, rental_id)
    new_paid = Rental.total_paid + to_money(paid_delta)
    new_amount = Rental.total_amount + to_money(amount_delta)
    stmt = (
        update(Rental)
        .where(Rental.id == rental_id)
        .values(
            total_paid=case((new_paid < 0, 0), else_=new_paid),
            total_amount=case((new_amount < 0, 0), else_=new_amount),
        )
        .execution_options(synchronize_session=False)
    )
    db.execute(stmt)
    rental = lock_rental(db, rental_id)
    rental.payment_status = derive_rental_payment_status(rental.total_paid, rental.total_amount)
    rental.updated_at = datetime.now()
    db.flush()
    return rental


def apply_payment(
    db: Session,
    rental_id: int,
    amount: Decimal,
    *,
    payment_date: datetime | None = None,
    notes: str | None = None,
    source: str = "manual",
    amount_increase: Decimal = Decimal("0"),
) -> Payment:
    value = to_money(amount)
    rental = adjust_rental_totals(db, rental_id, paid_delta=value, amount_delta=amount_increase)
    payment = Payment(
        rental_id=rental_id,
        amount=value,
        payment_type=derive_payment_type(rental.total_paid, rental.total_amount),
        source=source,
        payment_date=payment_date or datetime.now(),
        notes=notes,
        created_at=datetime.now(),
    )
    db.add(payment)
    db.flush()
    PAYMENT_LOGGER.info(
        "Rental %s: %s payment %s (%s), total_paid=%s of %s -> %s",
        rental_id,
        source,
        value,
        payment.payment_type,
        rental.total_paid,
        rental.total_amount,
        rental.payment_status,
    )
    return payment


def damage_charge_note(return_id: int | None = None) -> str:
    return f"{DAMAGE_CHARGE_NOTE} #{return_id}" if return_id else DAMAGE_CHARGE_NOTE


def record_damage_charge(
    db: Session,
    rental_id: int,
    charge: Decimal,
    *,
    return_id: int | None = None,
    payment_date: datetime | None = None,
    amount_increase: Decimal | None = None,
) -> Payment:
    # The surcharge is added to what is owed and booked as paid in the same step.
    return apply_payment(
        db,
        rental_id,
        charge,
        payment_date=payment_date,
        notes=damage_charge_note(return_id),
        source="damage_charge",
        amount_increase=charge if amount_increase is None else amount_increase,
    )


def find_damage_charge(db: Session, rental_id: int) -> Payment | None:
    stmt = (
        select(Payment)
        .where(Payment.rental_id == rental_id, Payment.source == "damage_charge")
        .order_by(Payment.id)
        .with_for_update()
    )
    return db.execute(stmt).scalars().first()


def _reload_payment(db: Session, payment_id: int) -> Payment | None:
    return db.get(Payment, payment_id, with_for_update=True, populate_existing=True)


def add_payment(db: Session, payload: AddPaymentDto, actor_id: int | None = None) -> dict:
    with ledger_transaction(db):
        payment = apply_payment(
            db,
            payload.rentalID,
            payload.amount,
            payment_date=payload.paymentDate,
            notes=payload.notes,
        )
        after = snapshot(payment, PAYMENT_AUDIT_FIELDS)

    record_activity(db, actor_id, "AddPayment", "payments", payment.id, None, after)
    return {"id": payment.id, "paymentType": payment.payment_type}


def update_payment(db: Session, payment_id: int, payload: UpdatePaymentDto, actor_id: int | None = None) -> dict:
    # Field edit only: the owning rental's totals are left as they are.
    changes = payload.model_dump(exclude_unset=True)
    with ledger_transaction(db):
        payment = _reload_payment(db, payment_id)
        if not payment:
            return {"affectedCount": 0}
        before = snapshot(payment, PAYMENT_AUDIT_FIELDS)
        for key, value in changes.items():
            column = _PAYMENT_FIELD_MAP.get(key)
            if column is None or value is None:
                continue
            setattr(payment, column, to_money(value) if column == "amount" else value)
        db.flush()
        after = snapshot(payment, PAYMENT_AUDIT_FIELDS)

    PAYMENT_LOGGER.info("Payment %s edited without rental reconciliation", payment_id)
    record_activity(db, actor_id, "UpdatePayment", "payments", payment_id, before, after)
    return {"affectedCount": 1}


def remove_payment(db: Session, payment: Payment, *, lower_total: bool = False) -> Rental:
    amount = to_money(payment.amount)
    rental_id = payment.rental_id
    db.delete(payment)
    db.flush()
    return adjust_rental_totals(
        db,
        rental_id,
        paid_delta=-amount,
        amount_delta=-amount if lower_total else Decimal("0"),
    )


def delete_payment(db: Session, payment_id: int, actor_id: int | None = None) -> dict:
    with ledger_transaction(db):
        payment = db.get(Payment, payment_id)
        if not payment:
            return {"affectedCount": 0}
        lock_rental(db, payment.rental_id)
        # Re-read under the rental lock so the amount reversed is the committed one.
        payment = _reload_payment(db, payment_id)
        if not payment:
            return {"affectedCount": 0}
        before = snapshot(payment, PAYMENT_AUDIT_FIELDS)
        rental = remove_payment(db, payment)
        after = snapshot(rental, RENTAL_TOTAL_FIELDS)

    PAYMENT_LOGGER.info("Payment %s deleted; rental %s now %s", payment_id, rental.id, rental.payment_status)
    record_activity(db, actor_id, "DeletePayment", "payments", payment_id, before, after)
    return {"affectedCount": 1}


def serialize_payment(payment: Payment) -> dict:
    rental = payment.rental
    return {
        "id": payment.id,
        "rentalID": payment.rental_id,
        "amount": payment.amount,
        "paymentType": payment.payment_type,
        "source": payment.source,
        "isDamageCharge": payment.source == "damage_charge",
        "paymentDate": payment.payment_date,
        "notes": payment.notes,
        "createdAt": payment.created_at,
        "clientID": rental.client_id if rental else None,
        "equipmentID": rental.equipment_id if rental else None,
    }


def list_payments(db: Session, page: int = 1, limit: int = 10) -> dict:
    stmt = (
        select(Payment)
        .options(selectinload(Payment.rental))
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
    )
    return paginate(db, stmt, serialize_payment, page, limit)


def list_payments_by_rental(db: Session, rental_id: int) -> list[dict]:
    stmt = (
        select(Payment)
        .options(selectinload(Payment.rental))
        .where(Payment.rental_id == rental_id)
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
    )
    return [serialize_payment(row) for row in db.execute(stmt).scalars().all()]


def check_rental_reconciliation(db: Session, rental_id: int) -> dict:
    rental = db.get(Rental, rental_id)
    if not rental:
        raise NotFoundError(f"Rental {rental_id} not found.")
    ledger_sum = db.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.rental_id == rental_id)
    ).scalar_one()
    ledger_total = to_money(ledger_sum)
    cached_total = to_money(rental.total_paid)
    return {
        "rentalID": rental_id,
        "ledgerTotal": ledger_total,
        "totalPaid": cached_total,
        "isReconciled": ledger_total == cached_total,
    }
