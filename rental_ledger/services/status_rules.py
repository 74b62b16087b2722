"""Pure derivations for the cached status columns.

Every path that mutates equipment counters or rental totals calls these after
the mutation instead of computing statuses inline.
"""

from __future__ import annotations

from decimal import Decimal


def derive_equipment_status(available: int, maintenance: int, total: int) -> str:
    if available > 0:
        return "available"
    if maintenance >= total:
        return "maintenance"
    return "rented"


def derive_rental_payment_status(total_paid: Decimal, total_amount: Decimal) -> str:
    paid = Decimal(total_paid or 0)
    amount = Decimal(total_amount or 0)
    if paid >= amount:
        return "paid"
    if paid > 0:
        return "partial"
    return "unpaid"


def derive_payment_type(new_total_paid: Decimal, total_amount: Decimal) -> str:
    return "full" if Decimal(new_total_paid or 0) >= Decimal(total_amount or 0) else "partial"


def to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))
