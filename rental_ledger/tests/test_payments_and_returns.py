import unittest
from decimal import Decimal
from unittest import mock

from rental_ledger.models.ledger_models import Payment
from rental_ledger.schemas.equipment import MaintenanceAdjustRequest
from rental_ledger.schemas.payments import UpdatePaymentDto
from rental_ledger.schemas.returns import AddReturnDto, UpdateReturnDto
from rental_ledger.services.errors import (
    CapacityExceededError,
    InsufficientQuantityError,
    InvalidQuantityError,
    InvalidStateError,
    NotFoundError,
    PaymentIncompleteError,
)
from rental_ledger.services.inventory_service import update_equipment_maintenance
from rental_ledger.services.payment_service import (
    check_rental_reconciliation,
    delete_payment,
    list_payments,
    list_payments_by_rental,
    update_payment,
)
from rental_ledger.services.rental_service import delete_rental
from rental_ledger.services.return_service import add_return, delete_return, list_returns, update_return
from rental_ledger.tests.ledger_fixtures import LedgerDbTestCase


class PaymentLedgerTests(LedgerDbTestCase):
    def setUp(self):
        super().setUp()
        self.equipment_id = self.make_equipment(total=2)
        self.rental_id = self.make_rental(self.equipment_id, total="1000.00")

    def test_installments_move_rental_from_unpaid_to_paid(self):
        self.assertEqual(self.rental(self.rental_id).payment_status, "unpaid")

        first = self.pay(self.rental_id, "400.00")
        self.assertEqual(first["paymentType"], "partial")
        rental = self.rental(self.rental_id)
        self.assertEqual(rental.total_paid, Decimal("400.00"))
        self.assertEqual(rental.payment_status, "partial")

        second = self.pay(self.rental_id, "600.00")
        self.assertEqual(second["paymentType"], "full")
        self.assertEqual(self.rental(self.rental_id).payment_status, "paid")
        self.assertTrue(check_rental_reconciliation(self.db, self.rental_id)["isReconciled"])

    def test_payment_for_unknown_rental(self):
        with self.assertRaises(NotFoundError):
            self.pay(9999, "10.00")

    def test_delete_payment_restores_totals(self):
        self.pay(self.rental_id, "400.00")
        second = self.pay(self.rental_id, "600.00")

        self.assertEqual(delete_payment(self.db, second["id"]), {"affectedCount": 1})
        rental = self.rental(self.rental_id)
        self.assertEqual(rental.total_paid, Decimal("400.00"))
        self.assertEqual(rental.payment_status, "partial")
        self.assertTrue(check_rental_reconciliation(self.db, self.rental_id)["isReconciled"])

    def test_delete_payment_reverses_the_committed_amount(self):
        created = self.pay(self.rental_id, "400.00")
        cached = self.db.get(Payment, created["id"])
        self.assertEqual(cached.amount, Decimal("400.00"))

        other = self.SessionLocal()
        try:
            update_payment(other, created["id"], UpdatePaymentDto(amount=Decimal("300.00")))
        finally:
            other.close()

        self.assertEqual(delete_payment(self.db, created["id"]), {"affectedCount": 1})
        rental = self.rental(self.rental_id)
        self.assertEqual(rental.total_paid, Decimal("100.00"))
        self.assertEqual(rental.payment_status, "partial")

    def test_delete_missing_payment_changes_nothing(self):
        self.assertEqual(delete_payment(self.db, 12345), {"affectedCount": 0})

    def test_update_payment_leaves_rental_totals_alone(self):
        payment = self.pay(self.rental_id, "400.00")
        update_payment(self.db, payment["id"], UpdatePaymentDto(amount=Decimal("900.00"), notes="corrected"))

        rental = self.rental(self.rental_id)
        self.assertEqual(rental.total_paid, Decimal("400.00"))
        self.assertEqual(rental.payment_status, "partial")
        report = check_rental_reconciliation(self.db, self.rental_id)
        self.assertFalse(report["isReconciled"])
        self.assertEqual(report["ledgerTotal"], Decimal("900.00"))

        # Deleting the inflated row floors the cached total at zero.
        delete_payment(self.db, payment["id"])
        rental = self.rental(self.rental_id)
        self.assertEqual(rental.total_paid, Decimal("0.00"))
        self.assertEqual(rental.payment_status, "unpaid")

    def test_payment_listings(self):
        self.pay(self.rental_id, "100.00")
        self.pay(self.rental_id, "200.00")
        page = list_payments(self.db, page=1, limit=1)
        self.assertEqual(page["pagination"]["totalItems"], 2)
        self.assertEqual(page["pagination"]["totalPages"], 2)
        self.assertEqual(len(page["data"]), 1)
        by_rental = list_payments_by_rental(self.db, self.rental_id)
        self.assertEqual(len(by_rental), 2)
        self.assertTrue(all(not row["isDamageCharge"] for row in by_rental))


class ReturnProcessorTests(LedgerDbTestCase):
    def setUp(self):
        super().setUp()
        self.equipment_id = self.make_equipment(total=2)
        self.rental_id = self.make_rental(self.equipment_id, quantity=2, total="1000.00")

    def _damaged_return_with_charge(self):
        self.pay(self.rental_id, "1000.00")
        return add_return(
            self.db,
            AddReturnDto(
                rentalID=self.rental_id,
                condition="damaged",
                damageDescription="Cracked boom",
                additionalCharges=Decimal("200.00"),
                damagedCount=1,
            ),
        )["id"]

    def test_unpaid_rental_cannot_be_returned_in_good_condition(self):
        with self.assertRaises(PaymentIncompleteError):
            add_return(self.db, AddReturnDto(rentalID=self.rental_id, condition="good"))
        self.assertEqual(self.rental(self.rental_id).status, "active")
        self.assertEqual(self.returns_for(self.rental_id), [])
        self.assertEqual(self.equipment(self.equipment_id).quantity_available, 0)

    def test_paid_good_return_restocks_units(self):
        self.pay(self.rental_id, "1000.00")
        add_return(self.db, AddReturnDto(rentalID=self.rental_id, condition="good"))
        self.assertEqual(self.rental(self.rental_id).status, "returned")
        equipment = self.equipment(self.equipment_id)
        self.assertEqual(equipment.quantity_available, 2)
        self.assertEqual(equipment.status, "available")

    def test_damage_charge_is_added_and_settled(self):
        self._damaged_return_with_charge()

        rental = self.rental(self.rental_id)
        self.assertEqual(rental.total_amount, Decimal("1200.00"))
        self.assertEqual(rental.total_paid, Decimal("1200.00"))
        self.assertEqual(rental.payment_status, "paid")
        self.assertEqual(rental.status, "returned")

        equipment = self.equipment(self.equipment_id)
        self.assertEqual(equipment.maintenance_quantity, 1)
        self.assertEqual(equipment.quantity_available, 1)

        charges = [p for p in self.payments_for(self.rental_id) if p.source == "damage_charge"]
        self.assertEqual(len(charges), 1)
        self.assertEqual(charges[0].amount, Decimal("200.00"))
        self.assertEqual(charges[0].payment_type, "full")
        self.assertIn("Damage charges from return", charges[0].notes)
        self.assertTrue(check_rental_reconciliation(self.db, self.rental_id)["isReconciled"])

    def test_damaged_return_allowed_before_full_payment(self):
        add_return(
            self.db,
            AddReturnDto(rentalID=self.rental_id, condition="damaged", additionalCharges=Decimal("200.00")),
        )
        rental = self.rental(self.rental_id)
        self.assertEqual(rental.total_amount, Decimal("1200.00"))
        self.assertEqual(rental.total_paid, Decimal("200.00"))
        self.assertEqual(rental.payment_status, "partial")
        self.assertEqual(self.equipment(self.equipment_id).maintenance_quantity, 2)

    def test_lost_units_are_parked_in_maintenance(self):
        self.pay(self.rental_id, "1000.00")
        add_return(self.db, AddReturnDto(rentalID=self.rental_id, condition="lost"))
        equipment = self.equipment(self.equipment_id)
        self.assertEqual(equipment.quantity_total, 2)
        self.assertEqual(equipment.maintenance_quantity, 2)
        self.assertEqual(equipment.status, "maintenance")

    def test_damaged_count_above_quantity_is_rejected(self):
        with self.assertRaises(InvalidQuantityError):
            add_return(
                self.db,
                AddReturnDto(rentalID=self.rental_id, condition="damaged", damagedCount=3),
            )
        self.assertEqual(self.rental(self.rental_id).status, "active")
        self.assertEqual(self.returns_for(self.rental_id), [])

    def test_rental_cannot_be_returned_twice(self):
        self._damaged_return_with_charge()
        with self.assertRaises(InvalidStateError):
            add_return(self.db, AddReturnDto(rentalID=self.rental_id, condition="good"))

    def test_return_for_unknown_rental(self):
        with self.assertRaises(NotFoundError):
            add_return(self.db, AddReturnDto(rentalID=777, condition="good"))

    def test_failed_disposition_rolls_back_the_whole_return(self):
        self.pay(self.rental_id, "1000.00")
        with mock.patch(
            "rental_ledger.services.return_service.dispose_on_return",
            side_effect=CapacityExceededError("boom"),
        ):
            with self.assertRaises(CapacityExceededError):
                add_return(
                    self.db,
                    AddReturnDto(rentalID=self.rental_id, condition="damaged", additionalCharges=Decimal("50.00")),
                )
        rental = self.rental(self.rental_id)
        self.assertEqual(rental.status, "active")
        self.assertEqual(rental.total_amount, Decimal("1000.00"))
        self.assertEqual(rental.total_paid, Decimal("1000.00"))
        self.assertEqual(len(self.payments_for(self.rental_id)), 1)
        self.assertEqual(self.returns_for(self.rental_id), [])

    def test_delete_return_reverses_charge_and_reopens_rental(self):
        return_id = self._damaged_return_with_charge()

        self.assertEqual(delete_return(self.db, return_id), {"affectedCount": 1})
        rental = self.rental(self.rental_id)
        self.assertEqual(rental.total_amount, Decimal("1000.00"))
        self.assertEqual(rental.total_paid, Decimal("1000.00"))
        self.assertEqual(rental.payment_status, "paid")
        self.assertEqual(rental.status, "active")
        self.assertEqual(self.returns_for(self.rental_id), [])
        self.assertTrue(all(p.source == "manual" for p in self.payments_for(self.rental_id)))

        equipment = self.equipment(self.equipment_id)
        self.assertEqual(equipment.status, "rented")
        self.assertEqual(equipment.maintenance_quantity, 0)
        self.assertEqual(equipment.quantity_available, 0)
        self.assertTrue(check_rental_reconciliation(self.db, self.rental_id)["isReconciled"])

    def test_delete_missing_return(self):
        self.assertEqual(delete_return(self.db, 4242), {"affectedCount": 0})

    def test_update_return_resizes_and_removes_damage_payment(self):
        return_id = self._damaged_return_with_charge()

        update_return(self.db, return_id, UpdateReturnDto(additionalCharges=Decimal("300.00"), notes="re-quoted"))
        rental = self.rental(self.rental_id)
        self.assertEqual(rental.total_amount, Decimal("1300.00"))
        self.assertEqual(rental.total_paid, Decimal("1300.00"))
        charges = [p for p in self.payments_for(self.rental_id) if p.source == "damage_charge"]
        self.assertEqual([p.amount for p in charges], [Decimal("300.00")])

        update_return(self.db, return_id, UpdateReturnDto(additionalCharges=Decimal("0")))
        rental = self.rental(self.rental_id)
        self.assertEqual(rental.total_amount, Decimal("1000.00"))
        self.assertEqual(rental.total_paid, Decimal("1000.00"))
        self.assertEqual(rental.payment_status, "paid")
        self.assertTrue(all(p.source == "manual" for p in self.payments_for(self.rental_id)))
        self.assertTrue(check_rental_reconciliation(self.db, self.rental_id)["isReconciled"])

    def test_update_return_adds_charge_where_none_existed(self):
        self.pay(self.rental_id, "1000.00")
        return_id = add_return(self.db, AddReturnDto(rentalID=self.rental_id, condition="good"))["id"]

        update_return(self.db, return_id, UpdateReturnDto(additionalCharges=Decimal("150.00")))
        rental = self.rental(self.rental_id)
        self.assertEqual(rental.total_amount, Decimal("1150.00"))
        self.assertEqual(rental.total_paid, Decimal("1150.00"))
        self.assertEqual(len(self.payments_for(self.rental_id)), 2)

    def test_deleted_return_puts_units_back_out(self):
        equipment_id = self.make_equipment(total=5)
        first = self.make_rental(equipment_id, total="100.00")
        second = self.make_rental(equipment_id, total="100.00")
        self.pay(first, "100.00")
        self.pay(second, "100.00")

        return_id = add_return(self.db, AddReturnDto(rentalID=first, condition="good"))["id"]
        self.assertEqual(self.equipment(equipment_id).quantity_available, 4)
        delete_return(self.db, return_id)
        self.assertEqual(self.equipment(equipment_id).quantity_available, 3)

        add_return(self.db, AddReturnDto(rentalID=first, condition="good"))
        self.assertEqual(self.equipment(equipment_id).quantity_available, 4)
        add_return(self.db, AddReturnDto(rentalID=second, condition="good"))
        equipment = self.equipment(equipment_id)
        self.assertEqual(equipment.quantity_available, 5)
        self.assertEqual(equipment.status, "available")

    def test_rental_reopened_by_deleted_return_can_be_deleted(self):
        equipment_id = self.make_equipment(total=1)
        rental_id = self.make_rental(equipment_id, total="100.00")
        self.pay(rental_id, "100.00")
        return_id = add_return(self.db, AddReturnDto(rentalID=rental_id, condition="good"))["id"]

        delete_return(self.db, return_id)
        self.assertEqual(self.equipment(equipment_id).quantity_available, 0)
        self.assertEqual(delete_rental(self.db, rental_id), {"affectedCount": 1})
        equipment = self.equipment(equipment_id)
        self.assertEqual(equipment.quantity_available, 1)
        self.assertEqual(equipment.status, "available")

    def test_delete_return_fails_once_repaired_units_are_rented_again(self):
        self.pay(self.rental_id, "1000.00")
        return_id = add_return(self.db, AddReturnDto(rentalID=self.rental_id, condition="lost"))["id"]
        update_equipment_maintenance(
            self.db, self.equipment_id, MaintenanceAdjustRequest(action="mark_as_repaired", quantity=2)
        )
        self.make_rental(self.equipment_id, quantity=2)

        with self.assertRaises(InsufficientQuantityError):
            delete_return(self.db, return_id)
        self.assertEqual(len(self.returns_for(self.rental_id)), 1)
        self.assertEqual(self.rental(self.rental_id).status, "returned")

    def test_update_return_cannot_change_condition(self):
        return_id = self._damaged_return_with_charge()

        with self.assertRaises(InvalidStateError):
            update_return(self.db, return_id, UpdateReturnDto(condition="good"))
        equipment = self.equipment(self.equipment_id)
        self.assertEqual(equipment.quantity_available, 1)
        self.assertEqual(equipment.maintenance_quantity, 1)
        self.assertEqual(self.returns_for(self.rental_id)[0].condition, "damaged")

        update_return(self.db, return_id, UpdateReturnDto(condition="damaged", notes="checked"))
        record = self.returns_for(self.rental_id)[0]
        self.assertEqual(record.notes, "checked")
        self.assertEqual(record.damaged_count, 1)

    def test_update_missing_return(self):
        with self.assertRaises(NotFoundError):
            update_return(self.db, 999, UpdateReturnDto(notes="x"))

    def test_list_returns_includes_rental_context(self):
        self._damaged_return_with_charge()
        page = list_returns(self.db)
        self.assertEqual(page["pagination"]["totalItems"], 1)
        row = page["data"][0]
        self.assertEqual(row["rentalID"], self.rental_id)
        self.assertEqual(row["equipmentID"], self.equipment_id)
        self.assertEqual(row["damagedCount"], 1)


if __name__ == "__main__":
    unittest.main()
