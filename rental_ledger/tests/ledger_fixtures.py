import os
import tempfile
import unittest
from datetime import date
from decimal import Decimal

from rental_ledger.db.base import Base
from rental_ledger.db.engine import build_engine, build_session_factory
from rental_ledger.models.ledger_models import Equipment, Payment, Rental, Return
from rental_ledger.schemas.clients import ClientUpsert
from rental_ledger.schemas.equipment import EquipmentUpsert
from rental_ledger.schemas.payments import AddPaymentDto
from rental_ledger.schemas.rentals import CreateRentalDto
from rental_ledger.services.client_service import add_client
from rental_ledger.services.equipment_service import add_equipment
from rental_ledger.services.payment_service import add_payment
from rental_ledger.services.rental_service import create_rental


class LedgerDbTestCase(unittest.TestCase):
    """Each test gets its own file-backed SQLite database."""

    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmpdir.name, "ledger.db")
        self.db_url = f"sqlite+pysqlite:///{self.db_path}"
        self.engine = build_engine(self.db_url, timeout_seconds=5)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = build_session_factory(self.engine)
        self.db = self.SessionLocal()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()
        self._tmpdir.cleanup()

    def make_equipment(self, total=1, rate="100.00", name="Excavator"):
        payload = EquipmentUpsert(name=name, type="Heavy", ratePerHour=Decimal(rate), quantityTotal=total)
        return add_equipment(self.db, payload)["id"]

    def make_client(self, name="Acme Builders"):
        return add_client(self.db, ClientUpsert(name=name, contactNumber="555-0100", projectSite="North yard"))["id"]

    def rental_payload(self, equipment_id, client_id, quantity=1, total="1000.00"):
        return CreateRentalDto(
            clientID=client_id,
            equipmentID=equipment_id,
            startDate=date(2026, 3, 1),
            endDate=date(2026, 3, 5),
            ratePerHour=Decimal("100.00"),
            totalAmount=Decimal(total),
            quantity=quantity,
        )

    def make_rental(self, equipment_id, client_id=None, quantity=1, total="1000.00"):
        client_id = client_id or self.make_client()
        return create_rental(self.db, self.rental_payload(equipment_id, client_id, quantity, total))["id"]

    def pay(self, rental_id, amount):
        return add_payment(self.db, AddPaymentDto(rentalID=rental_id, amount=Decimal(amount)))

    def equipment(self, equipment_id):
        self.db.expire_all()
        return self.db.get(Equipment, equipment_id)

    def rental(self, rental_id):
        self.db.expire_all()
        return self.db.get(Rental, rental_id)

    def payments_for(self, rental_id):
        self.db.expire_all()
        return self.db.query(Payment).filter(Payment.rental_id == rental_id).order_by(Payment.id).all()

    def returns_for(self, rental_id):
        self.db.expire_all()
        return self.db.query(Return).filter(Return.rental_id == rental_id).all()
