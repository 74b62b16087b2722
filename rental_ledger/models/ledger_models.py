from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rental_ledger.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(250), unique=True, nullable=False)
    password_hash = Column(String(256), nullable=False)
    password_salt = Column(String(64), nullable=False)
    role = Column(String(20), nullable=False, default="staff")
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    contact_number = Column(String(255))
    email = Column(String(255))
    project_site = Column(String(255))
    address = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    rentals = relationship("Rental", back_populates="client")


class Equipment(Base):
    __tablename__ = "equipment"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(255), nullable=False)
    rate_per_hour = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default="available")
    description = Column(Text)
    quantity_total = Column(Integer, nullable=False, default=1)
    quantity_available = Column(Integer, nullable=False, default=1)
    maintenance_quantity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    rentals = relationship("Rental", back_populates="equipment")


class Rental(Base):
    __tablename__ = "rentals"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    rate_per_hour = Column(Numeric(10, 2), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default="active")
    payment_status = Column(String(20), nullable=False, default="unpaid")
    total_paid = Column(Numeric(10, 2), nullable=False, default=0)
    overnight_custody = Column(String(20), nullable=False, default="owner")
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    client = relationship("Client", back_populates="rentals")
    equipment = relationship("Equipment", back_populates="rentals")
    payments = relationship("Payment", back_populates="rental", cascade="all, delete-orphan")
    returns = relationship("Return", back_populates="rental", cascade="all, delete-orphan")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    rental_id = Column(Integer, ForeignKey("rentals.id"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_type = Column(String(20), nullable=False)
    source = Column(String(20), nullable=False, default="manual")
    payment_date = Column(DateTime, server_default=func.now())
    notes = Column(Text)
    created_at = Column(DateTime, server_default=func.now())

    rental = relationship("Rental", back_populates="payments")


class Return(Base):
    __tablename__ = "returns"

    id = Column(Integer, primary_key=True)
    rental_id = Column(Integer, ForeignKey("rentals.id"), nullable=False)
    return_date = Column(DateTime, server_default=func.now())
    condition = Column(String(20), nullable=False)
    damage_description = Column(Text)
    additional_charges = Column(Numeric(10, 2), default=0)
    damaged_count = Column(Integer, default=0)
    notes = Column(Text)
    created_at = Column(DateTime, server_default=func.now())

    rental = relationship("Rental", back_populates="returns")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"))
    action = Column(String(255), nullable=False)
    table_name = Column(String(255), nullable=False)
    record_id = Column(Integer)
    old_values = Column(Text)
    new_values = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
