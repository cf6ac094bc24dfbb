from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

Identifier = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class SaleStatus(str, Enum):
    PENDING = 'PENDING'
    DISPATCHED = 'DISPATCHED'
    DELIVERED = 'DELIVERED'
    CANCELLED = 'CANCELLED'


class PaymentMethod(str, Enum):
    CASH = 'CASH'
    CARD = 'CARD'
    WIRE = 'WIRE'
    INSTANT = 'INSTANT'


class Client(Base):
    __tablename__ = 'clients'

    phone: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Sale(Base):
    __tablename__ = 'sales'
    __table_args__ = (
        CheckConstraint('total_amount >= 0', name='ck_sales_total_non_negative'),
        Index('ix_sales_client_sold_on', 'client_phone', 'sold_on'),
    )

    id: Mapped[int] = mapped_column(Identifier, primary_key=True)
    client_phone: Mapped[str] = mapped_column(Text, ForeignKey('clients.phone'), nullable=False)
    sold_on: Mapped[date] = mapped_column(Date, nullable=False, server_default=func.current_date())
    due_on: Mapped[date | None] = mapped_column(Date)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'), server_default='0')
    # Derived from the payments ledger; written only by recompute_paid.
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'), server_default='0')
    status: Mapped[SaleStatus] = mapped_column(
        SQLEnum(SaleStatus, name='sale_status'), nullable=False, default=SaleStatus.PENDING, server_default='PENDING'
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Payment(Base):
    __tablename__ = 'payments'
    __table_args__ = (CheckConstraint('amount > 0', name='ck_payments_amount_positive'),)

    id: Mapped[int] = mapped_column(Identifier, primary_key=True)
    sale_id: Mapped[int] = mapped_column(Identifier, ForeignKey('sales.id', ondelete='CASCADE'), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(SQLEnum(PaymentMethod, name='payment_method'), nullable=False)
    paid_on: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id: Mapped[int] = mapped_column(Identifier, primary_key=True)
    actor_user_id: Mapped[str | None] = mapped_column(Text)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    ip: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
