from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models import PaymentMethod, SaleStatus


class ClientPaymentIn(BaseModel):
    client_phone: str = Field(min_length=1)
    amount: Decimal
    method: PaymentMethod
    paid_on: date = Field(default_factory=date.today)
    notes: str | None = None


class SalePaymentIn(BaseModel):
    sale_id: int
    amount: Decimal
    method: PaymentMethod
    paid_on: date = Field(default_factory=date.today)
    notes: str | None = None


class PaymentUpdateIn(BaseModel):
    sale_id: int | None = None
    amount: Decimal | None = None
    method: PaymentMethod | None = None
    paid_on: date | None = None
    notes: str | None = None


class AllocationLineOut(BaseModel):
    sale_id: int
    amount: Decimal
    payment_id: int


class SalePaidOut(BaseModel):
    sale_id: int
    paid_amount: Decimal


class RecomputeFailureOut(BaseModel):
    sale_id: int
    reason: str


class AllocationOut(BaseModel):
    client_phone: str
    offered: Decimal
    distributed: Decimal
    remainder: Decimal
    payments_created: int
    affected_sales: list[SalePaidOut]
    lines: list[AllocationLineOut]
    recompute_failures: list[RecomputeFailureOut]


class PaymentOut(BaseModel):
    id: int
    sale_id: int
    amount: Decimal
    method: PaymentMethod
    paid_on: date
    notes: str | None


class PaymentDetailOut(PaymentOut):
    client_phone: str
    client_name: str | None
    sale_total_amount: Decimal
    sale_paid_amount: Decimal


class PaymentWriteOut(BaseModel):
    payment: PaymentOut
    sales: list[SalePaidOut]


class SaleBalanceOut(BaseModel):
    id: int
    sold_on: date
    status: SaleStatus
    total_amount: Decimal
    paid_amount: Decimal
    outstanding: Decimal


class ClientBalanceOut(BaseModel):
    client_phone: str
    client_name: str
    total_amount: Decimal
    paid_amount: Decimal
    outstanding: Decimal
    sales: list[SaleBalanceOut]
