from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol

from app.models import PaymentMethod, SaleStatus


class LedgerStoreError(RuntimeError):
    """Raised when the backing sales/payments store fails."""


@dataclass(frozen=True)
class ClientRecord:
    phone: str
    name: str


@dataclass(frozen=True)
class SaleBalance:
    id: int
    client_phone: str
    total_amount: Decimal
    paid_amount: Decimal
    sold_on: date
    status: SaleStatus

    @property
    def outstanding(self) -> Decimal:
        return max(Decimal('0.00'), self.total_amount - self.paid_amount)


@dataclass(frozen=True)
class PaymentDraft:
    sale_id: int
    amount: Decimal
    method: PaymentMethod
    paid_on: date
    notes: str | None = None


@dataclass(frozen=True)
class PaymentRecord:
    id: int
    sale_id: int
    amount: Decimal
    method: PaymentMethod
    paid_on: date
    notes: str | None


@dataclass(frozen=True)
class PaymentDetail:
    payment: PaymentRecord
    client_phone: str
    client_name: str | None
    sale_total_amount: Decimal
    sale_paid_amount: Decimal


class LedgerStore(Protocol):
    def lock_client(self, client_phone: str) -> bool: ...

    def get_client(self, client_phone: str) -> ClientRecord | None: ...

    def list_client_sales(self, client_phone: str, *, include_cancelled: bool = False) -> list[SaleBalance]: ...

    def get_sale(self, sale_id: int) -> SaleBalance | None: ...

    def list_sale_ids(self, *, client_phone: str | None = None) -> list[int]: ...

    def update_sale_paid(self, sale_id: int, paid_amount: Decimal) -> bool: ...

    def insert_payment(self, draft: PaymentDraft) -> int: ...

    def get_payment(self, payment_id: int) -> PaymentRecord | None: ...

    def update_payment(self, payment_id: int, draft: PaymentDraft) -> PaymentRecord | None: ...

    def delete_payment(self, payment_id: int) -> bool: ...

    def list_payment_amounts(self, sale_id: int) -> list[Decimal]: ...

    def list_payments(
        self,
        *,
        client_phone: str | None = None,
        sale_id: int | None = None,
        method: PaymentMethod | None = None,
    ) -> list[PaymentDetail]: ...
