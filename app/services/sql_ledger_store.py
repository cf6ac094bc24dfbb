from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import Client, Payment, PaymentMethod, Sale, SaleStatus
from app.services.ledger_store import (
    ClientRecord,
    LedgerStoreError,
    PaymentDetail,
    PaymentDraft,
    PaymentRecord,
    SaleBalance,
)


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        detail = getattr(exc, 'orig', None) or exc
        raise LedgerStoreError(f'{action} failed: {detail}') from exc


def _sale_balance(sale: Sale) -> SaleBalance:
    return SaleBalance(
        id=sale.id,
        client_phone=sale.client_phone,
        total_amount=Decimal(sale.total_amount),
        paid_amount=Decimal(sale.paid_amount),
        sold_on=sale.sold_on,
        status=sale.status,
    )


def _payment_record(payment: Payment) -> PaymentRecord:
    return PaymentRecord(
        id=payment.id,
        sale_id=payment.sale_id,
        amount=Decimal(payment.amount),
        method=payment.method,
        paid_on=payment.paid_on,
        notes=payment.notes,
    )


class SqlLedgerStore:
    """LedgerStore backed by the request's SQLAlchemy session.

    Reads and writes share the caller's transaction; the caller commits or
    rolls back. Every statement runs in its own savepoint so a failed read or
    write leaves the rest of the transaction usable.
    """

    def __init__(self, db: Session, *, lock_rows: bool = True) -> None:
        self.db = db
        self.lock_rows = lock_rows

    @contextmanager
    def _savepoint(self, action: str) -> Iterator[None]:
        with _store_errors(action), self.db.begin_nested():
            yield

    def lock_client(self, client_phone: str) -> bool:
        stmt = select(Client.phone).where(Client.phone == client_phone)
        if self.lock_rows:
            stmt = stmt.with_for_update()
        with self._savepoint('Locking client'):
            return self.db.execute(stmt).scalar_one_or_none() is not None

    def get_client(self, client_phone: str) -> ClientRecord | None:
        with self._savepoint('Loading client'):
            client = self.db.execute(select(Client).where(Client.phone == client_phone)).scalar_one_or_none()
        if not client:
            return None
        return ClientRecord(phone=client.phone, name=client.name)

    def list_client_sales(self, client_phone: str, *, include_cancelled: bool = False) -> list[SaleBalance]:
        stmt = select(Sale).where(Sale.client_phone == client_phone)
        if not include_cancelled:
            stmt = stmt.where(Sale.status != SaleStatus.CANCELLED)
        stmt = stmt.order_by(Sale.sold_on.asc(), Sale.id.asc())
        with self._savepoint('Loading client sales'):
            sales = self.db.execute(stmt).scalars().all()
        return [_sale_balance(sale) for sale in sales]

    def get_sale(self, sale_id: int) -> SaleBalance | None:
        with self._savepoint('Loading sale'):
            sale = self.db.get(Sale, sale_id)
        return _sale_balance(sale) if sale else None

    def list_sale_ids(self, *, client_phone: str | None = None) -> list[int]:
        stmt = select(Sale.id).order_by(Sale.id.asc())
        if client_phone:
            stmt = stmt.where(Sale.client_phone == client_phone)
        with self._savepoint('Listing sales'):
            return list(self.db.execute(stmt).scalars().all())

    def update_sale_paid(self, sale_id: int, paid_amount: Decimal) -> bool:
        with self._savepoint('Updating sale paid amount'):
            result = self.db.execute(update(Sale).where(Sale.id == sale_id).values(paid_amount=paid_amount))
        return result.rowcount > 0

    def insert_payment(self, draft: PaymentDraft) -> int:
        payment = Payment(
            sale_id=draft.sale_id,
            amount=draft.amount,
            method=draft.method,
            paid_on=draft.paid_on,
            notes=draft.notes,
        )
        with self._savepoint('Inserting payment'):
            self.db.add(payment)
            self.db.flush()
        return payment.id

    def get_payment(self, payment_id: int) -> PaymentRecord | None:
        with self._savepoint('Loading payment'):
            payment = self.db.get(Payment, payment_id)
        return _payment_record(payment) if payment else None

    def update_payment(self, payment_id: int, draft: PaymentDraft) -> PaymentRecord | None:
        with self._savepoint('Updating payment'):
            payment = self.db.get(Payment, payment_id)
            if not payment:
                return None
            payment.sale_id = draft.sale_id
            payment.amount = draft.amount
            payment.method = draft.method
            payment.paid_on = draft.paid_on
            payment.notes = draft.notes
            self.db.flush()
        return _payment_record(payment)

    def delete_payment(self, payment_id: int) -> bool:
        with self._savepoint('Deleting payment'):
            result = self.db.execute(delete(Payment).where(Payment.id == payment_id))
        return result.rowcount > 0

    def list_payment_amounts(self, sale_id: int) -> list[Decimal]:
        with self._savepoint('Loading payments'):
            rows = self.db.execute(select(Payment.amount).where(Payment.sale_id == sale_id)).scalars().all()
        return [Decimal(amount) for amount in rows]

    def list_payments(
        self,
        *,
        client_phone: str | None = None,
        sale_id: int | None = None,
        method: PaymentMethod | None = None,
    ) -> list[PaymentDetail]:
        stmt = (
            select(Payment, Sale, Client.name)
            .join(Sale, Sale.id == Payment.sale_id)
            .join(Client, Client.phone == Sale.client_phone, isouter=True)
        )
        if client_phone:
            stmt = stmt.where(Sale.client_phone == client_phone)
        if sale_id is not None:
            stmt = stmt.where(Payment.sale_id == sale_id)
        if method is not None:
            stmt = stmt.where(Payment.method == method)
        stmt = stmt.order_by(Payment.paid_on.desc(), Payment.id.desc())
        with self._savepoint('Listing payments'):
            rows = self.db.execute(stmt).all()
        return [
            PaymentDetail(
                payment=_payment_record(payment),
                client_phone=sale.client_phone,
                client_name=client_name,
                sale_total_amount=Decimal(sale.total_amount),
                sale_paid_amount=Decimal(sale.paid_amount),
            )
            for payment, sale, client_name in rows
        ]
