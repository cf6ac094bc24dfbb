from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from app.models import PaymentMethod
from app.services.ledger_store import LedgerStore, PaymentDetail, PaymentDraft, PaymentRecord, SaleBalance
from app.services.payment_allocation_service import ZERO, NotFound, parse_method, recompute_paid, to_money


@dataclass(frozen=True)
class ClientBalance:
    client_phone: str
    client_name: str
    total_amount: Decimal
    paid_amount: Decimal
    outstanding: Decimal
    sales: list[SaleBalance]


_UNSET = object()


def _require_positive(amount) -> Decimal:
    value = to_money(amount)
    if value <= 0:
        raise ValueError('Amount must be greater than zero')
    return value


def list_payments(
    store: LedgerStore,
    *,
    client_phone: str | None = None,
    method: str | PaymentMethod | None = None,
) -> list[PaymentDetail]:
    return store.list_payments(
        client_phone=(client_phone or '').strip() or None,
        method=parse_method(method) if method else None,
    )


def get_payment(store: LedgerStore, payment_id: int) -> PaymentRecord:
    payment = store.get_payment(payment_id)
    if not payment:
        raise NotFound('Payment not found')
    return payment


def record_sale_payment(
    store: LedgerStore,
    *,
    sale_id: int,
    amount,
    method,
    paid_on: date,
    notes: str | None = None,
) -> tuple[PaymentRecord, Decimal]:
    draft = PaymentDraft(
        sale_id=sale_id,
        amount=_require_positive(amount),
        method=parse_method(method),
        paid_on=paid_on,
        notes=notes.strip() if notes and notes.strip() else None,
    )
    if not store.get_sale(sale_id):
        raise NotFound('Sale not found')
    payment_id = store.insert_payment(draft)
    paid = recompute_paid(store, sale_id)
    return get_payment(store, payment_id), paid


def update_payment(
    store: LedgerStore,
    payment_id: int,
    *,
    sale_id: int | None = None,
    amount=None,
    method=None,
    paid_on: date | None = None,
    notes=_UNSET,
) -> tuple[PaymentRecord, dict[int, Decimal]]:
    current = get_payment(store, payment_id)
    if sale_id is not None and sale_id != current.sale_id and not store.get_sale(sale_id):
        raise NotFound('Sale not found')

    if notes is _UNSET:
        new_notes = current.notes
    else:
        new_notes = notes.strip() if notes and notes.strip() else None
    draft = PaymentDraft(
        sale_id=sale_id if sale_id is not None else current.sale_id,
        amount=_require_positive(amount) if amount is not None else current.amount,
        method=parse_method(method) if method is not None else current.method,
        paid_on=paid_on or current.paid_on,
        notes=new_notes,
    )
    updated = store.update_payment(payment_id, draft)
    if not updated:
        raise NotFound('Payment not found')

    paid_totals: dict[int, Decimal] = {}
    for touched_sale_id in dict.fromkeys((current.sale_id, updated.sale_id)):
        paid_totals[touched_sale_id] = recompute_paid(store, touched_sale_id)
    return updated, paid_totals


def delete_payment(store: LedgerStore, payment_id: int) -> Decimal:
    current = get_payment(store, payment_id)
    if not store.delete_payment(payment_id):
        raise NotFound('Payment not found')
    return recompute_paid(store, current.sale_id)


def summarize_client_balance(store: LedgerStore, client_phone: str) -> ClientBalance:
    client = store.get_client((client_phone or '').strip())
    if not client:
        raise NotFound('Client not found')
    sales = store.list_client_sales(client.phone)
    total = sum((sale.total_amount for sale in sales), ZERO)
    paid = sum((sale.paid_amount for sale in sales), ZERO)
    outstanding = sum((sale.outstanding for sale in sales), ZERO)
    return ClientBalance(
        client_phone=client.phone,
        client_name=client.name,
        total_amount=total,
        paid_amount=paid,
        outstanding=outstanding,
        sales=sales,
    )
