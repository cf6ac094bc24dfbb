from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.models import PaymentMethod, SaleStatus
from app.services.ledger_store import LedgerStore, LedgerStoreError, PaymentDraft, SaleBalance

logger = logging.getLogger(__name__)

TWOPLACES = Decimal('0.01')
ZERO = Decimal('0.00')


class AllocationError(ValueError):
    pass


class InvalidRequest(AllocationError):
    pass


class NotFound(ValueError):
    pass


class NothingPending(AllocationError):
    pass


class StorageFailure(LedgerStoreError):
    """A store fault during allocation.

    ``partial_writes`` is true when payment rows were inserted before the
    failure; ``payment_ids`` lists them so they can be reconciled by hand.
    """

    def __init__(self, message: str, *, phase: str, payment_ids: list[int] | None = None) -> None:
        super().__init__(message)
        self.phase = phase
        self.payment_ids = list(payment_ids or [])

    @property
    def partial_writes(self) -> bool:
        return bool(self.payment_ids)


class StorageReadFailure(StorageFailure):
    pass


class StorageWriteFailure(StorageFailure):
    pass


@dataclass(frozen=True)
class AllocationLine:
    sale_id: int
    amount: Decimal
    payment_id: int


@dataclass(frozen=True)
class SalePaidTotal:
    sale_id: int
    paid_amount: Decimal


@dataclass(frozen=True)
class RecomputeFailure:
    sale_id: int
    reason: str


@dataclass
class AllocationResult:
    client_phone: str
    offered: Decimal
    remainder: Decimal
    lines: list[AllocationLine] = field(default_factory=list)
    affected_sales: list[SalePaidTotal] = field(default_factory=list)
    recompute_failures: list[RecomputeFailure] = field(default_factory=list)

    @property
    def distributed(self) -> Decimal:
        return self.offered - self.remainder

    @property
    def payments_created(self) -> int:
        return len(self.lines)


def to_money(value) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidRequest('Amount is required')
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise InvalidRequest(f'Invalid amount: {value!r}') from exc
    if not amount.is_finite():
        raise InvalidRequest(f'Invalid amount: {value!r}')
    try:
        return amount.quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise InvalidRequest(f'Amount out of range: {value!r}') from exc


def parse_method(value) -> PaymentMethod:
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value or '').strip().upper())
    except ValueError as exc:
        allowed = ', '.join(m.value for m in PaymentMethod)
        raise InvalidRequest(f'Payment method must be one of: {allowed}') from exc


def plan_allocation(sales: list[SaleBalance], amount: Decimal) -> tuple[list[tuple[SaleBalance, Decimal]], Decimal]:
    """Walk ``sales`` in the given order and split ``amount`` oldest first.

    Returns the planned ``(sale, amount)`` pairs and whatever could not be
    placed. Cancelled and fully paid sales are skipped.
    """
    remaining = amount
    plan: list[tuple[SaleBalance, Decimal]] = []
    for sale in sales:
        if sale.status == SaleStatus.CANCELLED:
            continue
        outstanding = sale.outstanding
        if outstanding <= 0:
            continue
        take = min(remaining, outstanding)
        if take <= 0:
            break
        plan.append((sale, take))
        remaining -= take
    return plan, remaining


def recompute_paid(store: LedgerStore, sale_id: int) -> Decimal:
    total = sum(store.list_payment_amounts(sale_id), ZERO).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    if not store.update_sale_paid(sale_id, total):
        raise NotFound('Sale not found')
    return total


def allocate_client_payment(
    store: LedgerStore,
    *,
    client_phone: str | None,
    amount,
    method,
    paid_on: date | None,
    notes: str | None = None,
) -> AllocationResult:
    client_phone = (client_phone or '').strip()
    if not client_phone:
        raise InvalidRequest('Client is required')
    offered = to_money(amount)
    if offered <= 0:
        raise InvalidRequest('Amount must be greater than zero')
    payment_method = parse_method(method)
    if paid_on is None:
        raise InvalidRequest('Payment date is required')
    notes = notes.strip() if notes and notes.strip() else None

    try:
        client_exists = store.lock_client(client_phone)
        sales = store.list_client_sales(client_phone) if client_exists else []
    except LedgerStoreError as exc:
        raise StorageReadFailure(f'Could not load sales for client {client_phone}: {exc}', phase='load') from exc
    if not client_exists:
        raise InvalidRequest('Client not found')

    plan, remainder = plan_allocation(sales, offered)
    if not plan:
        raise NothingPending('Client has no sales with an outstanding balance')

    lines: list[AllocationLine] = []
    for sale, take in plan:
        draft = PaymentDraft(sale_id=sale.id, amount=take, method=payment_method, paid_on=paid_on, notes=notes)
        try:
            payment_id = store.insert_payment(draft)
        except LedgerStoreError as exc:
            inserted = [line.payment_id for line in lines]
            logger.error(
                'Payment insert failed for client %s on sale %s after %d row(s) written: %s',
                client_phone,
                sale.id,
                len(inserted),
                exc,
            )
            raise StorageWriteFailure(
                f'Could not record payment for sale {sale.id}: {exc}',
                phase='insert',
                payment_ids=inserted,
            ) from exc
        lines.append(AllocationLine(sale_id=sale.id, amount=take, payment_id=payment_id))

    result = AllocationResult(client_phone=client_phone, offered=offered, remainder=remainder, lines=lines)
    touched = list(dict.fromkeys(line.sale_id for line in lines))
    for sale_id in touched:
        try:
            paid = recompute_paid(store, sale_id)
        except (LedgerStoreError, NotFound) as exc:
            logger.warning('Recompute of paid total failed for sale %s: %s', sale_id, exc)
            result.recompute_failures.append(RecomputeFailure(sale_id=sale_id, reason=str(exc)))
            continue
        result.affected_sales.append(SalePaidTotal(sale_id=sale_id, paid_amount=paid))

    logger.info(
        'Allocated payment for client %s: offered=%s distributed=%s remainder=%s payments=%d',
        client_phone,
        result.offered,
        result.distributed,
        result.remainder,
        result.payments_created,
    )
    return result
