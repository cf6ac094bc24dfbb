from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.dependencies import get_client_ip, get_ledger_store
from app.models import PaymentMethod
from app.schemas import (
    AllocationLineOut,
    AllocationOut,
    ClientPaymentIn,
    PaymentDetailOut,
    PaymentOut,
    PaymentUpdateIn,
    PaymentWriteOut,
    RecomputeFailureOut,
    SalePaidOut,
    SalePaymentIn,
)
from app.services.audit_service import log_audit
from app.services.ledger_store import LedgerStore, LedgerStoreError, PaymentRecord
from app.services.payment_allocation_service import (
    AllocationResult,
    NotFound,
    NothingPending,
    StorageFailure,
    allocate_client_payment,
)
from app.services.payment_service import (
    delete_payment,
    get_payment,
    list_payments,
    record_sale_payment,
    update_payment,
)

router = APIRouter(prefix='/payments', tags=['payments'])


def _payment_out(payment: PaymentRecord) -> PaymentOut:
    return PaymentOut(
        id=payment.id,
        sale_id=payment.sale_id,
        amount=payment.amount,
        method=payment.method,
        paid_on=payment.paid_on,
        notes=payment.notes,
    )


def _allocation_out(result: AllocationResult) -> AllocationOut:
    return AllocationOut(
        client_phone=result.client_phone,
        offered=result.offered,
        distributed=result.distributed,
        remainder=result.remainder,
        payments_created=result.payments_created,
        affected_sales=[SalePaidOut(sale_id=s.sale_id, paid_amount=s.paid_amount) for s in result.affected_sales],
        lines=[
            AllocationLineOut(sale_id=line.sale_id, amount=line.amount, payment_id=line.payment_id)
            for line in result.lines
        ],
        recompute_failures=[
            RecomputeFailureOut(sale_id=f.sale_id, reason=f.reason) for f in result.recompute_failures
        ],
    )


def _storage_unavailable(db: Session, exc: LedgerStoreError) -> HTTPException:
    db.rollback()
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


@router.get('', response_model=list[PaymentDetailOut])
def payments_list(
    client_phone: str | None = None,
    method: PaymentMethod | None = None,
    principal: Principal = Depends(get_current_principal),
    store: LedgerStore = Depends(get_ledger_store),
):
    try:
        details = list_payments(store, client_phone=client_phone, method=method)
    except LedgerStoreError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return [
        PaymentDetailOut(
            **_payment_out(detail.payment).model_dump(),
            client_phone=detail.client_phone,
            client_name=detail.client_name,
            sale_total_amount=detail.sale_total_amount,
            sale_paid_amount=detail.sale_paid_amount,
        )
        for detail in details
    ]


@router.post('/by-client', response_model=AllocationOut)
def payments_allocate(
    body: ClientPaymentIn,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    store: LedgerStore = Depends(get_ledger_store),
):
    try:
        result = allocate_client_payment(
            store,
            client_phone=body.client_phone,
            amount=body.amount,
            method=body.method,
            paid_on=body.paid_on,
            notes=body.notes,
        )
    except NothingPending as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StorageFailure as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                'error': str(exc),
                'phase': exc.phase,
                'partial_writes': exc.partial_writes,
                'payment_ids': exc.payment_ids,
                'rolled_back': True,
            },
        ) from exc

    log_audit(
        db,
        actor_user_id=principal.id,
        action='CLIENT_PAYMENT_ALLOCATED',
        ip=get_client_ip(request),
        metadata={
            'client_phone': result.client_phone,
            'offered': str(result.offered),
            'distributed': str(result.distributed),
            'remainder': str(result.remainder),
            'payment_ids': [line.payment_id for line in result.lines],
        },
    )
    db.commit()
    return _allocation_out(result)


@router.get('/{payment_id}', response_model=PaymentOut)
def payments_get(
    payment_id: int,
    principal: Principal = Depends(get_current_principal),
    store: LedgerStore = Depends(get_ledger_store),
):
    try:
        payment = get_payment(store, payment_id)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except LedgerStoreError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return _payment_out(payment)


@router.post('', response_model=PaymentWriteOut, status_code=status.HTTP_201_CREATED)
def payments_create(
    body: SalePaymentIn,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    store: LedgerStore = Depends(get_ledger_store),
):
    try:
        payment, paid = record_sale_payment(
            store,
            sale_id=body.sale_id,
            amount=body.amount,
            method=body.method,
            paid_on=body.paid_on,
            notes=body.notes,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except LedgerStoreError as exc:
        raise _storage_unavailable(db, exc) from exc

    log_audit(
        db,
        actor_user_id=principal.id,
        action='PAYMENT_CREATED',
        ip=get_client_ip(request),
        metadata={'payment_id': payment.id, 'sale_id': payment.sale_id, 'amount': str(payment.amount)},
    )
    db.commit()
    return PaymentWriteOut(payment=_payment_out(payment), sales=[SalePaidOut(sale_id=payment.sale_id, paid_amount=paid)])


@router.put('/{payment_id}', response_model=PaymentWriteOut)
def payments_update(
    payment_id: int,
    body: PaymentUpdateIn,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    store: LedgerStore = Depends(get_ledger_store),
):
    changes = body.model_dump(exclude_unset=True)
    try:
        payment, paid_totals = update_payment(store, payment_id, **changes)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except LedgerStoreError as exc:
        raise _storage_unavailable(db, exc) from exc

    log_audit(
        db,
        actor_user_id=principal.id,
        action='PAYMENT_UPDATED',
        ip=get_client_ip(request),
        metadata={'payment_id': payment.id, 'fields': sorted(changes)},
    )
    db.commit()
    return PaymentWriteOut(
        payment=_payment_out(payment),
        sales=[SalePaidOut(sale_id=sale_id, paid_amount=paid) for sale_id, paid in paid_totals.items()],
    )


@router.delete('/{payment_id}', status_code=status.HTTP_204_NO_CONTENT)
def payments_delete(
    payment_id: int,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    store: LedgerStore = Depends(get_ledger_store),
):
    try:
        delete_payment(store, payment_id)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except LedgerStoreError as exc:
        raise _storage_unavailable(db, exc) from exc

    log_audit(
        db,
        actor_user_id=principal.id,
        action='PAYMENT_DELETED',
        ip=get_client_ip(request),
        metadata={'payment_id': payment_id},
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
