from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.dependencies import get_client_ip, get_ledger_store
from app.schemas import ClientBalanceOut, SaleBalanceOut, SalePaidOut
from app.services.audit_service import log_audit
from app.services.ledger_store import LedgerStore, LedgerStoreError
from app.services.payment_allocation_service import NotFound, recompute_paid
from app.services.payment_service import summarize_client_balance

router = APIRouter(tags=['ledger'])


@router.get('/clients/{client_phone}/balance', response_model=ClientBalanceOut)
def client_balance(
    client_phone: str,
    principal: Principal = Depends(get_current_principal),
    store: LedgerStore = Depends(get_ledger_store),
):
    try:
        balance = summarize_client_balance(store, client_phone)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except LedgerStoreError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return ClientBalanceOut(
        client_phone=balance.client_phone,
        client_name=balance.client_name,
        total_amount=balance.total_amount,
        paid_amount=balance.paid_amount,
        outstanding=balance.outstanding,
        sales=[
            SaleBalanceOut(
                id=sale.id,
                sold_on=sale.sold_on,
                status=sale.status,
                total_amount=sale.total_amount,
                paid_amount=sale.paid_amount,
                outstanding=sale.outstanding,
            )
            for sale in balance.sales
        ],
    )


@router.post('/sales/{sale_id}/recompute-paid', response_model=SalePaidOut)
def sale_recompute_paid(
    sale_id: int,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    store: LedgerStore = Depends(get_ledger_store),
):
    try:
        paid = recompute_paid(store, sale_id)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except LedgerStoreError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    log_audit(
        db,
        actor_user_id=principal.id,
        action='SALE_PAID_RECOMPUTED',
        ip=get_client_ip(request),
        metadata={'sale_id': sale_id, 'paid_amount': str(paid)},
    )
    db.commit()
    return SalePaidOut(sale_id=sale_id, paid_amount=paid)
