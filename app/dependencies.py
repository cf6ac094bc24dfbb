from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db
from app.services.sql_ledger_store import SqlLedgerStore


def get_ledger_store(db: Session = Depends(get_db)) -> SqlLedgerStore:
    return SqlLedgerStore(db, lock_rows=settings.lock_client_on_allocation)


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None
