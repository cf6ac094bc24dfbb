from __future__ import annotations

import argparse
import logging
from decimal import Decimal

from app.db import SessionLocal
from app.services.ledger_store import LedgerStore
from app.services.payment_allocation_service import recompute_paid
from app.services.sql_ledger_store import SqlLedgerStore

logger = logging.getLogger(__name__)


def reconcile_paid_totals(store: LedgerStore, *, client_phone: str | None = None) -> tuple[int, int]:
    """Recompute every sale's paid total from its payments.

    Returns ``(checked, changed)`` where ``changed`` counts sales whose
    stored total differed from the ledger.
    """
    checked = 0
    changed = 0
    for sale_id in store.list_sale_ids(client_phone=client_phone):
        sale = store.get_sale(sale_id)
        if sale is None:
            continue
        before = sale.paid_amount
        after = recompute_paid(store, sale_id)
        checked += 1
        if Decimal(before) != after:
            changed += 1
            logger.info('Sale %s paid total corrected: %s -> %s', sale_id, before, after)
    return checked, changed


def main() -> None:
    parser = argparse.ArgumentParser(description='Recompute sale paid totals from recorded payments.')
    parser.add_argument('--client', help='Only reconcile sales for this client phone.')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    with SessionLocal() as db:
        checked, changed = reconcile_paid_totals(SqlLedgerStore(db, lock_rows=False), client_phone=args.client)
        db.commit()
    print(f'Paid total reconciliation complete: checked={checked}, corrected={changed}')


if __name__ == '__main__':
    main()
