from datetime import date
from decimal import Decimal

from sqlalchemy import select

from app.db import SessionLocal, engine
from app.models import Base, Client, Payment, PaymentMethod, Sale, SaleStatus
from app.services.payment_allocation_service import recompute_paid
from app.services.sql_ledger_store import SqlLedgerStore


def seed() -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        client = db.execute(select(Client).where(Client.phone == '5511999990000')).scalar_one_or_none()
        if not client:
            client = Client(phone='5511999990000', name='Demo Client')
            db.add(client)
            db.flush()

        existing = db.execute(select(Sale.id).where(Sale.client_phone == client.phone)).scalars().first()
        if not existing:
            demo_sales = [
                (date(2024, 1, 10), Decimal('30.00'), SaleStatus.DELIVERED),
                (date(2024, 2, 5), Decimal('50.00'), SaleStatus.DISPATCHED),
                (date(2024, 3, 1), Decimal('20.00'), SaleStatus.PENDING),
                (date(2024, 3, 15), Decimal('75.00'), SaleStatus.CANCELLED),
            ]
            for sold_on, total, status in demo_sales:
                db.add(Sale(client_phone=client.phone, sold_on=sold_on, total_amount=total, status=status))
            db.flush()

            first_sale = db.execute(
                select(Sale).where(Sale.client_phone == client.phone).order_by(Sale.sold_on.asc(), Sale.id.asc())
            ).scalars().first()
            db.add(
                Payment(
                    sale_id=first_sale.id,
                    amount=Decimal('10.00'),
                    method=PaymentMethod.CASH,
                    paid_on=date(2024, 1, 20),
                    notes='Deposit',
                )
            )
            db.flush()
            recompute_paid(SqlLedgerStore(db), first_sale.id)

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
