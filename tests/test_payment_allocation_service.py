from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from app.models import PaymentMethod, SaleStatus
from app.services.payment_allocation_service import (
    InvalidRequest,
    NotFound,
    NothingPending,
    StorageReadFailure,
    StorageWriteFailure,
    allocate_client_payment,
    plan_allocation,
    recompute_paid,
    to_money,
)
from tests.fakes import InMemoryLedgerStore

CLIENT = '5511999990000'


def _three_sale_store() -> InMemoryLedgerStore:
    store = InMemoryLedgerStore()
    store.add_client(CLIENT, 'Maria')
    store.add_sale(1, CLIENT, '30.00', sold_on=date(2024, 1, 10))
    store.add_sale(2, CLIENT, '50.00', sold_on=date(2024, 2, 10))
    store.add_sale(3, CLIENT, '20.00', sold_on=date(2024, 3, 10))
    return store


def _allocate(store: InMemoryLedgerStore, amount, **overrides):
    kwargs = {
        'client_phone': CLIENT,
        'amount': amount,
        'method': PaymentMethod.CASH,
        'paid_on': date(2024, 4, 1),
        'notes': None,
    }
    kwargs.update(overrides)
    return allocate_client_payment(store, **kwargs)


class AllocateClientPaymentTests(unittest.TestCase):
    def test_fifo_touches_oldest_sales_first(self) -> None:
        store = _three_sale_store()

        result = _allocate(store, Decimal('40'))

        self.assertEqual([(line.sale_id, line.amount) for line in result.lines], [(1, Decimal('30.00')), (2, Decimal('10.00'))])
        self.assertEqual(result.remainder, Decimal('0.00'))
        self.assertEqual(result.distributed, Decimal('40.00'))
        self.assertEqual(
            [(s.sale_id, s.paid_amount) for s in result.affected_sales],
            [(1, Decimal('30.00')), (2, Decimal('10.00'))],
        )
        self.assertEqual(store.sales[3].paid_amount, Decimal('0'))
        self.assertEqual(result.payments_created, 2)

    def test_overpayment_reports_remainder(self) -> None:
        store = _three_sale_store()

        result = _allocate(store, '200')

        self.assertEqual(result.offered, Decimal('200.00'))
        self.assertEqual(result.distributed, Decimal('100.00'))
        self.assertEqual(result.remainder, Decimal('100.00'))
        for sale_id in (1, 2, 3):
            sale = store.sales[sale_id]
            self.assertEqual(sale.paid_amount, sale.total_amount)
        self.assertEqual(len(store.payments), 3)

    def test_conservation_when_amount_within_debt(self) -> None:
        for amount in ('0.01', '29.99', '30', '55.55', '100'):
            store = _three_sale_store()
            result = _allocate(store, amount)
            self.assertEqual(result.distributed + result.remainder, result.offered)
            self.assertEqual(result.remainder, Decimal('0.00'))
            self.assertEqual(sum(line.amount for line in result.lines), result.distributed)

    def test_fully_paid_sale_is_skipped(self) -> None:
        store = _three_sale_store()
        store.add_payment(1, '30.00')
        recompute_paid(store, 1)

        result = _allocate(store, '500')

        self.assertNotIn(1, [s.sale_id for s in result.affected_sales])
        self.assertNotIn(1, [line.sale_id for line in result.lines])
        self.assertEqual(result.distributed, Decimal('70.00'))

    def test_partially_paid_sale_takes_only_its_balance(self) -> None:
        store = _three_sale_store()
        store.add_payment(1, '12.50')
        recompute_paid(store, 1)

        result = _allocate(store, '20')

        self.assertEqual([(line.sale_id, line.amount) for line in result.lines], [(1, Decimal('17.50')), (2, Decimal('2.50'))])
        self.assertEqual(store.sales[1].paid_amount, Decimal('30.00'))

    def test_cancelled_sale_is_never_allocated(self) -> None:
        store = InMemoryLedgerStore()
        store.add_client(CLIENT)
        store.add_sale(1, CLIENT, '80.00', sold_on=date(2024, 1, 1), status=SaleStatus.CANCELLED)
        store.add_sale(2, CLIENT, '25.00', sold_on=date(2024, 2, 1), status=SaleStatus.DELIVERED)

        result = _allocate(store, '100')

        self.assertEqual([line.sale_id for line in result.lines], [2])
        self.assertEqual(result.remainder, Decimal('75.00'))
        self.assertEqual(store.sales[1].paid_amount, Decimal('0'))

    def test_same_date_sales_are_ordered_by_id(self) -> None:
        store = InMemoryLedgerStore()
        store.add_client(CLIENT)
        store.add_sale(9, CLIENT, '10.00', sold_on=date(2024, 5, 1))
        store.add_sale(4, CLIENT, '10.00', sold_on=date(2024, 5, 1))

        result = _allocate(store, '10')

        self.assertEqual([line.sale_id for line in result.lines], [4])

    def test_non_positive_amount_is_rejected_without_store_calls(self) -> None:
        for amount in (0, -5, '0.004', 'abc', 'NaN', None):
            store = _three_sale_store()
            with self.assertRaises(InvalidRequest):
                _allocate(store, amount)
            self.assertEqual(store.total_calls, 0)

    def test_blank_client_is_rejected_without_store_calls(self) -> None:
        store = _three_sale_store()
        with self.assertRaises(InvalidRequest):
            _allocate(store, '10', client_phone='  ')
        self.assertEqual(store.total_calls, 0)

    def test_unknown_method_is_rejected(self) -> None:
        store = _three_sale_store()
        with self.assertRaises(InvalidRequest):
            _allocate(store, '10', method='cheque')
        self.assertEqual(store.total_calls, 0)

    def test_method_accepts_lowercase_name(self) -> None:
        store = _three_sale_store()
        result = _allocate(store, '10', method='instant')
        self.assertEqual(store.payments[result.lines[0].payment_id].method, PaymentMethod.INSTANT)

    def test_unknown_client_is_invalid(self) -> None:
        store = _three_sale_store()
        with self.assertRaises(InvalidRequest):
            _allocate(store, '10', client_phone='000')
        self.assertEqual(store.calls['insert_payment'], 0)

    def test_nothing_pending_when_all_paid_or_cancelled(self) -> None:
        store = InMemoryLedgerStore()
        store.add_client(CLIENT)
        store.add_sale(1, CLIENT, '15.00')
        store.add_sale(2, CLIENT, '40.00', status=SaleStatus.CANCELLED)
        store.add_payment(1, '15.00')
        recompute_paid(store, 1)
        payments_before = len(store.payments)

        with self.assertRaises(NothingPending):
            _allocate(store, '10')
        self.assertEqual(len(store.payments), payments_before)

    def test_nothing_pending_for_client_without_sales(self) -> None:
        store = InMemoryLedgerStore()
        store.add_client(CLIENT)
        with self.assertRaises(NothingPending):
            _allocate(store, '10')

    def test_notes_are_stripped_and_copied_to_every_payment(self) -> None:
        store = _three_sale_store()
        result = _allocate(store, '60', notes='  march transfer ')
        notes = {store.payments[line.payment_id].notes for line in result.lines}
        self.assertEqual(notes, {'march transfer'})

    def test_load_failure_reports_no_writes(self) -> None:
        store = _three_sale_store()
        store.failures['list_client_sales'] = lambda _arg: True

        with self.assertRaises(StorageReadFailure) as ctx:
            _allocate(store, '40')

        self.assertEqual(ctx.exception.phase, 'load')
        self.assertFalse(ctx.exception.partial_writes)
        self.assertEqual(store.calls['insert_payment'], 0)

    def test_insert_failure_reports_partial_writes(self) -> None:
        store = _three_sale_store()
        store.failures['insert_payment'] = lambda draft: draft.sale_id == 2

        with self.assertRaises(StorageWriteFailure) as ctx:
            _allocate(store, '60')

        self.assertEqual(ctx.exception.phase, 'insert')
        self.assertTrue(ctx.exception.partial_writes)
        self.assertEqual(ctx.exception.payment_ids, [1])

    def test_first_insert_failure_reports_no_partial_writes(self) -> None:
        store = _three_sale_store()
        store.failures['insert_payment'] = lambda _draft: True

        with self.assertRaises(StorageWriteFailure) as ctx:
            _allocate(store, '60')

        self.assertFalse(ctx.exception.partial_writes)

    def test_recompute_failure_is_reported_per_sale(self) -> None:
        store = _three_sale_store()
        store.failures['update_sale_paid'] = lambda sale_id: sale_id == 1

        result = _allocate(store, '40')

        self.assertEqual(result.payments_created, 2)
        self.assertEqual([f.sale_id for f in result.recompute_failures], [1])
        self.assertEqual([s.sale_id for s in result.affected_sales], [2])
        self.assertEqual(len(store.payments), 2)

        store.failures.clear()
        self.assertEqual(recompute_paid(store, 1), Decimal('30.00'))

    def test_sale_missing_at_recompute_is_reported_not_raised(self) -> None:
        store = _three_sale_store()
        write_paid = store.update_sale_paid
        store.update_sale_paid = lambda sale_id, paid: False if sale_id == 1 else write_paid(sale_id, paid)

        result = _allocate(store, '40')

        self.assertEqual(result.payments_created, 2)
        self.assertEqual([(f.sale_id, f.reason) for f in result.recompute_failures], [(1, 'Sale not found')])
        self.assertEqual([(s.sale_id, s.paid_amount) for s in result.affected_sales], [(2, Decimal('10.00'))])


class RecomputePaidTests(unittest.TestCase):
    def test_recompute_is_idempotent(self) -> None:
        store = _three_sale_store()
        store.add_payment(2, '10.00')
        store.add_payment(2, '5.25')

        first = recompute_paid(store, 2)
        second = recompute_paid(store, 2)

        self.assertEqual(first, Decimal('15.25'))
        self.assertEqual(first, second)
        self.assertEqual(store.paid_writes, [(2, Decimal('15.25')), (2, Decimal('15.25'))])

    def test_recompute_overwrites_drifted_total(self) -> None:
        store = InMemoryLedgerStore()
        store.add_client(CLIENT)
        store.add_sale(1, CLIENT, '100.00', paid='90.00')
        store.add_payment(1, '40.00')

        self.assertEqual(recompute_paid(store, 1), Decimal('40.00'))
        self.assertEqual(store.sales[1].paid_amount, Decimal('40.00'))

    def test_recompute_without_payments_is_zero(self) -> None:
        store = _three_sale_store()
        self.assertEqual(recompute_paid(store, 3), Decimal('0.00'))

    def test_recompute_unknown_sale(self) -> None:
        store = _three_sale_store()
        with self.assertRaises(NotFound):
            recompute_paid(store, 404)


class PlanAllocationTests(unittest.TestCase):
    def test_plan_stops_when_funds_run_out(self) -> None:
        store = _three_sale_store()
        sales = store.list_client_sales(CLIENT)

        plan, remainder = plan_allocation(sales, Decimal('30.00'))

        self.assertEqual([(sale.id, take) for sale, take in plan], [(1, Decimal('30.00'))])
        self.assertEqual(remainder, Decimal('0.00'))

    def test_to_money_rounds_half_up(self) -> None:
        self.assertEqual(to_money('10.005'), Decimal('10.01'))
        self.assertEqual(to_money(0.1), Decimal('0.10'))


if __name__ == '__main__':
    unittest.main()
