from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from queuepoint.errors import GatewayFailure, InvalidInput, InvalidTransition, NotFound
from queuepoint.models import MenuItem, Order, OrderCounter, OrderStatus
from queuepoint.services.customizations import NamedOption, RawLabel
from queuepoint.services.menu_service import create_menu_item, delete_menu_item, update_menu_item
from queuepoint.services.order_service import (
    ALLOWED_TRANSITIONS,
    OrderLineInput,
    can_transition,
    create_order,
    delete_order,
    get_order,
    list_orders,
    pending_queue,
    update_status,
)
from queuepoint.services.queue_view_service import build_board
from tests.db_support import make_session_factory

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class OrderServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.Session = make_session_factory()
        with self.Session() as db:
            silog = create_menu_item(
                db,
                name='Silog Meal',
                price=Decimal('50.00'),
                category='meals',
                customization_options=[{'name': 'Extra Rice', 'price': '10.00'}],
            )
            noodles = create_menu_item(db, name='Cup Noodles', price=Decimal('17.00'), category='snacks', quantity=3)
            db.commit()
            self.silog_id = silog.id
            self.noodles_id = noodles.id

    def _place(self, db, *, now=T0, **line) -> Order:
        line.setdefault('menu_item_id', self.silog_id)
        line.setdefault('quantity', 1)
        return create_order(db, lines=[OrderLineInput(**line)], terminal='PC-1', now=now)

    def test_total_uses_customization_prices_times_quantity(self) -> None:
        with self.Session() as db:
            order = self._place(db, quantity=2, customizations=['Extra Rice'])
            self.assertEqual(order.total, Decimal('120.00'))
            self.assertEqual(order.status, OrderStatus.PENDING)
            self.assertEqual(order.items[0].customizations, [NamedOption('Extra Rice', Decimal('10.00'))])

    def test_total_is_a_snapshot_of_menu_prices(self) -> None:
        with self.Session() as db:
            order_id = self._place(db, quantity=2, customizations=['Extra Rice']).id
            update_menu_item(
                db,
                self.silog_id,
                {'price': Decimal('80.00'), 'customization_options': [{'name': 'Extra Rice', 'price': '15.00'}]},
            )

        with self.Session() as db:
            order = get_order(db, order_id)
            self.assertEqual(order.total, Decimal('120.00'))
            self.assertEqual(order.items[0].price, Decimal('50.00'))
            self.assertEqual(order.items[0].menu_item_name, 'Silog Meal')
            self.assertEqual(order.items[0].customizations, [NamedOption('Extra Rice', Decimal('10.00'))])
            # New orders pick up the edited prices.
            self.assertEqual(self._place(db, quantity=2, customizations=['Extra Rice']).total, Decimal('190.00'))

    def test_deleting_menu_item_keeps_order_history(self) -> None:
        with self.Session() as db:
            order_id = self._place(db).id
            self.assertEqual(delete_menu_item(db, self.silog_id), 'Silog Meal')
        with self.Session() as db:
            order = get_order(db, order_id)
            self.assertEqual((order.items[0].menu_item_name, order.total), ('Silog Meal', Decimal('50.00')))
            with self.assertRaises(NotFound):
                self._place(db)

    def test_unknown_customization_is_a_free_label(self) -> None:
        with self.Session() as db:
            order = self._place(db, customizations=['No onions'])
            self.assertEqual(order.total, Decimal('50.00'))
        with self.Session() as db:
            self.assertEqual(get_order(db, order.id).items[0].customizations, [RawLabel('No onions')])

    def test_customizations_reload_unchanged_from_storage(self) -> None:
        lookalike = '{"name": "Gold", "price": "500"}'
        with self.Session() as db:
            order_id = self._place(db, quantity=2, customizations=['Extra Rice', lookalike, 'No onions']).id

        with self.Session() as db:
            order = get_order(db, order_id)
            self.assertEqual(
                order.items[0].customizations,
                [NamedOption('Extra Rice', Decimal('10.00')), RawLabel(lookalike), RawLabel('No onions')],
            )
            (card,) = build_board(pending_queue(db)).pending
            self.assertEqual(card.lines[0].display_price, Decimal('120.00'))
            self.assertEqual(card.total, order.total)

    def test_order_numbers_increase_from_existing_maximum(self) -> None:
        with self.Session() as db:
            first = self._place(db)
            second = self._place(db)
            self.assertEqual(first.order_number, 1)
            self.assertEqual(second.order_number, 2)
            self.assertEqual(db.get(OrderCounter, 1).last_number, 2)

    def test_rejects_empty_orders_and_non_positive_quantities(self) -> None:
        with self.Session() as db:
            with self.assertRaises(InvalidInput):
                create_order(db, lines=[])
            with self.assertRaises(InvalidInput):
                self._place(db, quantity=0)
            self.assertEqual(list_orders(db), [])

    def test_unknown_menu_item_is_not_found(self) -> None:
        with self.Session() as db:
            with self.assertRaises(NotFound):
                self._place(db, menu_item_id=9999)

    def test_menu_quantity_is_reserved_and_enforced(self) -> None:
        with self.Session() as db:
            self._place(db, menu_item_id=self.noodles_id, quantity=2)
            self.assertEqual(db.get(MenuItem, self.noodles_id).quantity, 1)
            with self.assertRaises(InvalidInput):
                self._place(db, menu_item_id=self.noodles_id, quantity=2)
        with self.Session() as db:
            # The failed order rolled back; nothing else was reserved.
            self.assertEqual(db.get(MenuItem, self.noodles_id).quantity, 1)
            self.assertEqual(len(list_orders(db)), 1)

    def test_sold_out_item_cannot_be_ordered(self) -> None:
        with self.Session() as db:
            db.get(MenuItem, self.noodles_id).quantity = 0
            db.commit()
            with self.assertRaises(InvalidInput):
                self._place(db, menu_item_id=self.noodles_id)

    def test_transition_table(self) -> None:
        self.assertTrue(can_transition(OrderStatus.PENDING, OrderStatus.PREPARING))
        self.assertTrue(can_transition(OrderStatus.READY, OrderStatus.PREPARING))
        self.assertFalse(can_transition(OrderStatus.PENDING, OrderStatus.READY))
        self.assertFalse(can_transition(OrderStatus.COMPLETED, OrderStatus.READY))
        self.assertEqual(ALLOWED_TRANSITIONS[OrderStatus.COMPLETED], frozenset())

    def test_status_walk_stamps_completion_time(self) -> None:
        with self.Session() as db:
            order_id = self._place(db).id
            done_at = T0 + timedelta(minutes=12)
            update_status(db, order_id=order_id, new_status='preparing')
            update_status(db, order_id=order_id, new_status='ready')
            self.assertIsNone(get_order(db, order_id).completed_at)
            order = update_status(db, order_id=order_id, new_status='completed', now=done_at)
            self.assertEqual(order.status, OrderStatus.COMPLETED)
            self.assertEqual(order.completed_at.replace(tzinfo=timezone.utc), done_at)

    def test_illegal_transition_is_rejected(self) -> None:
        with self.Session() as db:
            order_id = self._place(db).id
            with self.assertRaises(InvalidTransition):
                update_status(db, order_id=order_id, new_status='completed')
            with self.assertRaises(InvalidInput):
                update_status(db, order_id=order_id, new_status='served')
            self.assertEqual(get_order(db, order_id).status, OrderStatus.PENDING)

    def test_update_status_of_missing_order(self) -> None:
        with self.Session() as db:
            with self.assertRaises(NotFound):
                update_status(db, order_id=404, new_status='preparing')

    def test_stale_status_write_is_rejected(self) -> None:
        with self.Session() as kitchen, self.Session() as counter:
            order_id = self._place(kitchen).id
            stale = get_order(counter, order_id)
            self.assertEqual(stale.status, OrderStatus.PENDING)
            update_status(kitchen, order_id=order_id, new_status='preparing')
            # counter still believes the order is pending; its compare-and-swap must miss.
            with self.assertRaises(InvalidTransition):
                update_status(counter, order_id=order_id, new_status='preparing')

    def test_delete_order_cascades_and_reports_number(self) -> None:
        with self.Session() as db:
            order = self._place(db)
            self.assertEqual(delete_order(db, order_id=order.id), order.order_number)
            with self.assertRaises(NotFound):
                delete_order(db, order_id=order.id)

    def test_pending_queue_is_oldest_first_without_completed(self) -> None:
        with self.Session() as db:
            late = self._place(db, now=T0 + timedelta(minutes=5)).id
            early = self._place(db, now=T0).id
            done = self._place(db, now=T0 - timedelta(minutes=5)).id
            for status in ('preparing', 'ready', 'completed'):
                update_status(db, order_id=done, new_status=status)

        with self.Session() as db:
            self.assertEqual([order.id for order in pending_queue(db)], [early, late])
            self.assertEqual(len(list_orders(db, status='completed')), 1)

    def test_storage_error_rolls_back_and_surfaces_gateway_failure(self) -> None:
        with self.Session() as db:
            with patch(
                'queuepoint.services.order_service._reserve_order_number',
                side_effect=OperationalError('SELECT', {}, Exception('connection reset')),
            ):
                with self.assertLogs('queuepoint.services.gateway', level='ERROR'):
                    with self.assertRaises(GatewayFailure):
                        self._place(db, menu_item_id=self.noodles_id)
        with self.Session() as db:
            self.assertEqual(db.get(MenuItem, self.noodles_id).quantity, 3)


if __name__ == '__main__':
    unittest.main()
