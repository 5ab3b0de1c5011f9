from __future__ import annotations

import unittest
from decimal import Decimal

from queuepoint.errors import InvalidInput, NotFound
from queuepoint.services.menu_service import (
    add_menu_item,
    clean_customization_options,
    delete_menu_item,
    get_menu_item,
    is_orderable,
    list_menu,
    set_menu_availability,
    update_menu_item,
)
from tests.db_support import make_session_factory


class MenuServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.Session = make_session_factory()
        with self.Session() as db:
            self.item_id = add_menu_item(
                db,
                name=' Silog Meal ',
                price=Decimal('50'),
                category='meals',
                customization_options=[{'name': 'Extra Rice', 'price': '10'}],
            ).id

    def test_add_cleans_fields(self) -> None:
        with self.Session() as db:
            item = get_menu_item(db, self.item_id)
            self.assertEqual(item.name, 'Silog Meal')
            self.assertEqual(item.price, Decimal('50.00'))
            self.assertEqual(item.customization_options, [{'name': 'Extra Rice', 'price': '10.00'}])
            self.assertIsNone(item.quantity)

    def test_update_price_and_quantity(self) -> None:
        with self.Session() as db:
            update_menu_item(db, self.item_id, {'price': Decimal('65.50'), 'quantity': 4})
        with self.Session() as db:
            item = get_menu_item(db, self.item_id)
            self.assertEqual((item.price, item.quantity), (Decimal('65.50'), 4))
            update_menu_item(db, self.item_id, {'quantity': None})
            self.assertIsNone(get_menu_item(db, self.item_id).quantity)

    def test_bad_edits_change_nothing(self) -> None:
        with self.Session() as db:
            for changes in (
                {'price': Decimal('-1')},
                {'price': 'free'},
                {'name': '   '},
                {'quantity': -2},
                {'sku': 'X'},
                {'customization_options': [{'price': '5'}]},
            ):
                with self.subTest(changes=changes):
                    with self.assertRaises(InvalidInput):
                        update_menu_item(db, self.item_id, changes)
        with self.Session() as db:
            self.assertEqual(get_menu_item(db, self.item_id).price, Decimal('50.00'))

    def test_option_rules(self) -> None:
        self.assertEqual(
            clean_customization_options(['{"name": "Egg", "price": "12"}', {'name': ' Cheese ', 'price': 8}]),
            [{'name': 'Egg', 'price': '12.00'}, {'name': 'Cheese', 'price': '8.00'}],
        )
        with self.assertRaises(InvalidInput):
            clean_customization_options([{'name': 'Egg', 'price': '1'}, {'name': 'Egg', 'price': '2'}])
        with self.assertRaises(InvalidInput):
            clean_customization_options([{'name': 'Egg', 'price': '-3'}])
        with self.assertRaises(InvalidInput):
            clean_customization_options(['No onions'])

    def test_availability_hides_item_from_kiosk_menu(self) -> None:
        with self.Session() as db:
            item = set_menu_availability(db, self.item_id, False)
            self.assertFalse(is_orderable(item))
            self.assertEqual(list_menu(db), [])
            self.assertEqual([i.id for i in list_menu(db, include_unavailable=True)], [self.item_id])
            set_menu_availability(db, self.item_id, True)
            self.assertEqual([i.id for i in list_menu(db)], [self.item_id])

    def test_delete(self) -> None:
        with self.Session() as db:
            self.assertEqual(delete_menu_item(db, self.item_id), 'Silog Meal')
            with self.assertRaises(NotFound):
                delete_menu_item(db, self.item_id)
            with self.assertRaises(NotFound):
                update_menu_item(db, self.item_id, {'price': Decimal('1')})


if __name__ == '__main__':
    unittest.main()
