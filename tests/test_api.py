from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import patch

from fastapi.testclient import TestClient

from queuepoint.config import settings
from queuepoint.main import create_app
from queuepoint.models import AuditLog, Principal, PrincipalRole
from queuepoint.security.csrf import CSRF_COOKIE_NAME
from queuepoint.security.passwords import hash_password
from queuepoint.services.menu_service import create_menu_item
from queuepoint.services.pc_registry_service import create_pc
from tests.db_support import make_session_factory

KIOSK_IP = '192.168.1.50'


class ApiFlowTests(unittest.TestCase):
    def setUp(self) -> None:
        self.Session = make_session_factory()
        with self.Session() as db:
            db.add(Principal(email='admin@queuepoint.local', password_hash=hash_password('adminpass'), role=PrincipalRole.ADMIN))
            db.add(Principal(email='kitchen@queuepoint.local', password_hash=hash_password('kitchenpass'), role=PrincipalRole.STAFF))
            self.silog_id = create_menu_item(
                db,
                name='Silog Meal',
                price=Decimal('50.00'),
                category='meals',
                customization_options=[{'name': 'Extra Rice', 'price': '10.00'}],
            ).id
            db.commit()
        with self.Session() as db:
            create_pc(db, pc_number='PC-1')
        self.app = create_app(session_factory=self.Session)

    def _client(self) -> tuple[TestClient, dict]:
        client = TestClient(self.app)
        client.get('/login')
        return client, {'X-CSRF-Token': client.cookies.get(CSRF_COOKIE_NAME)}

    def _login(self, email: str, password: str) -> tuple[TestClient, dict]:
        client, headers = self._client()
        response = client.post('/login', json={'email': email, 'password': password}, headers=headers)
        self.assertEqual(response.status_code, 200, response.text)
        return client, headers

    def _place_order(self, client: TestClient, headers: dict) -> dict:
        response = client.post(
            '/orders',
            json={
                'items': [{'menu_item_id': self.silog_id, 'quantity': 2, 'customizations': ['Extra Rice']}],
                'customer_name': 'Jun',
                'terminal': 'PC-1',
            },
            headers=headers,
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()['order']

    def test_menu_is_public(self) -> None:
        client, _ = self._client()
        response = client.get('/menu')
        self.assertEqual(response.status_code, 200)
        (item,) = response.json()
        self.assertEqual(item['price'], '50.00')
        self.assertEqual(item['customization_options'], [{'name': 'Extra Rice', 'price': '10.00'}])
        self.assertEqual(response.headers['X-Robots-Tag'], 'noindex, nofollow, noarchive')

    def test_order_needs_csrf_token(self) -> None:
        client, _ = self._client()
        response = client.post('/orders', json={'items': [{'menu_item_id': self.silog_id}]})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['error'], 'forbidden')

    def test_kiosk_order_reaches_queue_and_kitchen(self) -> None:
        kiosk, headers = self._client()
        order = self._place_order(kiosk, headers)
        self.assertEqual(order['total'], '120.00')
        self.assertEqual(order['lines'][0]['display_price'], '120.00')

        board = kiosk.get('/queue/board').json()
        self.assertEqual([card['order_number'] for card in board['pending']], [order['order_number']])
        self.assertEqual(board['pending'][0]['estimated_wait_minutes'], 10)
        self.assertEqual(board['refresh_after_seconds'], 5)

        self.assertEqual(kiosk.get('/kitchen/board').status_code, 401)

        kitchen, kitchen_headers = self._login('kitchen@queuepoint.local', 'kitchenpass')
        url = f"/kitchen/orders/{order['id']}/status"
        skipped = kitchen.post(url, json={'status': 'ready'}, headers=kitchen_headers)
        self.assertEqual(skipped.status_code, 409)
        self.assertEqual(skipped.json(), {'success': False, 'error': 'invalid_transition', 'detail': skipped.json()['detail']})

        moved = kitchen.post(url, json={'status': 'preparing'}, headers=kitchen_headers)
        self.assertEqual(moved.status_code, 200)
        self.assertEqual(kitchen.get('/kitchen/board').json()['preparing'][0]['id'], order['id'])
        forbidden = kitchen.get('/admin/orders')
        self.assertEqual((forbidden.status_code, forbidden.json()['error']), (403, 'forbidden'))

        with self.Session() as db:
            actions = [entry.action for entry in db.query(AuditLog).order_by(AuditLog.id).all()]
        self.assertEqual(actions, ['AUTH_LOGIN', 'ORDER_STATUS_UPDATED'])

    def test_missing_order_renders_domain_error(self) -> None:
        client, _ = self._client()
        response = client.get('/orders/999')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'not_found')

    def test_bad_login_is_rejected(self) -> None:
        client, headers = self._client()
        response = client.post('/login', json={'email': 'admin@queuepoint.local', 'password': 'nope'}, headers=headers)
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'invalid_credentials')

    def test_gate_access_flow(self) -> None:
        patcher = patch.object(settings, 'accept_reported_ip', True)
        patcher.start()
        self.addCleanup(patcher.stop)
        kiosk, headers = self._client()
        status = kiosk.get('/gate/status', params={'ip': KIOSK_IP}).json()
        self.assertFalse(status['registered'])
        self.assertTrue(status['newly_detected'])

        requested = kiosk.post('/gate/request-access', json={'pc_number': 'pc-1', 'ip': KIOSK_IP}, headers=headers)
        self.assertEqual(requested.status_code, 201, requested.text)
        session_id = requested.json()['session']['id']
        pc_id = requested.json()['pc']['id']

        again = kiosk.post('/gate/request-access', json={'pc_number': 'PC-1', 'ip': KIOSK_IP}, headers=headers)
        self.assertEqual(again.status_code, 409)

        admin, admin_headers = self._login('admin@queuepoint.local', 'adminpass')
        granted = admin.post(f'/admin/pcs/{pc_id}/grant', json={'session_id': session_id}, headers=admin_headers)
        self.assertEqual(granted.status_code, 200, granted.text)

        status = kiosk.get('/gate/status', params={'ip': KIOSK_IP}).json()
        self.assertTrue(status['registered'])
        self.assertEqual(status['pc']['status'], 'online')

        kicked = admin.post(f'/admin/pcs/{pc_id}/kick', headers=admin_headers)
        self.assertEqual(kicked.json()['pc']['ip_address'], None)
        self.assertFalse(kiosk.get('/gate/status', params={'ip': KIOSK_IP}).json()['registered'])

    @patch('queuepoint.routers.kiosk.detect_client_ip', return_value='203.0.113.7')
    def test_gate_ignores_reported_ip_by_default(self, detect_mock) -> None:
        kiosk, _ = self._client()
        forged = kiosk.get(
            '/gate/status', params={'ip': KIOSK_IP}, headers={'X-Forwarded-For': KIOSK_IP}
        ).json()
        self.assertEqual(forged['ip'], '203.0.113.7')
        detect_mock.assert_called_once_with()

    def test_inventory_csv_import_and_export(self) -> None:
        admin, headers = self._login('admin@queuepoint.local', 'adminpass')
        body = (
            'SKU,Name,Category,Unit,Stock,Reorder Threshold,Cost Price,Selling Price,Notes\n'
            'ING-RICE,Rice,ingredients,kg,25,5,12.50,,\n'
            'SHORT,row,only,four\n'
        )
        response = admin.post(
            '/admin/inventory/import',
            files={'file': ('inventory.csv', body.encode('utf-8'), 'text/csv')},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual((response.json()['created'], response.json()['skipped']), (1, 1))

        (item,) = admin.get('/admin/inventory').json()
        self.assertEqual(item['cost_price'], '12.50')
        self.assertEqual(item['status'], 'in-stock')

        adjusted = admin.post(
            f"/admin/inventory/{item['id']}/adjust",
            json={'amount': '20', 'reason': 'usage'},
            headers=headers,
        )
        self.assertEqual(adjusted.json()['item']['status'], 'low')
        refused = admin.patch(f"/admin/inventory/{item['id']}", json={'stock': '99'}, headers=headers)
        self.assertEqual(refused.status_code, 400)

        exported = admin.get('/admin/inventory/export.csv')
        self.assertEqual(exported.headers['content-type'].split(';')[0], 'text/csv')
        self.assertIn('"ING-RICE","Rice","ingredients","kg","5","5","12.5","",""', exported.text)

    def test_menu_edit_keeps_placed_order_prices(self) -> None:
        kiosk, headers = self._client()
        order = self._place_order(kiosk, headers)

        admin, admin_headers = self._login('admin@queuepoint.local', 'adminpass')
        edited = admin.patch(
            f'/admin/menu/{self.silog_id}',
            json={'price': '80.00', 'quantity': 5},
            headers=admin_headers,
        )
        self.assertEqual(edited.status_code, 200, edited.text)
        self.assertEqual((edited.json()['item']['price'], edited.json()['item']['quantity']), ('80.00', 5))
        self.assertEqual(kiosk.get(f"/orders/{order['id']}").json()['total'], '120.00')

        hidden = admin.post(f'/admin/menu/{self.silog_id}/availability', json={'available': False}, headers=admin_headers)
        self.assertFalse(hidden.json()['item']['available'])
        self.assertEqual(kiosk.get('/menu').json(), [])
        self.assertEqual(len(admin.get('/admin/menu').json()), 1)

        refused = admin.patch(f'/admin/menu/{self.silog_id}', json={'price': '-5'}, headers=admin_headers)
        self.assertEqual((refused.status_code, refused.json()['error']), (400, 'invalid_input'))

        created = admin.post(
            '/admin/menu',
            json={'name': 'Cup Noodles', 'price': '17', 'category': 'snacks', 'quantity': 3},
            headers=admin_headers,
        )
        self.assertEqual(created.status_code, 201, created.text)
        self.assertEqual(created.json()['item']['price'], '17.00')
        deleted = admin.delete(f"/admin/menu/{created.json()['item']['id']}", headers=admin_headers)
        self.assertEqual(deleted.status_code, 200)

        with self.Session() as db:
            entries = db.query(AuditLog).filter(AuditLog.action.like('MENU_%')).order_by(AuditLog.id).all()
        self.assertEqual(
            [entry.action for entry in entries],
            ['MENU_ITEM_UPDATED', 'MENU_ITEM_AVAILABILITY_SET', 'MENU_ITEM_CREATED', 'MENU_ITEM_DELETED'],
        )
        self.assertEqual(entries[0].meta['previous_price'], '50.00')
        self.assertEqual(entries[2].meta['menu_item_id'], created.json()['item']['id'])

    def test_staff_accounts_are_admin_managed(self) -> None:
        admin, headers = self._login('admin@queuepoint.local', 'adminpass')
        created = admin.post(
            '/admin/staff',
            json={'email': 'Cook@queuepoint.local', 'password': 'cookpass1', 'role': 'staff'},
            headers=headers,
        )
        self.assertEqual(created.status_code, 201, created.text)
        account = created.json()['account']
        self.assertEqual((account['email'], account['role']), ('cook@queuepoint.local', 'STAFF'))

        cook, _ = self._login('cook@queuepoint.local', 'cookpass1')
        self.assertEqual(cook.get('/kitchen/board').status_code, 200)
        self.assertEqual(cook.get('/admin/staff').status_code, 403)

        deactivated = admin.patch(f"/admin/staff/{account['id']}", json={'active': False}, headers=headers)
        self.assertEqual(deactivated.status_code, 200, deactivated.text)
        self.assertEqual(cook.get('/kitchen/board').status_code, 401)

        with self.Session() as db:
            admin_id = db.query(Principal).filter_by(email='admin@queuepoint.local').one().id
        self_demote = admin.patch(f'/admin/staff/{admin_id}', json={'role': 'STAFF'}, headers=headers)
        self.assertEqual((self_demote.status_code, self_demote.json()['error']), (409, 'conflict_state'))

        # The cook logged in, so the account has history and can only be deactivated.
        kept = admin.delete(f"/admin/staff/{account['id']}", headers=headers)
        self.assertEqual(kept.status_code, 409)
        emails = [row['email'] for row in admin.get('/admin/staff').json()]
        self.assertIn('cook@queuepoint.local', emails)

    def test_logout_revokes_session(self) -> None:
        admin, headers = self._login('admin@queuepoint.local', 'adminpass')
        dashboard = admin.get('/admin')
        self.assertEqual(dashboard.status_code, 200)
        self.assertEqual(dashboard.headers['Cache-Control'], 'no-store')
        admin.post('/logout', headers=headers)
        self.assertEqual(admin.get('/admin').status_code, 401)


if __name__ == '__main__':
    unittest.main()
