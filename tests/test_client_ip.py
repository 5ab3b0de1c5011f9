from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest.mock import patch

from queuepoint.config import settings
from queuepoint.dependencies import get_client_ip
from queuepoint.routers.kiosk import resolve_terminal_ip


def _request(peer: str | None, forwarded_for: str | None = None) -> SimpleNamespace:
    headers = {'x-forwarded-for': forwarded_for} if forwarded_for else {}
    return SimpleNamespace(headers=headers, client=SimpleNamespace(host=peer) if peer else None)


class ClientIpTests(unittest.TestCase):
    def test_forwarded_header_from_untrusted_peer_is_ignored(self) -> None:
        self.assertEqual(get_client_ip(_request('192.168.1.77', '192.168.1.50')), '192.168.1.77')

    def test_trusted_proxy_yields_nearest_untrusted_hop(self) -> None:
        # The leftmost hop is whatever the client sent; the proxy appended the real peer.
        request = _request('127.0.0.1', '10.9.9.9, 192.168.1.50')
        self.assertEqual(get_client_ip(request), '192.168.1.50')

    def test_chain_of_trusted_proxies_is_skipped(self) -> None:
        with patch.object(settings, 'trusted_proxies', ['127.0.0.1', '10.0.0.2']):
            self.assertEqual(get_client_ip(_request('127.0.0.1', '192.168.1.50, 10.0.0.2')), '192.168.1.50')

    def test_missing_peer(self) -> None:
        self.assertIsNone(get_client_ip(_request(None, '192.168.1.50')))


class TerminalIpTests(unittest.TestCase):
    @patch('queuepoint.routers.kiosk.detect_client_ip')
    def test_reported_ip_needs_opt_in(self, detect_mock) -> None:
        request = _request('192.168.1.77')
        with patch.object(settings, 'accept_reported_ip', False):
            self.assertEqual(resolve_terminal_ip(request, '192.168.1.50'), '192.168.1.77')
        with patch.object(settings, 'accept_reported_ip', True):
            self.assertEqual(resolve_terminal_ip(request, '192.168.1.50'), '192.168.1.50')
        detect_mock.assert_not_called()

    @patch('queuepoint.routers.kiosk.detect_client_ip', return_value='203.0.113.7')
    def test_loopback_peer_asks_echo_service(self, detect_mock) -> None:
        self.assertEqual(resolve_terminal_ip(_request('127.0.0.1')), '203.0.113.7')
        detect_mock.assert_called_once_with()

    @patch('queuepoint.routers.kiosk.detect_client_ip', return_value=None)
    def test_loopback_falls_back_to_itself(self, _detect_mock) -> None:
        self.assertEqual(resolve_terminal_ip(_request('::1')), '::1')


if __name__ == '__main__':
    unittest.main()
