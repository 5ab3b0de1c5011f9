from __future__ import annotations

import io
import unittest
from unittest.mock import MagicMock, patch
from urllib.error import URLError

from queuepoint.services.ip_echo import detect_client_ip, normalize_ip


def _response(body: bytes) -> MagicMock:
    response = MagicMock()
    response.__enter__.return_value = io.BytesIO(body)
    return response


class IpEchoTests(unittest.TestCase):
    @patch('queuepoint.services.ip_echo.urlopen')
    def test_returns_echoed_address(self, urlopen_mock) -> None:
        urlopen_mock.return_value = _response(b'{"ip": "203.0.113.7"}')

        self.assertEqual(detect_client_ip(url='https://echo.example/json', timeout=2), '203.0.113.7')
        _request, = urlopen_mock.call_args.args
        self.assertEqual(_request.full_url, 'https://echo.example/json')
        self.assertEqual(urlopen_mock.call_args.kwargs['timeout'], 2)

    @patch('queuepoint.services.ip_echo.urlopen')
    def test_network_failure_yields_none(self, urlopen_mock) -> None:
        urlopen_mock.side_effect = URLError('timed out')

        with self.assertLogs('queuepoint.services.ip_echo', level='WARNING'):
            self.assertIsNone(detect_client_ip())

    @patch('queuepoint.services.ip_echo.urlopen')
    def test_garbage_payload_yields_none(self, urlopen_mock) -> None:
        urlopen_mock.return_value = _response(b'<html>rate limited</html>')
        with self.assertLogs('queuepoint.services.ip_echo', level='WARNING'):
            self.assertIsNone(detect_client_ip())

        urlopen_mock.return_value = _response(b'["203.0.113.7"]')
        self.assertIsNone(detect_client_ip())

        urlopen_mock.return_value = _response(b'{"ip": "not an address"}')
        self.assertIsNone(detect_client_ip())

    def test_normalize_ip(self) -> None:
        self.assertEqual(normalize_ip(' 192.168.1.50 '), '192.168.1.50')
        self.assertEqual(normalize_ip('2001:DB8::1'), '2001:db8::1')
        self.assertIsNone(normalize_ip('PC-1'))
        self.assertIsNone(normalize_ip(None))


if __name__ == '__main__':
    unittest.main()
