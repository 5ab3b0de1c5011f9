from __future__ import annotations

import unittest

from queuepoint.services.ip_cache import IpRegistrationCache


class IpRegistrationCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cache = IpRegistrationCache()

    def test_remember_keeps_both_directions(self) -> None:
        self.cache.remember('192.168.1.50', 3)
        self.assertEqual(self.cache.get('192.168.1.50'), 3)
        self.assertEqual(self.cache.ip_for(3), '192.168.1.50')

    def test_invalidate_pc_drops_its_ip(self) -> None:
        self.cache.remember('192.168.1.50', 3)
        self.cache.remember('192.168.1.51', 4)
        self.cache.invalidate_pc(3)
        self.assertIsNone(self.cache.get('192.168.1.50'))
        self.assertIsNone(self.cache.ip_for(3))
        self.assertEqual(self.cache.get('192.168.1.51'), 4)
        self.assertEqual(len(self.cache), 1)

    def test_rebinding_replaces_stale_pairs(self) -> None:
        self.cache.remember('192.168.1.50', 3)
        # Same PC on a new address: the old address no longer points at it.
        self.cache.remember('192.168.1.60', 3)
        self.assertIsNone(self.cache.get('192.168.1.50'))
        # Same address moved to another PC: the first PC loses it.
        self.cache.remember('192.168.1.60', 4)
        self.assertIsNone(self.cache.ip_for(3))
        self.assertEqual(self.cache.ip_for(4), '192.168.1.60')
        self.assertEqual(len(self.cache), 1)

    def test_invalidate_ip_ignores_empty_values(self) -> None:
        self.cache.remember('192.168.1.50', 3)
        self.cache.invalidate_ip(None)
        self.cache.invalidate_ip('')
        self.cache.invalidate_ip('192.168.1.50')
        self.assertIsNone(self.cache.ip_for(3))
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)


if __name__ == '__main__':
    unittest.main()
