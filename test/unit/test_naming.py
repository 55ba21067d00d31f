#!/usr/bin/env python3
"""
Unit tests for resource name sanitization
"""

import unittest
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))

from do_terraform_importer.naming import NameRegistry, sanitize_name


class TestSanitizeName(unittest.TestCase):
    """Test the sanitize_name function"""

    def test_lowercases_and_replaces_spaces(self):
        self.assertEqual(sanitize_name("A B"), "a_b")

    def test_runs_are_not_collapsed(self):
        self.assertEqual(sanitize_name("A  B"), "a__b")
        self.assertEqual(sanitize_name("web--1"), "web__1")

    def test_image_style_name(self):
        self.assertEqual(sanitize_name("Ubuntu 24.04 (LTS) x64"), "ubuntu_24_04__lts__x64")

    def test_digits_are_kept(self):
        self.assertEqual(sanitize_name("203.0.113.10"), "203_0_113_10")

    def test_non_ascii_characters_become_underscores(self):
        self.assertEqual(sanitize_name("Café"), "caf_")
        self.assertEqual(sanitize_name("ÉCOLE"), "_cole")

    def test_empty_input(self):
        self.assertEqual(sanitize_name(""), "")
        self.assertEqual(sanitize_name(None), "")

    def test_idempotent(self):
        """Sanitizing an already sanitized name must not change it"""
        for name in ["web-1", "Worker 2", "Ubuntu 24.04 (LTS) x64", "pvc-abc123", "ÉCOLE"]:
            once = sanitize_name(name)
            self.assertEqual(sanitize_name(once), once)

    def test_output_alphabet(self):
        result = sanitize_name("My Droplet #3 / prod!")
        self.assertRegex(result, r'^[a-z0-9_]+$')
        self.assertEqual(len(result), len("My Droplet #3 / prod!"))


class TestNameRegistry(unittest.TestCase):
    """Test the NameRegistry class"""

    def setUp(self):
        self.registry = NameRegistry()

    def test_first_claim_keeps_name(self):
        self.assertEqual(self.registry.claim('compute', 'droplet', 'web-1', '111'), 'web_1')

    def test_collision_appends_provider_id(self):
        self.registry.claim('compute', 'droplet', 'web-1', '111')
        with self.assertLogs('do_terraform_importer.naming', level='WARNING'):
            second = self.registry.claim('compute', 'droplet', 'web_1', '222')
        self.assertEqual(second, 'web_1_222')

    def test_colliding_names_stay_distinct(self):
        names = {
            self.registry.claim('compute', 'droplet', 'web 1', '111'),
            self.registry.claim('compute', 'droplet', 'web-1', '222'),
            self.registry.claim('compute', 'droplet', 'WEB_1', '333'),
        }
        self.assertEqual(names, {'web_1', 'web_1_222', 'web_1_333'})

    def test_scopes_are_independent(self):
        self.assertEqual(self.registry.claim('compute', 'droplet', 'app', '1'), 'app')
        self.assertEqual(self.registry.claim('database', 'db', 'app', '2'), 'app')
        self.assertEqual(self.registry.claim('storage', 'volume', 'app', '3'), 'app')

    def test_empty_display_name(self):
        self.assertEqual(self.registry.claim('storage', 'volume', '', 'vol-aaa'), 'unnamed_vol_aaa')

    def test_names(self):
        self.registry.claim('network', 'firewall', 'web-fw', 'fw-1')
        self.assertEqual(self.registry.names('network', 'firewall'), {'web_fw'})
        self.assertEqual(self.registry.names('network', 'floating_ip'), set())


if __name__ == '__main__':
    unittest.main()
