#!/usr/bin/env python3
"""
Unit tests for the orchestrator and preflight checks
"""

import unittest
import sys
import os
import tempfile
import shutil
from pathlib import Path
from unittest.mock import MagicMock, Mock, patch

# Add src and test directories to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from do_terraform_importer.config import ToolConfig
from do_terraform_importer.discovery import DiscoveryError, InventoryFetcher
from do_terraform_importer.orchestrator import Orchestrator, PreflightError, check_prerequisites, unit_table_rows
from fixtures.sample_inventory import FakeDoctl, FakeStateBackend, full_responses

NO_TOKEN = {'DIGITALOCEAN_ACCESS_TOKEN': '', 'DIGITALOCEAN_TOKEN': ''}


def found(executable):
    return f"/usr/local/bin/{executable}"


class TestCheckPrerequisites(unittest.TestCase):
    """Test preflight checks"""

    def setUp(self):
        self.config = ToolConfig()

    def test_missing_doctl(self):
        with self.assertRaises(PreflightError) as cm:
            check_prerequisites(self.config, which=lambda name: None)
        self.assertIn('doctl', str(cm.exception))

    def test_missing_terraform(self):
        which = lambda name: None if name == 'terraform' else found(name)
        with self.assertRaises(PreflightError) as cm:
            check_prerequisites(self.config, which=which)
        self.assertIn('terraform', str(cm.exception))

    def test_terraform_not_required_for_generation(self):
        which = lambda name: None if name == 'terraform' else found(name)
        with patch.dict(os.environ, {'DIGITALOCEAN_ACCESS_TOKEN': 'dop_v1_test'}):
            check_prerequisites(self.config, require_terraform=False, which=which)

    @patch('do_terraform_importer.orchestrator.subprocess.run')
    def test_token_in_environment(self, mock_run):
        with patch.dict(os.environ, {'DIGITALOCEAN_ACCESS_TOKEN': 'dop_v1_test'}):
            check_prerequisites(self.config, which=found)
        mock_run.assert_not_called()

    @patch('do_terraform_importer.orchestrator.subprocess.run')
    def test_doctl_auth_context(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout='{"email": "ops@example.com"}', stderr='')
        self.config.discovery.context = 'staging'

        with patch.dict(os.environ, NO_TOKEN):
            check_prerequisites(self.config, which=found)

        self.assertEqual(mock_run.call_args[0][0],
                         ['doctl', 'account', 'get', '--output', 'json', '--context', 'staging'])

    @patch('do_terraform_importer.orchestrator.subprocess.run')
    def test_no_credentials(self, mock_run):
        mock_run.return_value = Mock(returncode=1, stdout='', stderr='Error: Unable to initialize DigitalOcean API client')

        with patch.dict(os.environ, NO_TOKEN):
            with self.assertRaises(PreflightError) as cm:
                check_prerequisites(self.config, which=found)
        self.assertIn('doctl auth init', str(cm.exception))


class TestOrchestrator(unittest.TestCase):
    """Test the Orchestrator class"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = ToolConfig()
        self.config.output.output_directory = self.temp_dir

        self.fake_doctl = FakeDoctl(full_responses())
        patcher = patch('do_terraform_importer.discovery.subprocess.run', side_effect=self.fake_doctl)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_generate_only(self):
        backend = FakeStateBackend()
        orchestrator = Orchestrator(self.config, backend=backend)
        result = orchestrator.run(import_resources=False)

        self.assertTrue(result['success'])
        self.assertEqual(result['resources_discovered'], 13)
        self.assertEqual(result['units_generated'], 12)
        self.assertEqual(result['excluded'], ['pvc-abc123', 'pvc-abc123-backup'])
        self.assertIsNone(result['import_summary'])
        self.assertEqual(backend.list_calls, 0)
        self.assertTrue(Path(self.temp_dir, 'main.tf').exists())

    def test_full_run(self):
        backend = FakeStateBackend()
        result = Orchestrator(self.config, backend=backend).run()

        summary = result['import_summary']
        self.assertEqual(summary.imported, 10)
        self.assertEqual(summary.failed, 0)
        self.assertEqual(result['warnings'], [])

    def test_init_and_backup_before_import(self):
        backend = MagicMock()
        backend.list_addresses.return_value = set()
        Orchestrator(self.config, backend=backend).run()

        backend.init.assert_called_once_with()
        backend.backup_state.assert_called_once_with()
        self.assertEqual(backend.bind.call_count, 10)

    def test_dry_run_skips_init(self):
        backend = MagicMock()
        backend.list_addresses.return_value = set()
        result = Orchestrator(self.config, backend=backend).run(dry_run=True)

        backend.init.assert_not_called()
        backend.bind.assert_not_called()
        self.assertEqual(result['import_summary'].planned, 10)

    def test_skip_init(self):
        self.config.imports.run_init = False
        backend = MagicMock()
        backend.list_addresses.return_value = set()
        Orchestrator(self.config, backend=backend).run()

        backend.init.assert_not_called()

    def test_discovery_failure_writes_nothing(self):
        self.fake_doctl.failures['compute volume list'] = 'Error: GET https://api.digitalocean.com/v2/volumes: 503'

        with self.assertRaises(DiscoveryError):
            Orchestrator(self.config, backend=FakeStateBackend()).run()
        self.assertEqual(os.listdir(self.temp_dir), [])

    def test_export_inventory(self):
        self.config.output.export_inventory = True
        self.config.output.export_format = 'yaml'
        Orchestrator(self.config, backend=FakeStateBackend()).run(import_resources=False)

        self.assertTrue(Path(self.temp_dir, 'inventory.yaml').exists())

    def test_exit_code(self):
        compute = 'module.compute.digitalocean_droplet.droplet_web_1'
        orchestrator = Orchestrator(self.config, backend=FakeStateBackend(rejected={compute: 'boom'}))
        result = orchestrator.run()

        self.assertEqual(result['import_summary'].failed, 1)
        self.assertEqual(result['warnings'], ['compute.droplet.web_1: boom'])
        self.assertEqual(orchestrator.exit_code(result), 2)

        self.config.imports.fail_on_warnings = False
        self.assertEqual(orchestrator.exit_code(result), 0)

    def test_custom_fetcher(self):
        fetcher = InventoryFetcher(kinds=['droplet'])
        result = Orchestrator(self.config, fetcher=fetcher, backend=FakeStateBackend()).run()

        self.assertEqual(result['units_generated'], 4)
        self.assertEqual(self.fake_doctl.calls, ['compute ssh-key list', 'compute droplet list'])
        self.assertEqual(result['model'].categories, ['compute'])

    def test_unit_table_rows(self):
        result = Orchestrator(self.config, backend=FakeStateBackend()).run(import_resources=False)
        rows = unit_table_rows(result['model'])

        self.assertEqual(len(rows), 12)
        self.assertIn(['compute.droplet.web_1', 'digitalocean_droplet', '111', 'web-1'], rows)
        self.assertIn(['compute.key.deploy41001', 'digitalocean_ssh_key', '-', 'deploy'], rows)


if __name__ == '__main__':
    unittest.main()
