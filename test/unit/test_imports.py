#!/usr/bin/env python3
"""
Unit tests for the state importer
"""

import unittest
import sys
import os
import subprocess
import tempfile
import shutil
from pathlib import Path
from unittest.mock import Mock, patch

# Add src and test directories to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from do_terraform_importer.conversion import ConversionEngine
from do_terraform_importer.discovery import InventoryRecord, ResourceKind
from do_terraform_importer.imports import (
    BindError, ImportSummary, StateError, StateImporter, TerraformStateBackend
)
from fixtures.sample_inventory import FakeStateBackend

WEB_1 = 'module.compute.digitalocean_droplet.droplet_web_1'
WORKER = 'module.compute.digitalocean_droplet.droplet_worker'
FIP = 'module.network.digitalocean_floating_ip.floating_ip_203_0_113_10'


def build_model():
    inventory = {
        ResourceKind.SSH_KEY: [
            InventoryRecord(kind=ResourceKind.SSH_KEY, provider_id="41001", display_name="deploy")
        ],
        ResourceKind.COMPUTE: [
            InventoryRecord(kind=ResourceKind.COMPUTE, provider_id="111", display_name="web-1",
                            attributes={'region': 'sgp1', 'size': 's-1vcpu-1gb', 'image': 'debian-12-x64'}),
            InventoryRecord(kind=ResourceKind.COMPUTE, provider_id="222", display_name="worker",
                            attributes={'region': 'sgp1', 'size': 's-1vcpu-1gb', 'image': 'debian-12-x64'}),
        ],
        ResourceKind.FLOATING_IP: [
            InventoryRecord(kind=ResourceKind.FLOATING_IP, provider_id="203.0.113.10", display_name="203.0.113.10",
                            attributes={'region': 'sgp1', 'droplet_id': None}),
        ],
    }
    return ConversionEngine().convert(inventory)


class TestStateImporter(unittest.TestCase):
    """Test the per-unit import state machine"""

    def setUp(self):
        self.model = build_model()

    def test_imports_unbound_units(self):
        backend = FakeStateBackend()
        summary = StateImporter(backend).import_model(self.model)

        self.assertEqual(backend.bind_calls, [(WEB_1, '111'), (WORKER, '222'), (FIP, '203.0.113.10')])
        self.assertEqual(summary.imported, 3)
        self.assertEqual(summary.failed, 0)

    def test_data_sources_are_never_imported(self):
        backend = FakeStateBackend()
        StateImporter(backend).import_model(self.model)

        self.assertFalse(any('ssh_key' in address for address, _ in backend.bind_calls))

    def test_bound_units_are_skipped(self):
        backend = FakeStateBackend(addresses=[WEB_1])
        summary = StateImporter(backend).import_model(self.model)

        self.assertNotIn((WEB_1, '111'), backend.bind_calls)
        self.assertEqual(summary.skipped, 1)
        self.assertEqual(summary.imported, 2)

    def test_second_run_binds_nothing(self):
        backend = FakeStateBackend()
        StateImporter(backend).import_model(self.model)
        backend.bind_calls.clear()

        summary = StateImporter(backend).import_model(build_model())

        self.assertEqual(backend.bind_calls, [])
        self.assertEqual(summary.skipped, 3)

    def test_state_is_listed_once(self):
        backend = FakeStateBackend()
        StateImporter(backend).import_model(self.model)

        self.assertEqual(backend.list_calls, 1)

    def test_failed_import_does_not_stop_the_run(self):
        backend = FakeStateBackend(rejected={WEB_1: 'Error: Cannot import non-existent remote object'})

        with self.assertLogs('do_terraform_importer.imports', level='WARNING') as logs:
            summary = StateImporter(backend).import_model(self.model)

        self.assertEqual(summary.failed, 1)
        self.assertEqual(summary.imported, 2)
        self.assertIn((FIP, '203.0.113.10'), backend.bind_calls)
        self.assertTrue(any('WARN:' in line and WEB_1 in line for line in logs.output))
        self.assertEqual(summary.warnings, ['compute.droplet.web_1: Error: Cannot import non-existent remote object'])

    def test_dry_run(self):
        backend = FakeStateBackend(addresses=[WORKER])
        summary = StateImporter(backend, dry_run=True).import_model(self.model)

        self.assertEqual(backend.bind_calls, [])
        self.assertEqual(summary.planned, 2)
        self.assertEqual(summary.skipped, 1)

    def test_summary_report(self):
        backend = FakeStateBackend(rejected={WORKER: 'boom'})
        summary = StateImporter(backend).import_model(self.model)
        report = StateImporter.get_import_summary_report(summary)

        self.assertIn('Imported: 2', report)
        self.assertIn('Failed: 1', report)
        self.assertIn('WARN compute.droplet.worker: boom', report)

    def test_empty_summary(self):
        summary = ImportSummary()
        self.assertEqual(summary.warnings, [])
        self.assertIn('Units considered: 0', StateImporter.get_import_summary_report(summary))


class TestTerraformStateBackend(unittest.TestCase):
    """Test the terraform CLI backed state"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.backend = TerraformStateBackend(self.temp_dir, terraform_path='terraform')

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_missing_directory(self):
        with self.assertRaises(ValueError):
            TerraformStateBackend(os.path.join(self.temp_dir, 'missing'))

    @patch('do_terraform_importer.imports.subprocess.run')
    def test_list_addresses(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout=f"{WEB_1}\n{FIP}\n\n", stderr='')

        self.assertEqual(self.backend.list_addresses(), {WEB_1, FIP})
        self.assertEqual(mock_run.call_args[0][0], ['terraform', 'state', 'list'])
        self.assertEqual(mock_run.call_args[1]['cwd'], Path(self.temp_dir).resolve())

    @patch('do_terraform_importer.imports.subprocess.run')
    def test_no_state_file_is_empty(self, mock_run):
        mock_run.return_value = Mock(returncode=1, stdout='', stderr='No state file was found!')
        self.assertEqual(self.backend.list_addresses(), set())

    @patch('do_terraform_importer.imports.subprocess.run')
    def test_list_failure_raises(self, mock_run):
        mock_run.return_value = Mock(returncode=1, stdout='', stderr='Error: Backend initialization required')
        with self.assertRaises(StateError):
            self.backend.list_addresses()

    @patch('do_terraform_importer.imports.subprocess.run')
    def test_bind(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout='Import successful!', stderr='')
        self.backend.bind(WEB_1, '111')

        self.assertEqual(mock_run.call_args[0][0],
                         ['terraform', 'import', '-input=false', '-no-color', WEB_1, '111'])

    @patch('do_terraform_importer.imports.subprocess.run')
    def test_bind_failure(self, mock_run):
        mock_run.return_value = Mock(returncode=1, stdout='', stderr='Error: Resource already managed by Terraform')
        with self.assertRaises(BindError) as cm:
            self.backend.bind(WEB_1, '111')
        self.assertIn('already managed', str(cm.exception))

    @patch('do_terraform_importer.imports.subprocess.run')
    def test_bind_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd='terraform', timeout=30)
        backend = TerraformStateBackend(self.temp_dir, timeout=30)

        with self.assertRaises(BindError) as cm:
            backend.bind(WEB_1, '111')
        self.assertIn('timed out', str(cm.exception))

    @patch('do_terraform_importer.imports.subprocess.run')
    def test_missing_executable(self, mock_run):
        mock_run.side_effect = FileNotFoundError()
        with self.assertRaises(StateError):
            self.backend.list_addresses()

    @patch('do_terraform_importer.imports.subprocess.run')
    def test_init_failure(self, mock_run):
        mock_run.return_value = Mock(returncode=1, stdout='', stderr='Error: Failed to query available provider packages')
        with self.assertRaises(StateError):
            self.backend.init()

    def test_backup_state(self):
        Path(self.temp_dir, 'terraform.tfstate').write_text('{"version": 4}')
        self.backend.backup_state()

        backups = list(Path(self.temp_dir, 'state_backups').iterdir())
        self.assertEqual(len(backups), 1)
        self.assertTrue(backups[0].name.startswith('terraform.tfstate.'))

    def test_backup_disabled(self):
        Path(self.temp_dir, 'terraform.tfstate').write_text('{"version": 4}')
        TerraformStateBackend(self.temp_dir, create_backup=False).backup_state()

        self.assertFalse(Path(self.temp_dir, 'state_backups').exists())


if __name__ == '__main__':
    unittest.main()
