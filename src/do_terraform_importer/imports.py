#!/usr/bin/env python3
"""
Terraform State Import

This module binds generated configuration units to live DigitalOcean resources
with ``terraform import``. Every unit is checked against the tracked state first:
units already bound are skipped, so the import phase can be re-run safely. A
failing import is reported as a warning and never stops the remaining imports.
"""

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .conversion import BuildModel, ConfigUnit
from .linking import CATEGORY_ORDER

logger = logging.getLogger(__name__)


class StateError(Exception):
    """Raised when the tracked state cannot be read or initialized"""


class BindError(Exception):
    """Raised when a single import is rejected by the state backend"""


@dataclass(frozen=True)
class ImportBinding:
    """Association between a unit's address and a provider id"""
    address: str
    terraform_address: str
    provider_id: str

    @classmethod
    def for_unit(cls, unit: ConfigUnit) -> "ImportBinding":
        return cls(
            address=unit.address,
            terraform_address=unit.terraform_address,
            provider_id=unit.provider_id,
        )


@dataclass
class ImportResult:
    """Result of processing one unit"""
    binding: ImportBinding
    status: str  # imported, skipped, failed, planned
    error_message: Optional[str] = None
    execution_time: float = 0.0

    @property
    def success(self) -> bool:
        return self.status != 'failed'


@dataclass
class ImportSummary:
    """Summary of import operations"""
    total_units: int = 0
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    planned: int = 0
    total_time: float = 0.0
    results: List[ImportResult] = field(default_factory=list)

    @property
    def warnings(self) -> List[str]:
        return [
            f"{r.binding.address}: {r.error_message}"
            for r in self.results if r.status == 'failed'
        ]


class TerraformStateBackend:
    """
    Tracked state backed by the terraform CLI

    Runs ``terraform state list`` and ``terraform import`` in the generated
    working directory.
    """

    NO_STATE_MARKERS = ('No state file was found', 'no state file')

    def __init__(self, terraform_dir: str, terraform_path: str = "terraform",
                 timeout: Optional[int] = None, create_backup: bool = True):
        """
        Initialize the backend

        Args:
            terraform_dir: Terraform working directory (root module)
            terraform_path: terraform executable to invoke
            timeout: Per-command timeout in seconds, None for no timeout
            create_backup: Whether to back up local state files before importing
        """
        self.terraform_dir = Path(terraform_dir).resolve()
        self.terraform_path = terraform_path
        self.timeout = timeout
        self.create_backup = create_backup

        if not self.terraform_dir.exists():
            raise ValueError(f"Terraform directory does not exist: {terraform_dir}")

    def init(self):
        logger.info("Initializing Terraform")
        result = self._execute_terraform_command(['init', '-input=false', '-no-color'])
        if result['returncode'] != 0:
            raise StateError(f"terraform init failed: {result['stderr'].strip()}")

    def list_addresses(self) -> Set[str]:
        result = self._execute_terraform_command(['state', 'list'])
        if result['returncode'] != 0:
            if any(marker in result['stderr'] for marker in self.NO_STATE_MARKERS):
                return set()
            raise StateError(f"terraform state list failed: {result['stderr'].strip()}")
        return {line.strip() for line in result['stdout'].splitlines() if line.strip()}

    def bind(self, address: str, provider_id: str):
        result = self._execute_terraform_command(
            ['import', '-input=false', '-no-color', address, provider_id]
        )
        if result['returncode'] != 0:
            raise BindError(result['stderr'].strip() or f"terraform import exited with {result['returncode']}")

    def backup_state(self):
        """Create backup of local Terraform state files"""
        if not self.create_backup:
            return

        state_files = ['terraform.tfstate', 'terraform.tfstate.backup']
        timestamp = time.strftime('%Y%m%d_%H%M%S')
        backup_dir = self.terraform_dir / 'state_backups'

        for state_file in state_files:
            state_path = self.terraform_dir / state_file
            if state_path.exists():
                backup_dir.mkdir(exist_ok=True)
                backup_path = backup_dir / f"{state_file}.{timestamp}"
                shutil.copy2(state_path, backup_path)
                logger.info(f"Created state backup: {backup_path}")

    def _execute_terraform_command(self, args: List[str]) -> Dict[str, Any]:
        """Execute a Terraform command and return results"""
        command = [self.terraform_path] + args
        logger.debug(f"Running: {' '.join(command)}")

        try:
            process = subprocess.run(
                command,
                cwd=self.terraform_dir,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except FileNotFoundError:
            raise StateError(f"terraform executable not found: {self.terraform_path}")
        except subprocess.TimeoutExpired:
            return {
                'returncode': -1,
                'stdout': '',
                'stderr': f"Command timed out after {self.timeout} seconds: {' '.join(command)}",
            }

        return {
            'returncode': process.returncode,
            'stdout': process.stdout,
            'stderr': process.stderr,
        }


class StateImporter:
    """
    Per-unit Unbound -> Bound state machine

    The backend must provide ``list_addresses()`` and ``bind(address, provider_id)``.
    Bound addresses are read once per run and updated as binds succeed; runs are
    single-threaded so no further locking is needed.
    """

    def __init__(self, backend, dry_run: bool = False):
        self.backend = backend
        self.dry_run = dry_run
        self._bound: Optional[Set[str]] = None

    def bound_addresses(self) -> Set[str]:
        if self._bound is None:
            self._bound = set(self.backend.list_addresses())
            logger.info(f"Tracked state holds {len(self._bound)} addresses")
        return self._bound

    def import_model(self, model: BuildModel) -> ImportSummary:
        """Import every importable unit, category by category"""
        units = []
        for category in CATEGORY_ORDER:
            units.extend(model.modules[category].importable_units())
        return self.import_units(units)

    def import_units(self, units: List[ConfigUnit]) -> ImportSummary:
        summary = ImportSummary()
        start_time = time.time()

        for unit in units:
            if not unit.importable:
                continue
            result = self.import_unit(unit)
            summary.results.append(result)
            summary.total_units += 1
            if result.status == 'imported':
                summary.imported += 1
            elif result.status == 'skipped':
                summary.skipped += 1
            elif result.status == 'planned':
                summary.planned += 1
            else:
                summary.failed += 1

        summary.total_time = time.time() - start_time
        logger.info(
            f"Import phase completed: {summary.imported} imported, {summary.skipped} already bound, "
            f"{summary.failed} failed"
        )
        return summary

    def import_unit(self, unit: ConfigUnit) -> ImportResult:
        binding = ImportBinding.for_unit(unit)
        bound = self.bound_addresses()

        if binding.terraform_address in bound:
            logger.info(f"Already imported, skipping: {binding.terraform_address}")
            return ImportResult(binding=binding, status='skipped')

        if self.dry_run:
            logger.info(f"Would import {binding.terraform_address} <- {binding.provider_id}")
            return ImportResult(binding=binding, status='planned')

        logger.info(f"Importing {unit.label}: {unit.display_name} (ID: {binding.provider_id})")
        start_time = time.time()
        try:
            self.backend.bind(binding.terraform_address, binding.provider_id)
        except BindError as e:
            logger.warning(f"WARN: failed to import {binding.terraform_address} (ID: {binding.provider_id}): {str(e)}")
            return ImportResult(
                binding=binding,
                status='failed',
                error_message=str(e),
                execution_time=time.time() - start_time
            )

        bound.add(binding.terraform_address)
        return ImportResult(binding=binding, status='imported', execution_time=time.time() - start_time)

    @staticmethod
    def get_import_summary_report(summary: ImportSummary) -> str:
        """Generate a formatted report of import operations"""
        report_lines = [
            "Terraform Import Summary Report",
            "=" * 40,
            f"Units considered: {summary.total_units}",
            f"Imported: {summary.imported}",
            f"Already bound: {summary.skipped}",
            f"Failed: {summary.failed}",
        ]
        if summary.planned:
            report_lines.append(f"Planned (dry run): {summary.planned}")
        report_lines.extend([
            f"Total execution time: {summary.total_time:.2f} seconds",
            ""
        ])

        if summary.failed > 0:
            report_lines.extend([
                "Failed Imports:",
                "-" * 20
            ])
            for warning in summary.warnings:
                report_lines.append(f"  WARN {warning}")
            report_lines.append("")

        return '\n'.join(report_lines)
