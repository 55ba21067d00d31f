#!/usr/bin/env python3
"""
Orchestration Controller

This module coordinates a reconciliation run: preflight checks, inventory
discovery, conversion, writing the Terraform tree, and importing unbound units.

Discovery, preflight and state failures abort the run. Individual import
failures are collected as warnings and the run continues.
"""

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import ToolConfig
from .conversion import BuildModel, ConversionEngine
from .discovery import InventoryFetcher
from .imports import ImportSummary, StateImporter, TerraformStateBackend
from .modules import ModuleWriter

logger = logging.getLogger(__name__)

TOKEN_ENV_VARS = ('DIGITALOCEAN_ACCESS_TOKEN', 'DIGITALOCEAN_TOKEN')


class PreflightError(Exception):
    """Raised when a required tool or credential is missing"""


def check_prerequisites(config: ToolConfig, require_terraform: bool = True,
                        which: Callable[[str], Optional[str]] = shutil.which):
    """
    Verify external tools and credentials before anything is written

    Raises:
        PreflightError: with an actionable message for the first missing item
    """
    doctl = config.discovery.doctl_path
    if not which(doctl):
        raise PreflightError(
            f"doctl command not found ({doctl}). Install the DigitalOcean CLI first: "
            "https://docs.digitalocean.com/reference/doctl/how-to/install/"
        )

    if require_terraform and not which(config.imports.terraform_path):
        raise PreflightError(
            f"terraform command not found ({config.imports.terraform_path}). "
            "Install Terraform first: https://developer.hashicorp.com/terraform/install"
        )

    if any(os.getenv(var) for var in TOKEN_ENV_VARS):
        return

    command = [doctl, 'account', 'get', '--output', 'json']
    if config.discovery.context:
        command += ['--context', config.discovery.context]
    try:
        process = subprocess.run(command, capture_output=True, text=True,
                                 timeout=config.discovery.command_timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise PreflightError(f"Could not verify DigitalOcean credentials: {str(e)}")

    if process.returncode != 0:
        raise PreflightError(
            "No DigitalOcean credentials found. Set DIGITALOCEAN_ACCESS_TOKEN "
            "or run 'doctl auth init'."
        )


class Orchestrator:
    """
    Main orchestration controller

    Runs the pipeline strictly sequentially. The whole configuration tree is
    built in memory before the first file is written.
    """

    def __init__(self, config: ToolConfig, fetcher: Optional[InventoryFetcher] = None,
                 backend: Optional[Any] = None):
        """
        Initialize the orchestrator

        Args:
            config: Tool configuration object
            fetcher: Inventory fetcher (built from config when omitted)
            backend: Tracked-state backend (a TerraformStateBackend when omitted)
        """
        self.config = config

        self.fetcher = fetcher or InventoryFetcher(
            doctl_path=config.discovery.doctl_path,
            context=config.discovery.context,
            kinds=config.discovery.kinds,
            timeout=config.discovery.command_timeout
        )

        self.conversion_engine = ConversionEngine(
            excluded_volume_prefixes=config.emit.excluded_volume_prefixes,
            ignore_changes=config.emit.ignore_changes
        )

        self.module_writer = ModuleWriter(
            provider_version=config.emit.provider_version,
            terraform_version=config.emit.terraform_version,
            default_region=config.emit.default_region,
            environment=config.emit.environment,
            overwrite_existing=config.output.overwrite_existing
        )

        self.backend = backend

        logger.info("Initialized Orchestrator with all components")

    def run(self, dry_run: bool = False, import_resources: bool = True) -> Dict[str, Any]:
        """
        Run a reconciliation

        Args:
            dry_run: Write configuration but only log the imports that would run
            import_resources: Whether to run the import phase at all

        Returns:
            Dictionary with run results and statistics
        """
        logger.info("Starting DigitalOcean to Terraform reconciliation")
        start_time = time.time()
        output_dir = self.config.output.output_directory

        result = {
            'success': False,
            'output_directory': output_dir,
            'resources_discovered': 0,
            'units_generated': 0,
            'excluded': [],
            'files_count': 0,
            'import_summary': None,
            'warnings': [],
        }

        # Phase 1: Discovery (fail fast)
        logger.info("Phase 1: Discovering DigitalOcean resources")
        inventory = self.fetcher.fetch_all()
        result['resources_discovered'] = sum(len(r) for r in inventory.values())

        if self.config.output.export_inventory:
            Path(output_dir).mkdir(parents=True, exist_ok=True)
            export_file = os.path.join(output_dir, f"inventory.{self.config.output.export_format}")
            self.fetcher.export_inventory(export_file, self.config.output.export_format)

        # Phase 2: Conversion
        logger.info("Phase 2: Building Terraform configuration")
        model = self.conversion_engine.convert(inventory, categories=self.fetcher.categories)
        result['units_generated'] = len(model.all_units())
        result['excluded'] = [r.display_name for r in model.excluded]
        result['model'] = model

        # Phase 3: Write once
        logger.info("Phase 3: Writing Terraform modules")
        write_result = self.module_writer.write(model, output_dir)
        result['files_count'] = write_result.files_count
        result['warnings'].extend(f"Skipped hand-written file {p}" for p in write_result.files_skipped)

        # Phase 4: Import
        if import_resources:
            logger.info("Phase 4: Importing resources into Terraform state")
            summary = self._run_import_phase(model, dry_run)
            result['import_summary'] = summary
            result['warnings'].extend(summary.warnings)

        result['success'] = True
        result['total_time'] = time.time() - start_time
        logger.info(f"Reconciliation completed in {result['total_time']:.2f} seconds")
        return result

    def _run_import_phase(self, model: BuildModel, dry_run: bool) -> ImportSummary:
        backend = self.backend
        if backend is None:
            backend = TerraformStateBackend(
                terraform_dir=self.config.output.output_directory,
                terraform_path=self.config.imports.terraform_path,
                timeout=self.config.imports.command_timeout,
                create_backup=self.config.imports.create_backup
            )

        if not dry_run:
            if self.config.imports.run_init and hasattr(backend, 'init'):
                backend.init()
            if hasattr(backend, 'backup_state'):
                backend.backup_state()

        importer = StateImporter(backend, dry_run=dry_run)
        return importer.import_model(model)

    def exit_code(self, result: Dict[str, Any]) -> int:
        """0 on success, 2 when imports failed and failures are not allowed"""
        summary: Optional[ImportSummary] = result.get('import_summary')
        if summary and summary.failed and self.config.imports.fail_on_warnings:
            return 2
        return 0


def unit_table_rows(model: BuildModel) -> List[List[str]]:
    """Rows describing every unit of a build model, for tabular display"""
    return [
        [unit.address, unit.resource_type, unit.provider_id or '-', unit.display_name]
        for unit in model.all_units()
    ]
