#!/usr/bin/env python3
"""
Command Line Interface for the DigitalOcean to Terraform Importer

Exit codes: 0 on success, 1 when the run aborted (missing tool or credential,
discovery or state failure, invalid configuration), 2 when the run completed
but one or more imports failed.
"""

import json
import logging
import logging.handlers
import os
import sys
from typing import Any, Dict

import click
import yaml
from tabulate import tabulate

from . import __version__
from .config import DEFAULT_CONFIG_TEMPLATE, ConfigManager, LoggingConfig, ToolConfig
from .discovery import DiscoveryError, InventoryFetcher
from .imports import StateError, StateImporter
from .orchestrator import Orchestrator, PreflightError, check_prerequisites, unit_table_rows

logger = logging.getLogger(__name__)

SYSTEMIC_ERRORS = (PreflightError, DiscoveryError, StateError, ValueError, OSError)


def setup_logging(logging_config: LoggingConfig):
    """Configure the root logger from the logging section of the configuration"""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(logging_config.format)
    root.setLevel(getattr(logging, logging_config.level))

    if logging_config.console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        root.addHandler(console)

    if logging_config.file:
        file_handler = logging.handlers.RotatingFileHandler(
            logging_config.file,
            maxBytes=logging_config.max_file_size,
            backupCount=logging_config.backup_count
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def _load_config(ctx, **cli_args) -> ToolConfig:
    cli_args['verbose'] = ctx.obj.get('verbose', False)
    cli_args['quiet'] = ctx.obj.get('quiet', False)

    config_manager = ConfigManager()
    config = config_manager.load_config(
        config_file=ctx.obj.get('config_file'),
        cli_args=cli_args
    )
    setup_logging(config.logging)
    return config


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True,
              help='Enable verbose logging')
@click.option('--quiet', '-q', is_flag=True,
              help='Enable quiet mode (warnings and errors only)')
@click.pass_context
def cli(ctx, config, verbose, quiet):
    """
    DigitalOcean to Terraform Importer

    Discovers existing DigitalOcean resources, generates matching Terraform
    modules, and imports them into Terraform state.
    """
    ctx.ensure_object(dict)
    ctx.obj['config_file'] = config
    ctx.obj['verbose'] = verbose
    ctx.obj['quiet'] = quiet


@cli.command()
@click.option('--context', help='doctl authentication context')
@click.option('--kind', 'kinds', multiple=True,
              type=click.Choice(['ssh_key', 'droplet', 'database', 'firewall',
                                 'floating_ip', 'volume', 'snapshot']),
              help='Resource kind to discover (can be specified multiple times)')
@click.option('--output-file', '-o', default='inventory.json',
              help='Output file for the inventory')
@click.option('--format', 'output_format', type=click.Choice(['json', 'yaml', 'table']),
              default='table', help='Output format')
@click.pass_context
def discover(ctx, context, kinds, output_file, output_format):
    """
    Discover DigitalOcean resources

    Lists every supported resource through doctl without generating or
    importing anything.
    """
    try:
        config = _load_config(ctx, context=context, kinds=kinds)
        check_prerequisites(config, require_terraform=False)

        fetcher = InventoryFetcher(
            doctl_path=config.discovery.doctl_path,
            context=config.discovery.context,
            kinds=config.discovery.kinds,
            timeout=config.discovery.command_timeout
        )
        inventory = fetcher.fetch_all()
    except SYSTEMIC_ERRORS as e:
        _fail(f"Discovery failed: {str(e)}")

    summary = fetcher.get_inventory_summary()
    click.echo(f"\nDiscovery completed: {summary['total_resources']} resources")

    if output_format == 'table':
        rows = [[kind, count] for kind, count in summary['resource_kinds'].items()]
        click.echo(tabulate(rows, headers=['Kind', 'Count'], tablefmt='grid'))

        detail = [
            [record.kind.value, record.provider_id, record.display_name]
            for records in inventory.values() for record in records
        ]
        if detail:
            click.echo(tabulate(detail, headers=['Kind', 'ID', 'Name'], tablefmt='grid'))
    else:
        fetcher.export_inventory(output_file, output_format)
        click.echo(f"Inventory exported to: {output_file}")


@cli.command()
@click.option('--output-dir', '-o', help='Terraform working directory to write')
@click.option('--region', help='Default region for generated variables')
@click.option('--context', help='doctl authentication context')
@click.option('--overwrite', is_flag=True,
              help='Overwrite existing files that were not generated by this tool')
@click.pass_context
def generate(ctx, output_dir, region, context, overwrite):
    """
    Generate Terraform configuration without importing

    Discovers resources and writes the compute, database, network and storage
    modules plus the root module.
    """
    try:
        config = _load_config(ctx, output_dir=output_dir, region=region,
                              context=context, overwrite=overwrite)
        check_prerequisites(config, require_terraform=False)

        orchestrator = Orchestrator(config)
        result = orchestrator.run(import_resources=False)
    except SYSTEMIC_ERRORS as e:
        _fail(f"Generation failed: {str(e)}")

    _display_build(result)


@cli.command()
@click.option('--output-dir', '-o', help='Terraform working directory')
@click.option('--region', help='Default region for generated variables')
@click.option('--context', help='doctl authentication context')
@click.option('--overwrite', is_flag=True,
              help='Overwrite existing files that were not generated by this tool')
@click.option('--dry-run', is_flag=True,
              help='Write configuration but only show the imports that would run')
@click.option('--skip-init', is_flag=True,
              help='Do not run terraform init before importing')
@click.option('--allow-failed-imports', is_flag=True,
              help='Exit with status 0 even when some imports failed')
@click.pass_context
def reconcile(ctx, output_dir, region, context, overwrite, dry_run, skip_init, allow_failed_imports):
    """
    Discover, generate and import

    Runs the full pipeline. Resources already present in Terraform state are
    skipped, so the command can be re-run safely.
    """
    try:
        config = _load_config(ctx, output_dir=output_dir, region=region, context=context,
                              overwrite=overwrite, skip_init=skip_init,
                              allow_failed_imports=allow_failed_imports)
        check_prerequisites(config)

        orchestrator = Orchestrator(config)
        result = orchestrator.run(dry_run=dry_run)
    except SYSTEMIC_ERRORS as e:
        _fail(f"Reconciliation failed: {str(e)}")

    _display_build(result)

    summary = result['import_summary']
    click.echo("")
    click.echo(StateImporter.get_import_summary_report(summary))

    exit_code = orchestrator.exit_code(result)
    if summary.failed:
        click.echo("Some imports failed. Review the WARN lines above.", err=True)
    if exit_code:
        sys.exit(exit_code)

    if not dry_run:
        click.echo("Next steps:")
        click.echo("   1. Review the generated configuration files in each module directory")
        click.echo("   2. Run 'terraform plan' to check for differences")
        click.echo("   3. Adjust the configuration where the plan shows drift")


@cli.command()
@click.option('--output-file', '-o', default='do2tf-config.yaml',
              help='Output configuration file')
@click.option('--format', 'config_format', type=click.Choice(['yaml', 'json']),
              default='yaml', help='Configuration file format')
def init_config(output_file, config_format):
    """Generate a default configuration file"""
    if os.path.exists(output_file):
        if not click.confirm(f"Configuration file {output_file} already exists. Overwrite?"):
            click.echo("Configuration file creation cancelled.")
            return

    try:
        with open(output_file, 'w') as f:
            if config_format == 'yaml':
                f.write(DEFAULT_CONFIG_TEMPLATE)
            else:
                json.dump(yaml.safe_load(DEFAULT_CONFIG_TEMPLATE), f, indent=2)
    except OSError as e:
        _fail(f"Failed to create configuration file: {str(e)}")

    click.echo(f"Default configuration file created: {output_file}")


@cli.command()
@click.pass_context
def validate_config(ctx):
    """Validate the configuration file"""
    config_manager = ConfigManager()
    try:
        config_manager.load_config(config_file=ctx.obj.get('config_file'))
    except ValueError as e:
        _fail(f"Configuration validation failed: {str(e)}")

    click.echo("Configuration validation passed!")
    rows = [[key, value] for key, value in config_manager.get_config_summary().items()]
    click.echo(tabulate(rows, headers=['Setting', 'Value'], tablefmt='grid'))


def _display_build(result: Dict[str, Any]):
    click.echo(f"\nResources discovered: {result['resources_discovered']}")
    click.echo(f"Configuration units: {result['units_generated']}")
    click.echo(f"Files written: {result['files_count']}")
    click.echo(f"Output directory: {result['output_directory']}")

    for name in result['excluded']:
        click.echo(f"Excluded (externally managed): {name}")

    rows = unit_table_rows(result['model'])
    if rows:
        click.echo(tabulate(rows, headers=['Address', 'Type', 'ID', 'Name'], tablefmt='grid'))


def main():
    """Main entry point for the CLI"""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user.", err=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
