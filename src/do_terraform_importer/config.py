#!/usr/bin/env python3
"""
Configuration Management Module

This module handles configuration loading, validation, and management for the
DigitalOcean to Terraform importer.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from jsonschema import ValidationError, validate

logger = logging.getLogger(__name__)

ALL_KINDS = ['ssh_key', 'droplet', 'database', 'firewall', 'floating_ip', 'volume', 'snapshot']


@dataclass
class DiscoveryConfig:
    """Configuration for inventory discovery"""
    doctl_path: str = "doctl"
    context: Optional[str] = None
    kinds: List[str] = field(default_factory=lambda: list(ALL_KINDS))
    command_timeout: Optional[int] = None


@dataclass
class EmitConfig:
    """Configuration for Terraform configuration generation"""
    provider_version: str = "2.50.0"
    terraform_version: str = ">= 1.0"
    default_region: str = "fra1"
    environment: str = "production"
    excluded_volume_prefixes: List[str] = field(default_factory=lambda: ['pvc-'])
    ignore_changes: List[str] = field(default_factory=lambda: ['ssh_keys', 'backups'])


@dataclass
class ImportConfig:
    """Configuration for Terraform import operations"""
    terraform_path: str = "terraform"
    run_init: bool = True
    create_backup: bool = True
    fail_on_warnings: bool = True
    command_timeout: Optional[int] = None


@dataclass
class OutputConfig:
    """Configuration for output generation"""
    output_directory: str = "./terraform"
    overwrite_existing: bool = False
    export_inventory: bool = False
    export_format: str = "json"  # json, yaml


@dataclass
class LoggingConfig:
    """Configuration for logging"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    console: bool = True
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5


@dataclass
class ToolConfig:
    """Main configuration class for the importer"""
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    emit: EmitConfig = field(default_factory=EmitConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class ConfigManager:
    """Configuration manager for the importer"""

    CONFIG_SCHEMA = {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "discovery": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "doctl_path": {"type": "string", "minLength": 1},
                    "context": {"type": ["string", "null"]},
                    "kinds": {
                        "type": "array",
                        "items": {"type": "string", "enum": ALL_KINDS},
                        "uniqueItems": True
                    },
                    "command_timeout": {"type": ["integer", "null"], "minimum": 1}
                }
            },
            "emit": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "provider_version": {"type": "string", "minLength": 1},
                    "terraform_version": {"type": "string", "minLength": 1},
                    "default_region": {"type": "string", "minLength": 1},
                    "environment": {"type": "string"},
                    "excluded_volume_prefixes": {"type": "array", "items": {"type": "string", "minLength": 1}},
                    "ignore_changes": {"type": "array", "items": {"type": "string", "pattern": "^[a-z_][a-z0-9_]*$"}}
                }
            },
            "imports": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "terraform_path": {"type": "string", "minLength": 1},
                    "run_init": {"type": "boolean"},
                    "create_backup": {"type": "boolean"},
                    "fail_on_warnings": {"type": "boolean"},
                    "command_timeout": {"type": ["integer", "null"], "minimum": 1}
                }
            },
            "output": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "output_directory": {"type": "string", "minLength": 1},
                    "overwrite_existing": {"type": "boolean"},
                    "export_inventory": {"type": "boolean"},
                    "export_format": {"type": "string", "enum": ["json", "yaml"]}
                }
            },
            "logging": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "level": {
                        "type": "string",
                        "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
                    },
                    "format": {"type": "string"},
                    "file": {"type": ["string", "null"]},
                    "console": {"type": "boolean"},
                    "max_file_size": {"type": "integer", "minimum": 1024},
                    "backup_count": {"type": "integer", "minimum": 1}
                }
            }
        }
    }

    DEFAULT_LOCATIONS = [
        './do2tf-config.yaml',
        './do2tf-config.yml',
        './config/do2tf-config.yaml',
        '~/.do2tf/config.yaml',
    ]

    def __init__(self):
        self.config = ToolConfig()
        self._config_sources = []

    def load_config(self,
                    config_file: Optional[str] = None,
                    cli_args: Optional[Dict[str, Any]] = None,
                    env_vars: bool = True) -> ToolConfig:
        """
        Load configuration from multiple sources with precedence:
        1. CLI arguments (highest priority)
        2. Environment variables
        3. Configuration file
        4. Default values (lowest priority)
        """
        logger.debug("Loading configuration")

        self.config = ToolConfig()
        self._config_sources = ["defaults"]

        if config_file:
            self._load_from_file(config_file)
        else:
            for location in self.DEFAULT_LOCATIONS:
                expanded_path = os.path.expanduser(location)
                if os.path.exists(expanded_path):
                    self._load_from_file(expanded_path)
                    break

        if env_vars:
            self._load_from_env()

        if cli_args:
            self._apply_cli_args(cli_args)

        self._validate_config()

        logger.debug(f"Configuration loaded from sources: {', '.join(self._config_sources)}")
        return self.config

    def _load_from_file(self, config_file: str):
        """Load configuration from YAML or JSON file"""
        config_path = Path(config_file).expanduser()
        if not config_path.exists():
            raise ValueError(f"Configuration file not found: {config_file}")

        with open(config_path, 'r') as f:
            if config_path.suffix.lower() in ['.yaml', '.yml']:
                file_config = yaml.safe_load(f)
            elif config_path.suffix.lower() == '.json':
                file_config = json.load(f)
            else:
                raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

        if file_config:
            if not isinstance(file_config, dict):
                raise ValueError(f"Invalid configuration in {config_file}: expected a mapping")
            self._merge_config(file_config)
            self._config_sources.append(f"file:{config_file}")
            logger.debug(f"Loaded configuration from {config_file}")

    def _load_from_env(self):
        """Load configuration from environment variables"""
        env_config = {}

        if os.getenv('DO2TF_DOCTL_PATH'):
            env_config.setdefault('discovery', {})['doctl_path'] = os.getenv('DO2TF_DOCTL_PATH')

        if os.getenv('DO2TF_CONTEXT'):
            env_config.setdefault('discovery', {})['context'] = os.getenv('DO2TF_CONTEXT')

        if os.getenv('DO2TF_TERRAFORM_PATH'):
            env_config.setdefault('imports', {})['terraform_path'] = os.getenv('DO2TF_TERRAFORM_PATH')

        if os.getenv('DO2TF_OUTPUT_DIR'):
            env_config.setdefault('output', {})['output_directory'] = os.getenv('DO2TF_OUTPUT_DIR')

        if os.getenv('DO2TF_OVERWRITE'):
            env_config.setdefault('output', {})['overwrite_existing'] = os.getenv('DO2TF_OVERWRITE').lower() == 'true'

        if os.getenv('DO2TF_REGION'):
            env_config.setdefault('emit', {})['default_region'] = os.getenv('DO2TF_REGION')

        if os.getenv('DO2TF_PROVIDER_VERSION'):
            env_config.setdefault('emit', {})['provider_version'] = os.getenv('DO2TF_PROVIDER_VERSION')

        if os.getenv('DO2TF_LOG_LEVEL'):
            env_config.setdefault('logging', {})['level'] = os.getenv('DO2TF_LOG_LEVEL').upper()

        if os.getenv('DO2TF_LOG_FILE'):
            env_config.setdefault('logging', {})['file'] = os.getenv('DO2TF_LOG_FILE')

        if env_config:
            self._merge_config(env_config)
            self._config_sources.append("environment")
            logger.debug("Loaded configuration from environment variables")

    def _apply_cli_args(self, cli_args: Dict[str, Any]):
        """Apply CLI arguments to configuration"""
        cli_config = {}

        if cli_args.get('context'):
            cli_config.setdefault('discovery', {})['context'] = cli_args['context']

        if cli_args.get('kinds'):
            cli_config.setdefault('discovery', {})['kinds'] = list(cli_args['kinds'])

        if cli_args.get('region'):
            cli_config.setdefault('emit', {})['default_region'] = cli_args['region']

        if cli_args.get('output_dir'):
            cli_config.setdefault('output', {})['output_directory'] = cli_args['output_dir']

        if cli_args.get('overwrite'):
            cli_config.setdefault('output', {})['overwrite_existing'] = True

        if cli_args.get('skip_init'):
            cli_config.setdefault('imports', {})['run_init'] = False

        if cli_args.get('allow_failed_imports'):
            cli_config.setdefault('imports', {})['fail_on_warnings'] = False

        if cli_args.get('verbose'):
            cli_config.setdefault('logging', {})['level'] = 'DEBUG'
        elif cli_args.get('quiet'):
            cli_config.setdefault('logging', {})['level'] = 'WARNING'

        if cli_config:
            self._merge_config(cli_config)
            self._config_sources.append("cli_args")
            logger.debug("Applied CLI arguments to configuration")

    def _merge_config(self, new_config: Dict[str, Any]):
        """Merge new configuration into existing configuration"""
        def merge_dict(base: Dict, update: Dict):
            for key, value in update.items():
                if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                    merge_dict(base[key], value)
                else:
                    base[key] = value

        config_dict = self._config_to_dict()
        merge_dict(config_dict, new_config)

        try:
            validate(instance=config_dict, schema=self.CONFIG_SCHEMA)
        except ValidationError as e:
            raise ValueError(f"Invalid configuration: {e.message}")

        self.config = self._dict_to_config(config_dict)

    def _config_to_dict(self) -> Dict[str, Any]:
        """Convert configuration dataclass to dictionary"""
        return asdict(self.config)

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> ToolConfig:
        """Convert dictionary to configuration dataclass"""
        return ToolConfig(
            discovery=DiscoveryConfig(**config_dict.get('discovery', {})),
            emit=EmitConfig(**config_dict.get('emit', {})),
            imports=ImportConfig(**config_dict.get('imports', {})),
            output=OutputConfig(**config_dict.get('output', {})),
            logging=LoggingConfig(**config_dict.get('logging', {}))
        )

    def _validate_config(self):
        """Validate configuration against schema"""
        try:
            validate(instance=self._config_to_dict(), schema=self.CONFIG_SCHEMA)
            logger.debug("Configuration validation passed")
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e.message}")
            raise ValueError(f"Invalid configuration: {e.message}")

    def save_config(self, output_file: str, format: str = 'yaml'):
        """Save current configuration to file"""
        config_dict = self._config_to_dict()

        with open(output_file, 'w') as f:
            if format.lower() == 'yaml':
                yaml.safe_dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)
            elif format.lower() == 'json':
                json.dump(config_dict, f, indent=2)
            else:
                raise ValueError(f"Unsupported format: {format}")

        logger.info(f"Configuration saved to {output_file}")

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration"""
        return {
            'sources': self._config_sources,
            'doctl_context': self.config.discovery.context or 'default',
            'resource_kinds': self.config.discovery.kinds,
            'output_directory': self.config.output.output_directory,
            'provider_version': self.config.emit.provider_version,
            'excluded_volume_prefixes': self.config.emit.excluded_volume_prefixes,
            'logging_level': self.config.logging.level,
        }


# Default configuration template
DEFAULT_CONFIG_TEMPLATE = """
# DigitalOcean to Terraform Importer Configuration

discovery:
  doctl_path: doctl
  context: null  # doctl auth context (null for the current one)
  kinds:
    - ssh_key
    - droplet
    - database
    - firewall
    - floating_ip
    - volume
    - snapshot
  command_timeout: null  # seconds (null for no timeout)

emit:
  provider_version: "2.50.0"
  terraform_version: ">= 1.0"
  default_region: fra1
  environment: production
  excluded_volume_prefixes:
    - "pvc-"  # Kubernetes-managed volumes
  ignore_changes:
    - ssh_keys
    - backups

imports:
  terraform_path: terraform
  run_init: true
  create_backup: true
  fail_on_warnings: true  # exit with status 2 when an import fails
  command_timeout: null

output:
  output_directory: "./terraform"
  overwrite_existing: false
  export_inventory: false
  export_format: json  # json, yaml

logging:
  level: INFO  # DEBUG, INFO, WARNING, ERROR, CRITICAL
  format: "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
  file: null  # Log file path (null for no file logging)
  console: true
  max_file_size: 10485760  # 10MB
  backup_count: 5
"""
