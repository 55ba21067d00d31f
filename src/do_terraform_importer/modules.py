#!/usr/bin/env python3
"""
Terraform Module Writer

This module serializes a BuildModel into a Terraform working directory: one child
module per category with one file per configuration unit, and a root module that
wires the children together and re-exports their outputs.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from jinja2 import Environment

from .conversion import BuildModel, ConfigUnit, ModuleBuild
from .linking import CATEGORY_ORDER, Expression

logger = logging.getLogger(__name__)

GENERATED_MARKER = "# Generated by do-terraform-importer"


def to_hcl(value: Any) -> str:
    """Render a Python value as an HCL literal"""
    if isinstance(value, Expression):
        return str(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(to_hcl(v) for v in value) + "]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        return "{ " + ", ".join(f"{json.dumps(str(k))} = {to_hcl(v)}" for k, v in value.items()) + " }"
    text = json.dumps(str(value))
    # Template sequences in HCL strings must be doubled to stay literal
    return text.replace("${", "$${").replace("%{", "%%{")


@dataclass
class RootOutput:
    """A root output re-exporting a child module output"""
    name: str
    module: str
    output: str
    description: str
    sensitive: bool = False


@dataclass
class WriteResult:
    """Result of writing a BuildModel to disk"""
    output_directory: str = ""
    files_written: List[str] = field(default_factory=list)
    files_pruned: List[str] = field(default_factory=list)
    files_skipped: List[str] = field(default_factory=list)

    @property
    def files_count(self) -> int:
        return len(self.files_written)


class ModuleWriter:
    """
    Terraform module writer

    Renders every file of the configuration tree with Jinja2 templates. Files
    carrying the generated marker belong to the writer: they are rewritten on
    every run and pruned when their unit disappears from the inventory.
    """

    UNIT_TEMPLATE = """{{ marker }}
# {{ unit.display_name }}{{ ' (ID: %s)' % unit.provider_id if unit.provider_id else '' }}

{{ unit.mode }} "{{ unit.resource_type }}" "{{ unit.local_name }}" {
{% set width = unit.attributes | map('first') | map('length') | max %}
{% for key, value in unit.attributes %}
  {{ key.ljust(width) }} = {{ value | hcl }}
{% endfor %}
{% for block in unit.blocks %}

  {{ block.name }} {
{% set bwidth = block.attributes | map('first') | map('length') | max %}
{% for key, value in block.attributes %}
    {{ key.ljust(bwidth) }} = {{ value | hcl }}
{% endfor %}
  }
{% endfor %}
}
"""

    OUTPUTS_TF_TEMPLATE = """{{ marker }}
# Outputs for {{ module_name }} module

{% for output in outputs %}
output "{{ output.name }}" {
  description = "{{ output.description }}"

{% if output.entries %}
{% set kwidth = output.entries.keys() | map('length') | max + 2 %}
  value = {
{% for key, expression in output.entries.items() %}
    {{ ('"%s"' % key).ljust(kwidth) }} = {{ expression }}
{% endfor %}
  }
{% else %}
  value = {}
{% endif %}
{% if output.sensitive %}

  sensitive = true
{% endif %}
}

{% endfor %}
"""

    VARIABLES_TF_TEMPLATE = """{{ marker }}
# Variables for {{ module_name }} module

variable "region" {
  description = "DigitalOcean region"
  type        = string
  default     = "{{ default_region }}"
}
{% for input in inputs %}

variable "{{ input.variable }}" {
  description = "{{ input.description }}"
  type        = {{ input.type }}
}
{% endfor %}
"""

    VERSIONS_TF_TEMPLATE = """{{ marker }}
# Provider version constraints for {{ module_name }} module

terraform {
  required_providers {
    digitalocean = {
      source  = "digitalocean/digitalocean"
      version = "{{ provider_version }}"
    }
  }
}
"""

    ROOT_MAIN_TF_TEMPLATE = """{{ marker }}
# DigitalOcean main configuration
{% for module in modules %}

module "{{ module.category }}" {
  source = "./{{ module.category }}"

  providers = {
    digitalocean = digitalocean
  }
{% for input in module.inputs %}

  {{ input.variable }} = module.{{ input.producer }}.{{ input.output }}
{% endfor %}
}
{% endfor %}
"""

    ROOT_PROVIDERS_TF_TEMPLATE = """{{ marker }}

terraform {
  required_version = "{{ terraform_version }}"

  required_providers {
    digitalocean = {
      source  = "digitalocean/digitalocean"
      version = "{{ provider_version }}"
    }
  }
}

provider "digitalocean" {
  # Token set via DIGITALOCEAN_TOKEN environment variable
}
"""

    ROOT_VARIABLES_TF_TEMPLATE = """{{ marker }}

variable "environment" {
  description = "Deployment environment"
  type        = string
  default     = "{{ environment }}"
}

variable "region" {
  description = "DigitalOcean region"
  type        = string
  default     = "{{ default_region }}"
}
"""

    ROOT_OUTPUTS_TF_TEMPLATE = """{{ marker }}
# Main outputs file
{% for output in outputs %}

output "{{ output.name }}" {
  description = "{{ output.description }}"
  value       = module.{{ output.module }}.{{ output.output }}
{% if output.sensitive %}
  sensitive   = true
{% endif %}
}
{% endfor %}
"""

    ROOT_OUTPUTS = [
        RootOutput('droplet_ips', 'compute', 'droplet_ips', 'IPs of all droplets'),
        RootOutput('droplet_ids_by_name', 'compute', 'droplet_ids', 'Droplet IDs keyed by sanitized name'),
        RootOutput('database_hosts', 'database', 'database_hosts', 'Database hosts', sensitive=True),
        RootOutput('database_ids', 'database', 'database_ids', 'IDs of all database clusters'),
        RootOutput('floating_ips', 'network', 'floating_ips', 'All floating IPs'),
        RootOutput('firewall_ids', 'network', 'firewall_ids', 'IDs of all firewalls'),
        RootOutput('volume_ids', 'storage', 'volume_ids', 'IDs of all volumes'),
        RootOutput('snapshot_ids', 'storage', 'snapshot_ids', 'IDs of all volume snapshots'),
        RootOutput('ssh_keys', 'compute', 'ssh_keys', 'SSH key IDs by key name', sensitive=True),
        RootOutput('ssh_key_fingerprints', 'compute', 'ssh_key_fingerprints',
                   'SSH key fingerprints by key name', sensitive=True),
    ]

    def __init__(self,
                 provider_version: str = "2.50.0",
                 terraform_version: str = ">= 1.0",
                 default_region: str = "fra1",
                 environment: str = "production",
                 overwrite_existing: bool = False):
        """
        Initialize the module writer

        Args:
            provider_version: digitalocean provider version to pin
            terraform_version: Required Terraform version constraint
            default_region: Default for the region variables
            environment: Default for the root environment variable
            overwrite_existing: Whether to overwrite files without the generated marker
        """
        self.provider_version = provider_version
        self.terraform_version = terraform_version
        self.default_region = default_region
        self.environment = environment
        self.overwrite_existing = overwrite_existing

        self.env = Environment(trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)
        self.env.filters['hcl'] = to_hcl

        logger.info(f"Initialized ModuleWriter for provider version {provider_version}")

    def render(self, template: str, **context) -> str:
        return self.env.from_string(template).render(marker=GENERATED_MARKER, **context)

    def render_unit(self, unit: ConfigUnit) -> str:
        return self.render(self.UNIT_TEMPLATE, unit=unit)

    def render_module_files(self, module: ModuleBuild) -> Dict[str, str]:
        """Render every file of one child module, keyed by file name"""
        files = {}
        for unit in module.units:
            files[f"{unit.local_name}.tf"] = self.render_unit(unit)

        files['outputs.tf'] = self.render(
            self.OUTPUTS_TF_TEMPLATE,
            module_name=module.category,
            outputs=list(module.outputs.values())
        )
        files['variables.tf'] = self.render(
            self.VARIABLES_TF_TEMPLATE,
            module_name=module.category,
            default_region=self.default_region,
            inputs=module.inputs
        )
        files['versions.tf'] = self.render(
            self.VERSIONS_TF_TEMPLATE,
            module_name=module.category,
            provider_version=self.provider_version
        )
        return files

    def render_root_files(self, model: BuildModel) -> Dict[str, str]:
        modules = [model.modules[c] for c in CATEGORY_ORDER]
        return {
            'main.tf': self.render(self.ROOT_MAIN_TF_TEMPLATE, modules=modules),
            'providers.tf': self.render(
                self.ROOT_PROVIDERS_TF_TEMPLATE,
                terraform_version=self.terraform_version,
                provider_version=self.provider_version
            ),
            'variables.tf': self.render(
                self.ROOT_VARIABLES_TF_TEMPLATE,
                environment=self.environment,
                default_region=self.default_region
            ),
            'outputs.tf': self.render(self.ROOT_OUTPUTS_TF_TEMPLATE, outputs=self.ROOT_OUTPUTS),
        }

    def write(self, model: BuildModel, output_dir: str) -> WriteResult:
        """
        Write the complete configuration tree

        All content is rendered before the first file is touched, so a rendering
        failure leaves the previous tree intact. Modules outside
        ``model.categories`` that already exist on disk are neither rewritten
        nor pruned.

        Args:
            model: BuildModel produced by the conversion engine
            output_dir: Terraform working directory

        Returns:
            WriteResult listing written, pruned and skipped files
        """
        output_path = Path(output_dir)
        result = WriteResult(output_directory=str(output_path))

        rendered: Dict[Path, str] = {}
        for name, content in self.render_root_files(model).items():
            rendered[output_path / name] = content

        categories = []
        for category in CATEGORY_ORDER:
            # Modules not covered by this run keep their previous content
            if category not in model.categories and (output_path / category).exists():
                logger.info(f"Leaving module {category} untouched: its resources were not discovered in this run")
                continue
            categories.append(category)
            for name, content in self.render_module_files(model.modules[category]).items():
                rendered[output_path / category / name] = content

        logger.info(f"Writing {len(rendered)} Terraform files to {output_path}")

        for path, content in rendered.items():
            path.parent.mkdir(parents=True, exist_ok=True)
            if path.exists() and not self._is_generated(path) and not self.overwrite_existing:
                logger.warning(f"WARN: not overwriting hand-written file {path}")
                result.files_skipped.append(str(path))
                continue
            path.write_text(content)
            result.files_written.append(str(path))

        for category in categories:
            module_dir = output_path / category
            for path in sorted(module_dir.glob("*.tf")):
                if path not in rendered and self._is_generated(path):
                    logger.info(f"Removing stale generated file {path}")
                    path.unlink()
                    result.files_pruned.append(str(path))

        logger.info(
            f"Module writing completed: {len(result.files_written)} written, "
            f"{len(result.files_pruned)} pruned, {len(result.files_skipped)} skipped"
        )
        return result

    @staticmethod
    def _is_generated(path: Path) -> bool:
        try:
            with open(path, 'r') as f:
                return f.readline().startswith(GENERATED_MARKER)
        except OSError:
            return False
