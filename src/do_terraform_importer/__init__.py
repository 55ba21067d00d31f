"""
DigitalOcean to Terraform Importer

Discovers existing DigitalOcean resources, generates matching Terraform modules,
and imports them into Terraform state without touching the live resources.
"""

__version__ = "1.0.0"

from .discovery import InventoryFetcher, InventoryRecord, ResourceKind
from .naming import sanitize_name
from .conversion import ConversionEngine
from .modules import ModuleWriter
from .imports import StateImporter, TerraformStateBackend
from .orchestrator import Orchestrator

__all__ = [
    "InventoryFetcher",
    "InventoryRecord",
    "ResourceKind",
    "sanitize_name",
    "ConversionEngine",
    "ModuleWriter",
    "StateImporter",
    "TerraformStateBackend",
    "Orchestrator"
]
