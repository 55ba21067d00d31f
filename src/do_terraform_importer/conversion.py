#!/usr/bin/env python3
"""
Inventory to Terraform Conversion

This module turns discovered InventoryRecords into Terraform configuration units
grouped by module (compute, database, network, storage). Units reproduce only the
attributes needed for a post-import plan to show no drift against the live
resource. Nothing is written to disk here: the complete build model is collected
first and serialized by the module writer in one pass.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .discovery import InventoryRecord, ResourceKind
from .linking import CATEGORY_ORDER, DROPLET_IDS_INPUT, CrossReferenceLinker, Expression, ModuleInput
from .naming import NameRegistry, sanitize_name

logger = logging.getLogger(__name__)

ALL_PORTS = "0"


def normalize_port_range(ports: Any) -> str:
    """Map a missing, null or "all" port specification to "0"; pass anything else through"""
    if ports is None:
        return ALL_PORTS
    ports = str(ports).strip()
    if not ports or ports.lower() == 'all':
        return ALL_PORTS
    return ports


@dataclass
class Block:
    """Nested HCL block inside a unit (rules, lifecycle)"""
    name: str
    attributes: List[Tuple[str, Any]] = field(default_factory=list)


@dataclass
class ConfigUnit:
    """One Terraform resource or data source rendered from an inventory record"""
    category: str
    label: str
    resource_type: str
    name: str
    provider_id: Optional[str]
    attributes: List[Tuple[str, Any]] = field(default_factory=list)
    blocks: List[Block] = field(default_factory=list)
    mode: str = "resource"
    display_name: str = ""

    @property
    def local_name(self) -> str:
        return f"{self.label}_{self.name}"

    @property
    def address(self) -> str:
        return f"{self.category}.{self.label}.{self.name}"

    @property
    def reference(self) -> str:
        """Address of the unit from within its own module"""
        if self.mode == "data":
            return f"data.{self.resource_type}.{self.local_name}"
        return f"{self.resource_type}.{self.local_name}"

    @property
    def terraform_address(self) -> str:
        return f"module.{self.category}.{self.reference}"

    @property
    def importable(self) -> bool:
        return self.mode == "resource" and self.provider_id is not None

    def attribute(self, key: str, default: Any = None) -> Any:
        for name, value in self.attributes:
            if name == key:
                return value
        return default


@dataclass
class OutputSpec:
    """A module output exposing a map keyed by sanitized name"""
    name: str
    description: str
    entries: Dict[str, Expression] = field(default_factory=dict)
    sensitive: bool = False


@dataclass
class ModuleBuild:
    """Everything one child module contains"""
    category: str
    units: List[ConfigUnit] = field(default_factory=list)
    outputs: Dict[str, OutputSpec] = field(default_factory=dict)
    inputs: List[ModuleInput] = field(default_factory=list)

    def add_output(self, name: str, description: str, sensitive: bool = False):
        self.outputs[name] = OutputSpec(name=name, description=description, sensitive=sensitive)

    def expose(self, output: str, key: str, expression: str):
        self.outputs[output].entries[key] = Expression(expression)

    def importable_units(self) -> List[ConfigUnit]:
        return [u for u in self.units if u.importable]


@dataclass
class BuildModel:
    """Complete configuration tree for one run"""
    modules: Dict[str, ModuleBuild] = field(default_factory=dict)
    categories: List[str] = field(default_factory=lambda: list(CATEGORY_ORDER))
    excluded: List[InventoryRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def all_units(self) -> List[ConfigUnit]:
        units = []
        for category in CATEGORY_ORDER:
            units.extend(self.modules[category].units)
        return units


class ConversionEngine:
    """
    Converts inventory records into a BuildModel

    Categories are built in dependency order so that the compute module's droplet
    names are known before the network module references them.
    """

    def __init__(self,
                 excluded_volume_prefixes: Optional[List[str]] = None,
                 ignore_changes: Optional[List[str]] = None):
        """
        Initialize the conversion engine

        Args:
            excluded_volume_prefixes: Volume name prefixes owned by an external orchestrator
            ignore_changes: Droplet attributes whose drift Terraform must ignore
        """
        self.excluded_volume_prefixes = excluded_volume_prefixes if excluded_volume_prefixes is not None else ['pvc-']
        self.ignore_changes = ignore_changes if ignore_changes is not None else ['ssh_keys', 'backups']

    def convert(self, inventory: Dict[ResourceKind, List[InventoryRecord]],
                categories: Optional[List[str]] = None) -> BuildModel:
        """
        Build the configuration model for a fetched inventory

        Args:
            inventory: Records by kind, as returned by InventoryFetcher.fetch_all
            categories: Modules whose kinds were all fetched (defaults to every module).
                The other modules are built empty and left alone by the writer.

        Returns:
            BuildModel with one ModuleBuild per category (empty modules included)
        """
        registry = NameRegistry()
        linker = CrossReferenceLinker()
        linker.require(DROPLET_IDS_INPUT)

        model = BuildModel(
            modules={c: ModuleBuild(category=c) for c in CATEGORY_ORDER},
            categories=[c for c in CATEGORY_ORDER if categories is None or c in categories]
        )

        def records(kind):
            return inventory.get(kind, [])

        self._convert_compute(model.modules['compute'], records(ResourceKind.SSH_KEY),
                              records(ResourceKind.COMPUTE), registry, linker)
        self._convert_database(model.modules['database'], records(ResourceKind.DATABASE), registry)
        self._convert_network(model.modules['network'], records(ResourceKind.FIREWALL),
                              records(ResourceKind.FLOATING_IP), registry, linker)
        self._convert_storage(model, records(ResourceKind.VOLUME), records(ResourceKind.SNAPSHOT), registry)

        linker.validate()
        for category, module in model.modules.items():
            module.inputs = linker.inputs_for(category)

        total = sum(len(m.units) for m in model.modules.values())
        logger.info(f"Built {total} configuration units across {len(model.modules)} modules")
        return model

    # compute

    def _convert_compute(self, module: ModuleBuild, keys: List[InventoryRecord],
                         droplets: List[InventoryRecord], registry: NameRegistry,
                         linker: CrossReferenceLinker):
        module.add_output('droplet_ips', 'IPv4 addresses of all droplets')
        module.add_output('droplet_ids', 'IDs of all droplets')
        module.add_output('ssh_keys', 'SSH key IDs by key name', sensitive=True)
        module.add_output('ssh_key_fingerprints', 'SSH key fingerprints by key name', sensitive=True)

        for record in keys:
            unit = self.convert_ssh_key(record, registry)
            module.units.append(unit)
            module.expose('ssh_keys', unit.name, f"{unit.reference}.id")
            module.expose('ssh_key_fingerprints', unit.name, f"{unit.reference}.fingerprint")

        for record in droplets:
            unit = self.convert_droplet(record, registry)
            linker.register_droplet(record.provider_id, unit.name)
            module.units.append(unit)
            module.expose('droplet_ips', unit.name, f"{unit.reference}.ipv4_address")
            module.expose('droplet_ids', unit.name, f"{unit.reference}.id")

    def convert_ssh_key(self, record: InventoryRecord, registry: NameRegistry) -> ConfigUnit:
        # Keyed on name + id: keys provisioned separately often share a display name
        name = registry.claim('compute', 'key', f"{record.display_name}{record.provider_id}", record.provider_id)
        return ConfigUnit(
            category='compute',
            label='key',
            resource_type='digitalocean_ssh_key',
            name=name,
            provider_id=None,
            mode='data',
            display_name=record.display_name,
            attributes=[('name', record.display_name)],
        )

    def convert_droplet(self, record: InventoryRecord, registry: NameRegistry) -> ConfigUnit:
        attrs = record.attributes
        features = set(attrs.get('features') or [])

        attributes = [
            ('name', record.display_name),
            ('region', attrs.get('region')),
            ('size', attrs.get('size')),
            ('image', attrs.get('image')),
        ]
        # False flags are omitted, matching the provider's own default of false
        if 'backups' in features:
            attributes.append(('backups', True))
        if 'monitoring' in features:
            attributes.append(('monitoring', True))
        if 'ipv6' in features:
            attributes.append(('ipv6', True))
        if attrs.get('vpc_uuid'):
            attributes.append(('vpc_uuid', attrs['vpc_uuid']))
        if attrs.get('tags'):
            attributes.append(('tags', list(attrs['tags'])))

        lifecycle = Block(
            name='lifecycle',
            attributes=[('ignore_changes', Expression(f"[{', '.join(self.ignore_changes)}]"))]
        )

        return ConfigUnit(
            category='compute',
            label='droplet',
            resource_type='digitalocean_droplet',
            name=registry.claim('compute', 'droplet', record.display_name, record.provider_id),
            provider_id=record.provider_id,
            display_name=record.display_name,
            attributes=attributes,
            blocks=[lifecycle],
        )

    # database

    def _convert_database(self, module: ModuleBuild, databases: List[InventoryRecord],
                          registry: NameRegistry):
        module.add_output('database_hosts', 'Database host addresses', sensitive=True)
        module.add_output('database_ids', 'IDs of all database clusters')

        for record in databases:
            unit = self.convert_database(record, registry)
            module.units.append(unit)
            module.expose('database_hosts', unit.name, f"{unit.reference}.host")
            module.expose('database_ids', unit.name, f"{unit.reference}.id")

    def convert_database(self, record: InventoryRecord, registry: NameRegistry) -> ConfigUnit:
        attrs = record.attributes
        return ConfigUnit(
            category='database',
            label='db',
            resource_type='digitalocean_database_cluster',
            name=registry.claim('database', 'db', record.display_name, record.provider_id),
            provider_id=record.provider_id,
            display_name=record.display_name,
            attributes=[
                ('name', record.display_name),
                ('engine', attrs.get('engine')),
                ('version', attrs.get('version')),
                ('region', attrs.get('region')),
                ('node_count', attrs.get('node_count')),
                ('size', attrs.get('size')),
            ],
        )

    # network

    def _convert_network(self, module: ModuleBuild, firewalls: List[InventoryRecord],
                         floating_ips: List[InventoryRecord], registry: NameRegistry,
                         linker: CrossReferenceLinker):
        module.add_output('firewall_ids', 'IDs of all firewalls')
        module.add_output('floating_ips', 'All floating IPs')

        for record in firewalls:
            unit = self.convert_firewall(record, registry)
            module.units.append(unit)
            module.expose('firewall_ids', unit.name, f"{unit.reference}.id")

        for record in floating_ips:
            for unit in self.convert_floating_ip(record, registry, linker):
                module.units.append(unit)
                if unit.label == 'floating_ip':
                    module.expose('floating_ips', unit.name, f"{unit.reference}.ip_address")

    def convert_firewall(self, record: InventoryRecord, registry: NameRegistry) -> ConfigUnit:
        attrs = record.attributes
        blocks = []

        for rule in attrs.get('inbound_rules') or []:
            blocks.append(self._firewall_rule('inbound_rule', 'source', rule.get('sources'), rule))
        for rule in attrs.get('outbound_rules') or []:
            blocks.append(self._firewall_rule('outbound_rule', 'destination', rule.get('destinations'), rule))

        return ConfigUnit(
            category='network',
            label='firewall',
            resource_type='digitalocean_firewall',
            name=registry.claim('network', 'firewall', record.display_name, record.provider_id),
            provider_id=record.provider_id,
            display_name=record.display_name,
            attributes=[('name', record.display_name)],
            blocks=blocks,
        )

    def _firewall_rule(self, block_name: str, direction: str,
                       endpoints: Optional[Dict[str, Any]], rule: Dict[str, Any]) -> Block:
        endpoints = endpoints or {}
        attributes = [
            ('protocol', rule.get('protocol')),
            ('port_range', normalize_port_range(rule.get('ports'))),
        ]
        if endpoints.get('addresses'):
            attributes.append((f'{direction}_addresses', list(endpoints['addresses'])))
        if endpoints.get('tags'):
            attributes.append((f'{direction}_tags', list(endpoints['tags'])))
        return Block(name=block_name, attributes=attributes)

    def convert_floating_ip(self, record: InventoryRecord, registry: NameRegistry,
                            linker: CrossReferenceLinker) -> List[ConfigUnit]:
        """
        Emit the reservation, plus an assignment unit when the IP is attached

        The reservation never references the droplet, so the IP outlives any
        instance it is attached to. The assignment references the droplet by
        sanitized name through the compute module's exported id map.
        """
        name = registry.claim('network', 'floating_ip', record.display_name, record.provider_id)
        reservation = ConfigUnit(
            category='network',
            label='floating_ip',
            resource_type='digitalocean_floating_ip',
            name=name,
            provider_id=record.provider_id,
            display_name=record.display_name,
            attributes=[('region', record.attributes.get('region'))],
        )
        units = [reservation]

        droplet_id = record.attributes.get('droplet_id')
        if droplet_id:
            reference = linker.reference_droplet(droplet_id, consumer='network')
            if reference is None:
                logger.warning(f"WARN: skipping assignment of floating IP {record.display_name}")
            else:
                units.append(ConfigUnit(
                    category='network',
                    label='floating_ip_assignment',
                    resource_type='digitalocean_floating_ip_assignment',
                    name=registry.claim('network', 'floating_ip_assignment',
                                        record.display_name, record.provider_id),
                    provider_id=f"{record.provider_id},{droplet_id}",
                    display_name=record.display_name,
                    attributes=[
                        ('ip_address', Expression(f"{reservation.reference}.ip_address")),
                        ('droplet_id', reference),
                    ],
                ))
        return units

    # storage

    def is_excluded_volume(self, record: InventoryRecord) -> bool:
        return any(record.display_name.startswith(p) for p in self.excluded_volume_prefixes)

    def _convert_storage(self, model: BuildModel, volumes: List[InventoryRecord],
                         snapshots: List[InventoryRecord], registry: NameRegistry):
        module = model.modules['storage']
        module.add_output('volume_urns', 'URNs of all volumes')
        module.add_output('volume_ids', 'IDs of all volumes')
        module.add_output('snapshot_ids', 'IDs of all volume snapshots')

        excluded_ids = set()
        for record in volumes:
            if self.is_excluded_volume(record):
                logger.info(f"Skipping externally managed volume: {record.display_name} (ID: {record.provider_id})")
                excluded_ids.add(record.provider_id)
                model.excluded.append(record)
                continue

            units = self.convert_volume(record, registry)
            volume = units[0]
            module.units.extend(units)
            module.expose('volume_urns', volume.name, f"{volume.reference}.urn")
            module.expose('volume_ids', volume.name, f"{volume.reference}.id")

        for record in snapshots:
            if record.attributes.get('resource_type') != 'volume':
                continue
            if record.attributes.get('resource_id') in excluded_ids:
                logger.info(f"Skipping snapshot of externally managed volume: {record.display_name}")
                model.excluded.append(record)
                continue

            unit = self.convert_snapshot(record, registry)
            module.units.append(unit)
            module.expose('snapshot_ids', unit.name, f"{unit.reference}.id")

    def convert_volume(self, record: InventoryRecord, registry: NameRegistry) -> List[ConfigUnit]:
        """Emit the volume and one attachment unit per attached droplet"""
        attrs = record.attributes
        volume = ConfigUnit(
            category='storage',
            label='volume',
            resource_type='digitalocean_volume',
            name=registry.claim('storage', 'volume', record.display_name, record.provider_id),
            provider_id=record.provider_id,
            display_name=record.display_name,
            attributes=[
                ('name', record.display_name),
                ('region', attrs.get('region')),
                ('size', attrs.get('size')),
            ],
        )
        units = [volume]

        for droplet_id in attrs.get('droplet_ids') or []:
            units.append(ConfigUnit(
                category='storage',
                label='attachment',
                resource_type='digitalocean_volume_attachment',
                name=registry.claim('storage', 'attachment',
                                    f"{volume.name}_{sanitize_name(droplet_id)}",
                                    f"{record.provider_id}_{droplet_id}"),
                provider_id=f"{droplet_id},{record.provider_id}",
                display_name=record.display_name,
                attributes=[
                    ('droplet_id', int(droplet_id) if str(droplet_id).isdigit() else droplet_id),
                    ('volume_id', Expression(f"{volume.reference}.id")),
                ],
            ))
        return units

    def convert_snapshot(self, record: InventoryRecord, registry: NameRegistry) -> ConfigUnit:
        # Snapshots are immutable, so the source volume id is referenced directly
        return ConfigUnit(
            category='storage',
            label='snapshot',
            resource_type='digitalocean_volume_snapshot',
            name=registry.claim('storage', 'snapshot', record.display_name, record.provider_id),
            provider_id=record.provider_id,
            display_name=record.display_name,
            attributes=[
                ('name', record.display_name),
                ('volume_id', record.attributes.get('resource_id')),
            ],
        )
