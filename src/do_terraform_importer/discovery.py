#!/usr/bin/env python3
"""
DigitalOcean Inventory Discovery

This module queries the DigitalOcean account through the ``doctl`` CLI in JSON
output mode and normalizes every listed resource into an InventoryRecord. Any
transport or API failure aborts discovery: a partial inventory would lead to a
partial configuration tree.
"""

import json
import logging
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml

from .linking import CATEGORY_ORDER, DROPLET_IDS_INPUT

logger = logging.getLogger(__name__)


class DiscoveryError(Exception):
    """Raised when the provider inventory cannot be fetched"""


class ResourceKind(str, Enum):
    """Kinds of DigitalOcean resources the importer understands"""
    SSH_KEY = "ssh_key"
    COMPUTE = "droplet"
    DATABASE = "database"
    FIREWALL = "firewall"
    FLOATING_IP = "floating_ip"
    VOLUME = "volume"
    SNAPSHOT = "snapshot"


# Fetch order: keys -> compute -> database -> network -> storage
KIND_ORDER = [
    ResourceKind.SSH_KEY,
    ResourceKind.COMPUTE,
    ResourceKind.DATABASE,
    ResourceKind.FIREWALL,
    ResourceKind.FLOATING_IP,
    ResourceKind.VOLUME,
    ResourceKind.SNAPSHOT,
]

# Generated module each kind is emitted into
KIND_CATEGORY = {
    ResourceKind.SSH_KEY: 'compute',
    ResourceKind.COMPUTE: 'compute',
    ResourceKind.DATABASE: 'database',
    ResourceKind.FIREWALL: 'network',
    ResourceKind.FLOATING_IP: 'network',
    ResourceKind.VOLUME: 'storage',
    ResourceKind.SNAPSHOT: 'storage',
}


def expand_kinds(kinds: List[ResourceKind]) -> List[ResourceKind]:
    """
    Widen a kind selection to complete modules

    A module is only ever rebuilt from all of its kinds, so that writing it never
    drops units of a kind that was not fetched. The network module also pulls in
    compute, whose droplet names it references. Pulling in volumes with snapshots
    keeps snapshots of excluded volumes recognizable.
    """
    categories = {KIND_CATEGORY[kind] for kind in kinds}
    if DROPLET_IDS_INPUT.consumer in categories:
        categories.add(DROPLET_IDS_INPUT.producer)
    return [kind for kind in KIND_ORDER if KIND_CATEGORY[kind] in categories]


@dataclass(frozen=True)
class InventoryRecord:
    """One discovered cloud resource"""
    kind: ResourceKind
    provider_id: str
    display_name: str
    attributes: Dict[str, Any] = field(default_factory=dict)


def _slug(value: Any) -> Optional[str]:
    """Return the slug of a nested doctl object, or the value itself when flat"""
    if value is None:
        return None
    if isinstance(value, dict):
        slug = value.get('slug')
        if slug:
            return slug
        return str(value['id']) if value.get('id') is not None else None
    return str(value)


def _string_list(values: Optional[List[Any]]) -> List[str]:
    return [str(v) for v in (values or [])]


class InventoryFetcher:
    """
    doctl-backed inventory fetcher

    Issues one listing query per resource kind, plus detail queries for the
    kinds whose nested data (firewall rules, volume attachments) must come from
    the single-resource view.
    """

    LIST_COMMANDS = {
        ResourceKind.SSH_KEY: ['compute', 'ssh-key', 'list'],
        ResourceKind.COMPUTE: ['compute', 'droplet', 'list'],
        ResourceKind.DATABASE: ['databases', 'list'],
        ResourceKind.FIREWALL: ['compute', 'firewall', 'list'],
        ResourceKind.FLOATING_IP: ['compute', 'floating-ip', 'list'],
        ResourceKind.VOLUME: ['compute', 'volume', 'list'],
        ResourceKind.SNAPSHOT: ['compute', 'snapshot', 'list', '--resource', 'volume'],
    }

    DETAIL_COMMANDS = {
        ResourceKind.FIREWALL: ['compute', 'firewall', 'get'],
        ResourceKind.VOLUME: ['compute', 'volume', 'get'],
    }

    def __init__(self,
                 doctl_path: str = "doctl",
                 context: Optional[str] = None,
                 kinds: Optional[List[str]] = None,
                 timeout: Optional[int] = None):
        """
        Initialize the fetcher

        Args:
            doctl_path: doctl executable to invoke
            context: doctl authentication context (defaults to doctl's current one)
            kinds: Resource kinds to fetch (defaults to all kinds)
            timeout: Per-command timeout in seconds, None for no timeout
        """
        self.doctl_path = doctl_path
        self.context = context
        self.timeout = timeout
        if kinds:
            wanted = [ResourceKind(k) for k in kinds]
            self.kinds = expand_kinds(wanted)
            added = [k.value for k in self.kinds if k not in wanted]
            if added:
                logger.info(f"Also fetching {added} to cover complete modules")
        else:
            self.kinds = list(KIND_ORDER)

        self.records: Dict[ResourceKind, List[InventoryRecord]] = {}

        logger.info(f"Initialized InventoryFetcher for kinds: {[k.value for k in self.kinds]}")

    @property
    def categories(self) -> List[str]:
        """Modules whose kinds are all fetched by this fetcher"""
        fetched = {KIND_CATEGORY[kind] for kind in self.kinds}
        return [c for c in CATEGORY_ORDER if c in fetched]

    def fetch_all(self) -> Dict[ResourceKind, List[InventoryRecord]]:
        """
        Fetch every configured kind in order

        Returns:
            Mapping of kind to records; kinds not configured map to an empty list

        Raises:
            DiscoveryError: on the first failing query
        """
        logger.info("Starting DigitalOcean inventory discovery")
        self.records = {kind: [] for kind in KIND_ORDER}

        for kind in self.kinds:
            self.records[kind] = self.fetch(kind)

        total = sum(len(r) for r in self.records.values())
        logger.info(f"Discovery complete: {total} resources")
        return self.records

    def fetch(self, kind: ResourceKind) -> List[InventoryRecord]:
        """Fetch and normalize all resources of one kind"""
        logger.info(f"Discovering {kind.value} resources")

        items = self._run_doctl(self.LIST_COMMANDS[kind])
        if not items:
            logger.info(f"No {kind.value} resources found")
            return []

        records = []
        for item in items:
            if kind in self.DETAIL_COMMANDS:
                item = self._fetch_detail(kind, item)
            records.append(self._to_record(kind, item))

        logger.info(f"Found {len(records)} {kind.value} resources")
        return records

    def _fetch_detail(self, kind: ResourceKind, item: Dict[str, Any]) -> Dict[str, Any]:
        resource_id = item.get('id')
        if resource_id is None:
            raise DiscoveryError(f"{kind.value} listing returned an entry without an id: {item}")

        detail = self._run_doctl(self.DETAIL_COMMANDS[kind] + [str(resource_id)])
        if not detail:
            raise DiscoveryError(f"No detail returned for {kind.value} {resource_id}")
        return detail[0]

    def _run_doctl(self, args: List[str]) -> List[Dict[str, Any]]:
        """Run a doctl command in JSON mode and return the decoded list"""
        command = [self.doctl_path] + args + ['--output', 'json']
        if self.context:
            command += ['--context', self.context]

        logger.debug(f"Running: {' '.join(command)}")

        try:
            process = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except FileNotFoundError:
            raise DiscoveryError(f"doctl executable not found: {self.doctl_path}")
        except subprocess.TimeoutExpired:
            raise DiscoveryError(f"Command timed out after {self.timeout} seconds: {' '.join(command)}")

        if process.returncode != 0:
            raise DiscoveryError(
                f"Command failed with exit code {process.returncode}: {' '.join(command)}: "
                f"{process.stderr.strip()}"
            )

        output = process.stdout.strip()
        if not output:
            return []

        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise DiscoveryError(f"Invalid JSON from {' '.join(command)}: {str(e)}")

        if data is None:
            return []
        if isinstance(data, dict):
            return [data]
        return data

    def _to_record(self, kind: ResourceKind, raw: Dict[str, Any]) -> InventoryRecord:
        """Normalize a raw doctl object into an InventoryRecord"""

        if kind == ResourceKind.SSH_KEY:
            return InventoryRecord(
                kind=kind,
                provider_id=str(raw['id']),
                display_name=raw.get('name', ''),
                attributes={
                    'fingerprint': raw.get('fingerprint'),
                    'public_key': raw.get('public_key'),
                }
            )

        if kind == ResourceKind.COMPUTE:
            return InventoryRecord(
                kind=kind,
                provider_id=str(raw['id']),
                display_name=raw.get('name', ''),
                attributes={
                    'region': _slug(raw.get('region')),
                    'size': raw.get('size_slug') or _slug(raw.get('size')),
                    'image': _slug(raw.get('image')),
                    'features': list(raw.get('features') or []),
                    'tags': _string_list(raw.get('tags')),
                    'vpc_uuid': raw.get('vpc_uuid') or None,
                }
            )

        if kind == ResourceKind.DATABASE:
            return InventoryRecord(
                kind=kind,
                provider_id=str(raw['id']),
                display_name=raw.get('name', ''),
                attributes={
                    'engine': raw.get('engine'),
                    'version': raw.get('version'),
                    'region': _slug(raw.get('region')),
                    'node_count': raw.get('num_nodes', raw.get('node_count')),
                    'size': _slug(raw.get('size')),
                }
            )

        if kind == ResourceKind.FIREWALL:
            return InventoryRecord(
                kind=kind,
                provider_id=str(raw['id']),
                display_name=raw.get('name', ''),
                attributes={
                    'inbound_rules': list(raw.get('inbound_rules') or []),
                    'outbound_rules': list(raw.get('outbound_rules') or []),
                    'droplet_ids': _string_list(raw.get('droplet_ids')),
                    'tags': _string_list(raw.get('tags')),
                }
            )

        if kind == ResourceKind.FLOATING_IP:
            droplet = raw.get('droplet')
            if isinstance(droplet, dict) and droplet.get('id') is not None:
                droplet_id = str(droplet['id'])
            elif raw.get('droplet_id') not in (None, '', '-'):
                droplet_id = str(raw['droplet_id'])
            else:
                droplet_id = None

            return InventoryRecord(
                kind=kind,
                provider_id=raw['ip'],
                display_name=raw['ip'],
                attributes={
                    'region': _slug(raw.get('region')),
                    'droplet_id': droplet_id,
                }
            )

        if kind == ResourceKind.VOLUME:
            return InventoryRecord(
                kind=kind,
                provider_id=str(raw['id']),
                display_name=raw.get('name', ''),
                attributes={
                    'region': _slug(raw.get('region')),
                    'size': raw.get('size_gigabytes', raw.get('size')),
                    'droplet_ids': _string_list(raw.get('droplet_ids')),
                }
            )

        if kind == ResourceKind.SNAPSHOT:
            return InventoryRecord(
                kind=kind,
                provider_id=str(raw['id']),
                display_name=raw.get('name', ''),
                attributes={
                    'resource_type': raw.get('resource_type'),
                    'resource_id': str(raw['resource_id']) if raw.get('resource_id') is not None else None,
                }
            )

        raise DiscoveryError(f"Unsupported resource kind: {kind}")

    def get_inventory_summary(self) -> Dict[str, Any]:
        """Get summary statistics of the fetched inventory"""
        counts = {kind.value: len(self.records.get(kind, [])) for kind in KIND_ORDER}
        return {
            'total_resources': sum(counts.values()),
            'resource_kinds': counts,
            'context': self.context or 'default',
        }

    def export_inventory(self, output_file: str, export_format: str = 'json'):
        """Export fetched inventory to a JSON or YAML file"""
        logger.info(f"Exporting inventory to {output_file}")

        export_data = {
            'discovery_metadata': {
                'timestamp': time.strftime('%Y-%m-%d %H:%M:%S UTC', time.gmtime()),
                'summary': self.get_inventory_summary(),
            },
            'resources': {
                kind.value: [
                    {
                        'provider_id': record.provider_id,
                        'display_name': record.display_name,
                        'attributes': record.attributes,
                    }
                    for record in self.records.get(kind, [])
                ]
                for kind in KIND_ORDER
            }
        }

        with open(output_file, 'w') as f:
            if export_format == 'yaml':
                yaml.safe_dump(export_data, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(export_data, f, indent=2, default=str)

        logger.info(f"Inventory exported to {output_file}")
