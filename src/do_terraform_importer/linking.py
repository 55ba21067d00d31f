#!/usr/bin/env python3
"""
Cross-Module Reference Linking

Resources in one module that point at a droplet reference it through the compute
module's exported id map instead of a hard-coded provider id, so that recreating
the droplet never orphans the reference.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

CATEGORY_ORDER = ['compute', 'database', 'network', 'storage']


class Expression(str):
    """A raw HCL expression, rendered without quoting"""


@dataclass(frozen=True)
class ModuleInput:
    """Producer output wired into a consumer module variable"""
    producer: str
    output: str
    consumer: str
    variable: str
    description: str = ""
    type: str = "map(string)"


DROPLET_IDS_INPUT = ModuleInput(
    producer='compute',
    output='droplet_ids',
    consumer='network',
    variable='droplet_ids_by_name',
    description='Droplet IDs keyed by sanitized droplet name, exported by the compute module',
)


class CrossReferenceLinker:
    """Resolves droplet references for modules other than compute"""

    def __init__(self):
        self._droplet_names: Dict[str, str] = {}
        self.inputs: List[ModuleInput] = []

    def register_droplet(self, provider_id: str, name: str):
        self._droplet_names[str(provider_id)] = name

    def droplet_name(self, provider_id: str) -> Optional[str]:
        return self._droplet_names.get(str(provider_id))

    def reference_droplet(self, provider_id: str, consumer: str) -> Optional[Expression]:
        """
        Build a reference to a droplet from within ``consumer``

        Returns None when the droplet is not part of the discovered inventory.
        """
        name = self.droplet_name(provider_id)
        if name is None:
            logger.warning(f"WARN: droplet {provider_id} is not in the inventory; reference from {consumer} dropped")
            return None

        module_input = ModuleInput(
            producer=DROPLET_IDS_INPUT.producer,
            output=DROPLET_IDS_INPUT.output,
            consumer=consumer,
            variable=DROPLET_IDS_INPUT.variable,
            description=DROPLET_IDS_INPUT.description,
        )
        self.require(module_input)
        return Expression(f'var.{module_input.variable}["{name}"]')

    def require(self, module_input: ModuleInput):
        if module_input not in self.inputs:
            self.inputs.append(module_input)

    def inputs_for(self, consumer: str) -> List[ModuleInput]:
        return [i for i in self.inputs if i.consumer == consumer]

    def validate(self):
        """Reject any input whose producer is not evaluated before its consumer"""
        for module_input in self.inputs:
            if module_input.producer not in CATEGORY_ORDER or module_input.consumer not in CATEGORY_ORDER:
                raise ValueError(f"Unknown module in input wiring: {module_input}")
            if CATEGORY_ORDER.index(module_input.producer) >= CATEGORY_ORDER.index(module_input.consumer):
                raise ValueError(
                    f"Module {module_input.consumer} cannot consume {module_input.producer}.{module_input.output}: "
                    f"{module_input.producer} is not evaluated first"
                )
