#!/usr/bin/env python3
"""
Resource Name Sanitization

Maps provider display names onto deterministic identifiers that are safe to use
as Terraform resource names and output map keys.
"""

import logging
import re
from collections import defaultdict
from typing import Dict, Set, Tuple

logger = logging.getLogger(__name__)

_INVALID_CHARS = re.compile(r'[^a-z0-9]')


def sanitize_name(name: str) -> str:
    """
    Lowercase ``name`` and replace every character outside ``[a-z0-9]`` with ``_``.

    Runs of invalid characters are not collapsed: ``"A  B"`` becomes ``"a__b"``.
    Only ASCII letters are case-folded, so non-ASCII characters always become ``_``.
    """
    if not name:
        return ""
    lowered = ''.join(ch.lower() if 'A' <= ch <= 'Z' else ch for ch in str(name))
    return _INVALID_CHARS.sub('_', lowered)


class NameRegistry:
    """
    Hands out unique sanitized names within one addressing scope

    A scope is a (category, label) pair, e.g. ("compute", "droplet"). The first
    resource to claim a sanitized name keeps it; later resources colliding on the
    same name get the sanitized provider id appended.
    """

    def __init__(self):
        self._used: Dict[Tuple[str, str], Set[str]] = defaultdict(set)

    def claim(self, category: str, label: str, display_name: str, provider_id: str) -> str:
        scope = (category, label)
        used = self._used[scope]
        suffix = sanitize_name(str(provider_id))

        name = sanitize_name(display_name)
        if not name:
            name = f"unnamed_{suffix}"

        if name in used:
            candidate = f"{name}_{suffix}"
            counter = 2
            while candidate in used:
                candidate = f"{name}_{suffix}_{counter}"
                counter += 1
            logger.warning(
                f"Name collision in {category}.{label}: '{display_name}' "
                f"(ID: {provider_id}) renamed to '{candidate}'"
            )
            name = candidate

        used.add(name)
        return name

    def names(self, category: str, label: str) -> Set[str]:
        return set(self._used[(category, label)])
