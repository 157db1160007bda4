"""
session/acl.py — Translate access-control descriptors into session grant calls

Descriptor schema (one JSON document per file in ACL_DIR):
  {
    "<group>": {
      "description": "...",
      "read":  {"ubus": {"<object>": ["<method>", ...]}, "uci": ["<config>", ...],
                "file": {"<path>": ["<op>", ...]}},
      "write": {"ubus": {...}, "uci": [...], "file": {...}, "cgi-io": ["<op>", ...]}
    }
  }

Every group yields an `access-group` grant per direction it declares, followed by
its ubus, uci, file and cgi-io grants. A descriptor that cannot be read or parsed
is skipped; so is a group or section with the wrong shape.
"""

from __future__ import annotations

import glob
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Tuple

logger = logging.getLogger(__name__)

SCOPE_ACCESS_GROUP = "access-group"
SCOPE_UBUS = "ubus"
SCOPE_UCI = "uci"
SCOPE_FILE = "file"
SCOPE_CGI_IO = "cgi-io"

ACCESS_DIRECTIONS = ("read", "write")


@dataclass(frozen=True)
class GrantCall:
    scope: str
    objects: Tuple[Tuple[str, str], ...]

    def as_objects(self) -> List[List[str]]:
        return [[obj, perm] for obj, perm in self.objects]


def load_descriptors(acl_dir: str) -> Iterator[Tuple[str, Dict[str, Any]]]:
    """Yield `(path, document)` for every parseable descriptor, in file-name order."""
    for path in sorted(glob.glob(os.path.join(acl_dir, "*.json"))):
        try:
            with open(path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("skipping access descriptor %s: %s", path, e)
            continue
        if not isinstance(doc, dict):
            logger.warning("skipping access descriptor %s: not an object", path)
            continue
        yield path, doc


def _pairs_from_mapping(section: Any) -> Tuple[Tuple[str, str], ...]:
    if not isinstance(section, dict):
        return ()
    pairs = []
    for obj, perms in section.items():
        if isinstance(perms, list):
            pairs.extend((obj, str(p)) for p in perms if isinstance(p, str))
    return tuple(pairs)


def _pairs_from_list(section: Any, perm: str) -> Tuple[Tuple[str, str], ...]:
    if not isinstance(section, list):
        return ()
    return tuple((name, perm) for name in section if isinstance(name, str))


def grants_for_group(group: str, spec: Any) -> List[GrantCall]:
    """Expand one group's read/write declarations into grant calls."""
    if not isinstance(spec, dict):
        return []

    calls: List[GrantCall] = []
    for access in ACCESS_DIRECTIONS:
        perms = spec.get(access)
        if perms is True:
            perms = {}
        if not isinstance(perms, dict):
            continue

        calls.append(GrantCall(SCOPE_ACCESS_GROUP, ((group, access),)))
        for scope, objects in (
            (SCOPE_UBUS, _pairs_from_mapping(perms.get("ubus"))),
            (SCOPE_UCI, _pairs_from_list(perms.get("uci"), access)),
            (SCOPE_FILE, _pairs_from_mapping(perms.get("file"))),
            (SCOPE_CGI_IO, _pairs_from_list(perms.get("cgi-io"), access)),
        ):
            if objects:
                calls.append(GrantCall(scope, objects))
    return calls


def plan_grants(acl_dir: str) -> List[GrantCall]:
    """All grant calls implied by the descriptors in `acl_dir`."""
    calls: List[GrantCall] = []
    for _path, doc in load_descriptors(acl_dir):
        for group, spec in doc.items():
            calls.extend(grants_for_group(group, spec))
    return calls
