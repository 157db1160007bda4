"""
verifier/health.py — Is the passkey option available at all?

The login widget is only offered when the verifier helper is installed and its
`health-check` reports `status: ok`. Anything else hides the feature silently.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict

from .gateway import VerifierGateway, is_error


def passkey_available(gateway: VerifierGateway) -> bool:
    """True iff the helper answered its health check with status "ok"."""
    result = gateway.health()
    return not is_error(result) and result.get("status") == "ok"


@dataclass
class Diagnostics:
    """Operator-facing snapshot of the verifier installation."""
    helper_path: str
    present: bool
    executable: bool
    available: bool
    health: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def diagnose(gateway: VerifierGateway) -> Diagnostics:
    path = gateway.helper_path
    health = gateway.health()
    return Diagnostics(
        helper_path=path,
        present=os.path.isfile(path),
        executable=os.access(path, os.X_OK),
        available=not is_error(health) and health.get("status") == "ok",
        health=health,
    )
