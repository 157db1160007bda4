"""
auth/context.py — What a plugin sees when the front door asks it to check or verify.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..config import Settings


@dataclass
class Resources:
    """Services shared by all plugins in the front-door process."""
    settings: Settings
    gateway: Any = None        # verifier.gateway.VerifierGateway
    token_store: Any = None    # handoff.token_store.TokenStore
    bootstrap: Any = None      # session.bootstrap.SessionBootstrap


@dataclass
class RequestContext:
    form: Dict[str, str] = field(default_factory=dict)
    remote_addr: Optional[str] = None
    origin: Optional[str] = None
    resources: Optional[Resources] = None
    checks: Dict[str, Any] = field(default_factory=dict)

    def param(self, name: str, default: str = "") -> str:
        value = self.form.get(name, default)
        return value if isinstance(value, str) else default
