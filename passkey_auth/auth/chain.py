"""
auth/chain.py — Drive the ordered plugin chain for one login attempt

Per-attempt state machine
-------------------------
  Unchallenged -> Pending(plugin) -> Verified | Rejected
  Unchallenged -> Authenticated   (no plugin requires a factor)
  Unchallenged -> Authenticated   (a plugin's check hands back a ready session)

Error hygiene
-------------
- A plugin whose `check` raises contributes nothing; the chain carries on.
- A plugin whose `verify` raises fails the attempt with a generic message.
- Plugin exceptions are logged here and never reach the HTTP layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .registry import AuthPlugin, PluginRegistry

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Authentication failed"


@dataclass
class ChallengeResult:
    required: bool = False
    fields: List[Dict[str, Any]] = field(default_factory=list)
    html: Optional[str] = None
    message: str = ""
    session: Any = None

    @classmethod
    def coerce(cls, value: Any) -> "ChallengeResult":
        if isinstance(value, ChallengeResult):
            return value
        if not isinstance(value, dict):
            return cls()
        fields = value.get("fields") or []
        return cls(
            required=value.get("required") is True,
            fields=list(fields) if isinstance(fields, (list, tuple)) else [],
            html=value.get("html") or None,
            message=value.get("message") or "",
            session=value.get("session"),
        )


@dataclass
class ChallengeOutcome:
    pending: bool
    plugin: Optional[str] = None
    fields: List[Dict[str, Any]] = field(default_factory=list)
    message: str = ""
    html: Optional[str] = None
    session: Any = None


@dataclass
class VerifyOutcome:
    success: bool
    message: Optional[str] = None
    plugin: Optional[str] = None


class AuthChain:
    def __init__(self, registry: PluginRegistry):
        self.registry = registry

    def _check(self, plugin: AuthPlugin, ctx, user: str) -> Optional[ChallengeResult]:
        # check results are remembered on the context for the rest of the attempt
        memo = getattr(ctx, "checks", None)
        if memo is not None and plugin.name in memo:
            return memo[plugin.name]
        try:
            result = ChallengeResult.coerce(plugin.check(ctx, user))
        except Exception:
            logger.exception("auth plugin %s: check failed", plugin.name)
            result = None
        if memo is not None:
            memo[plugin.name] = result
        return result

    def collect_challenge(self, ctx, user: str) -> ChallengeOutcome:
        """Ask every plugin what the login page needs and whether a factor is pending."""
        pending: Optional[AuthPlugin] = None
        fields: List[Dict[str, Any]] = []
        messages: List[str] = []
        required_html: List[str] = []
        decoration: List[str] = []
        session = None

        for plugin in self.registry.plugins():
            result = self._check(plugin, ctx, user)
            if result is None:
                continue

            if result.session is not None and pending is None and session is None:
                session = result.session

            if result.required:
                if pending is None:
                    pending = plugin
                fields.extend(result.fields)
                if result.html:
                    required_html.append(result.html)
                if result.message:
                    messages.append(result.message)
            elif result.html:
                decoration.append(result.html)

        if pending is not None:
            return ChallengeOutcome(
                pending=True,
                plugin=pending.name,
                fields=fields,
                message="\n".join(messages),
                html="\n".join(required_html) or None,
                session=session,
            )
        return ChallengeOutcome(
            pending=False,
            html="\n".join(decoration) or None,
            session=session,
        )

    def verify_challenge(self, ctx, user: str) -> VerifyOutcome:
        """Run `verify` on every plugin that requires a factor; first failure wins."""
        for plugin in self.registry.plugins():
            result = self._check(plugin, ctx, user)
            if result is None or not result.required:
                continue

            try:
                outcome = plugin.verify(ctx, user)
            except Exception:
                logger.exception("auth plugin %s: verify failed", plugin.name)
                return VerifyOutcome(success=False, message=GENERIC_FAILURE, plugin=plugin.name)

            if not isinstance(outcome, dict) or outcome.get("success") is not True:
                message = outcome.get("message") if isinstance(outcome, dict) else None
                logger.warning("auth plugin %s rejected %s (remote=%s)", plugin.name, user,
                               getattr(ctx, "remote_addr", None))
                return VerifyOutcome(success=False, message=message or GENERIC_FAILURE, plugin=plugin.name)

        return VerifyOutcome(success=True)
