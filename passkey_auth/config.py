"""
config.py — Environment-driven settings for the passkey login bridge

Tunable / Config (env)
----------------------
- WEBAUTHN_HELPER            : Path to the external verifier binary (default /usr/libexec/webauthn-helper)
- WEBAUTHN_USER_VERIFICATION : Default user-verification policy sent to the verifier (default "preferred")
- WEBAUTHN_DEFAULT_USER      : Identity the login widget authenticates as (default "root")
- WEBAUTHN_TOKEN_DIR         : Directory holding handoff tokens (default /tmp/webauthn-tokens)
- WEBAUTHN_TOKEN_TTL         : Handoff token lifetime in seconds (default 120)
- AUTH_PLUGINS_ENABLED       : "true"/"false"; global switch for the plugin chain (default true)
- AUTH_PLUGIN_DIR            : Directory scanned for auth plugins (default: bundled plugins/)
- AUTH_PLUGINS_DISABLED      : Comma-separated plugin names to exclude
- UBUS_URL                   : Session authority JSON-RPC endpoint (default http://127.0.0.1/ubus)
- UBUS_SID                   : Privileged ubus session used to call the `session` object
- SESSION_TIMEOUT            : Timeout (seconds) for created sessions (default 3600)
- ACL_DIR                    : Access-control descriptor directory (default /usr/share/rpcd/acl.d)
- TOTP_SECRETS_FILE          : JSON map username -> base32 secret for the one-time-code plugin

Operational Guidance
--------------------
- The verifying context (rpc_api) and the front door (api) read the same variables;
  WEBAUTHN_TOKEN_DIR must point to the same directory in both processes.
- Keep WEBAUTHN_TOKEN_DIR on a local tmpfs owned by the service user.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Optional

BUNDLED_PLUGIN_DIR = str(Path(__file__).resolve().parent / "plugins")

_TRUE = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool) -> bool:
    """Read a boolean env var ("1/true/yes/on" are true)."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_list(name: str) -> FrozenSet[str]:
    raw = os.getenv(name, "")
    return frozenset(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    helper_path: str = "/usr/libexec/webauthn-helper"
    user_verification: str = "preferred"
    default_user: str = "root"
    token_dir: str = "/tmp/webauthn-tokens"
    token_ttl: int = 120
    plugins_enabled: bool = True
    plugin_dir: str = BUNDLED_PLUGIN_DIR
    disabled_plugins: FrozenSet[str] = field(default_factory=frozenset)
    ubus_url: str = "http://127.0.0.1/ubus"
    ubus_sid: str = "00000000000000000000000000000000"
    session_timeout: int = 3600
    acl_dir: str = "/usr/share/rpcd/acl.d"
    totp_secrets_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            helper_path=os.getenv("WEBAUTHN_HELPER", cls.helper_path),
            user_verification=os.getenv("WEBAUTHN_USER_VERIFICATION", cls.user_verification),
            default_user=os.getenv("WEBAUTHN_DEFAULT_USER", cls.default_user),
            token_dir=os.getenv("WEBAUTHN_TOKEN_DIR", cls.token_dir),
            token_ttl=_env_int("WEBAUTHN_TOKEN_TTL", cls.token_ttl),
            plugins_enabled=env_flag("AUTH_PLUGINS_ENABLED", True),
            plugin_dir=os.getenv("AUTH_PLUGIN_DIR", BUNDLED_PLUGIN_DIR),
            disabled_plugins=_env_list("AUTH_PLUGINS_DISABLED"),
            ubus_url=os.getenv("UBUS_URL", cls.ubus_url),
            ubus_sid=os.getenv("UBUS_SID", cls.ubus_sid),
            session_timeout=_env_int("SESSION_TIMEOUT", cls.session_timeout),
            acl_dir=os.getenv("ACL_DIR", cls.acl_dir),
            totp_secrets_file=os.getenv("TOTP_SECRETS_FILE") or None,
        )

    def plugin_disabled(self, name: str) -> bool:
        return name in self.disabled_plugins
