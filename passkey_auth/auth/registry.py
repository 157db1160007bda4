"""
auth/registry.py — Discover authentication plugins once per process

Plugin module contract
----------------------
A `*.py` file in the plugin directory qualifies when it (or its module-level
`plugin` object) exposes:

  name: str
  priority: int             (optional, default 50; lower runs first)
  check(ctx, user)  -> {"required": bool, "fields": [...], "html": str, "message": str, "session"?: Session}
  verify(ctx, user) -> {"success": bool, "message"?: str}

Files starting with "_" are ignored. A module that fails to import, or lacks the
shape above, is skipped without affecting the others. Plugins disabled in
configuration never enter the cache.

Lifecycle
---------
`PluginRegistry.plugins()` scans on first use and caches the ordered result until
`invalidate()` (or a process restart). With the global switch off it returns an
empty list and never touches the directory.
"""

from __future__ import annotations

import importlib.util
import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, List, Optional

from ..config import Settings

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 50


@dataclass(frozen=True)
class AuthPlugin:
    name: str
    priority: int
    check: Callable[..., Any]
    verify: Callable[..., Any]
    source: str = ""


def _load_module(path: str):
    stem = os.path.splitext(os.path.basename(path))[0]
    spec = importlib.util.spec_from_file_location(f"passkey_auth_plugin_{stem}", path)
    if spec is None or spec.loader is None:
        return None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _as_plugin(module, path: str) -> Optional[AuthPlugin]:
    obj = getattr(module, "plugin", module)
    name = getattr(obj, "name", None)
    check = getattr(obj, "check", None)
    verify = getattr(obj, "verify", None)
    if not isinstance(name, str) or not name or not callable(check) or not callable(verify):
        return None
    priority = getattr(obj, "priority", DEFAULT_PRIORITY)
    if isinstance(priority, bool) or not isinstance(priority, int):
        priority = DEFAULT_PRIORITY
    return AuthPlugin(name=name, priority=priority, check=check, verify=verify, source=path)


class PluginRegistry:
    """Process-wide, once-initialized plugin cache."""

    def __init__(self, plugin_dir: str, enabled: bool = True, disabled: FrozenSet[str] = frozenset()):
        self.plugin_dir = plugin_dir
        self.enabled = enabled
        self.disabled = frozenset(disabled)
        self._cache: Optional[List[AuthPlugin]] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PluginRegistry":
        return cls(settings.plugin_dir, settings.plugins_enabled, settings.disabled_plugins)

    def plugins(self) -> List[AuthPlugin]:
        """Ordered plugins (ascending priority, ties in discovery order)."""
        if not self.enabled:
            return []
        with self._lock:
            if self._cache is None:
                self._cache = self._discover()
            return list(self._cache)

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None

    def _discover(self) -> List[AuthPlugin]:
        try:
            names = sorted(os.listdir(self.plugin_dir))
        except OSError as e:
            logger.warning("plugin directory %s unreadable: %s", self.plugin_dir, e)
            return []

        found: List[AuthPlugin] = []
        for fname in names:
            if not fname.endswith(".py") or fname.startswith("_"):
                continue
            path = os.path.join(self.plugin_dir, fname)
            try:
                module = _load_module(path)
            except Exception as e:
                logger.warning("skipping plugin %s: %s", fname, e)
                continue
            plugin = _as_plugin(module, path) if module is not None else None
            if plugin is None:
                logger.debug("skipping %s: not an auth plugin", fname)
                continue
            if plugin.name in self.disabled:
                logger.info("plugin %s disabled by configuration", plugin.name)
                continue
            found.append(plugin)

        found.sort(key=lambda p: p.priority)
        logger.info("auth plugins: %s", ", ".join(f"{p.name}({p.priority})" for p in found) or "<none>")
        return found
