"""
session/authority.py — Client for the ubus `session` object (the session authority)

Overview
--------
The session authority owns session lifecycle and permission grants. It is reached
through the ubus JSON-RPC HTTP endpoint:

  POST UBUS_URL {"jsonrpc": "2.0", "id": n, "method": "call",
                 "params": [<sid>, "session", <method>, {...}]}
  -> {"result": [<status>, {...}]}   (status 0 = OK)

Security & Ops
--------------
- Calls are made with a privileged session id (UBUS_SID) that is allowed to use
  `session create/set/grant/destroy/login`. Keep it out of browser reach.
- This client must only run in the front-door process. Calling it from the
  verifying worker would block that worker on itself.

Tunable / Config (env)
----------------------
- UBUS_URL : JSON-RPC endpoint (default http://127.0.0.1/ubus)
- UBUS_SID : privileged session id
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

UBUS_STATUS_OK = 0


class SessionAuthorityError(RuntimeError):
    """Transport failure or non-zero ubus status from the session authority."""


class UbusSessionAuthority:
    """Thin JSON-RPC wrapper over the ubus `session` object."""

    def __init__(self, url: str, sid: str, timeout: float = 10.0, http: Optional[requests.Session] = None):
        self.url = url
        self.sid = sid
        self.timeout = timeout
        self._http = http or requests.Session()
        self._ids = itertools.count(1)

    def call(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "call",
            "params": [self.sid, "session", method, params],
        }
        try:
            r = self._http.post(self.url, json=payload, timeout=self.timeout)
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError) as e:
            raise SessionAuthorityError(f"session.{method} unreachable: {e}") from e

        if not isinstance(body, dict):
            raise SessionAuthorityError(f"session.{method}: malformed reply")
        if "error" in body:
            err = body["error"]
            message = err.get("message") if isinstance(err, dict) else err
            raise SessionAuthorityError(f"session.{method}: {message or 'rpc error'}")

        result = body.get("result")
        if not isinstance(result, list) or not result:
            raise SessionAuthorityError(f"session.{method}: malformed result")
        if result[0] != UBUS_STATUS_OK:
            raise SessionAuthorityError(f"session.{method}: ubus status {result[0]}")
        data = result[1] if len(result) > 1 else {}
        return data if isinstance(data, dict) else {}

    # --- session object methods ------------------------------------------------------------------

    def create(self, timeout: int) -> str:
        data = self.call("create", {"timeout": timeout})
        sid = data.get("ubus_rpc_session")
        if not sid:
            raise SessionAuthorityError("session.create returned no session id")
        return sid

    def set(self, sid: str, values: Dict[str, Any]) -> None:
        self.call("set", {"ubus_rpc_session": sid, "values": values})

    def grant(self, sid: str, scope: str, objects: List[List[str]]) -> None:
        self.call("grant", {"ubus_rpc_session": sid, "scope": scope, "objects": objects})

    def destroy(self, sid: str) -> None:
        self.call("destroy", {"ubus_rpc_session": sid})

    def login(self, username: str, password: str, timeout: int) -> Optional[str]:
        """Password login. Returns the new session id, or None on bad credentials."""
        try:
            data = self.call("login", {"username": username, "password": password, "timeout": timeout})
        except SessionAuthorityError as e:
            logger.info("password login rejected for %s: %s", username, e)
            return None
        return data.get("ubus_rpc_session")
