"""
session/bootstrap.py — Create a fully-privileged session for a passkey-verified user

Security & Ops
- Purpose: Password logins get their grants from inside the session authority
  (`session login` replays the ACL descriptors). A passkey login bypasses that path,
  so this module reproduces it: create the session, store `username` and a fresh
  per-session `token`, then replay every descriptor grant.

- Failure policy:
  • Authority unreachable or `create`/`set` failing → return None (caller treats it as
    an authentication failure, not something to retry). Half-created sessions are destroyed.
  • A single grant call failing is logged and skipped; the rest still apply.
  • Unreadable descriptors are skipped (see session/acl.py).

- Context: front door only. Never call from the verifying worker.

Tunable / Config
- SESSION_TIMEOUT : session timeout in seconds
- ACL_DIR         : descriptor directory
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple

from .acl import plan_grants
from .authority import SessionAuthorityError

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """
    Authenticated context handed back to the front door.

    Fields:
      id     : ubus session id (becomes the `sysauth` cookie).
      values : at least `username` and the anti-tamper `token`.
      grants : (scope, object, permission) triples successfully granted.
    """
    id: str
    values: Dict[str, Any]
    grants: Set[Tuple[str, str, str]] = field(default_factory=set)

    @property
    def username(self) -> str:
        return self.values.get("username", "")


class SessionBootstrap:
    def __init__(self, authority, acl_dir: str, timeout: int = 3600):
        self.authority = authority
        self.acl_dir = acl_dir
        self.timeout = timeout

    def create_session(self, username: str) -> Optional[Session]:
        """
        Create a session for `username` with the full descriptor grant set.

        Returns:
          Session on success, None if the authority is unreachable or refuses the session.
        """
        # 1) Session + values
        try:
            sid = self.authority.create(self.timeout)
        except SessionAuthorityError as e:
            logger.error("session create failed for %s: %s", username, e)
            return None

        values = {"username": username, "token": secrets.token_hex(16)}
        try:
            self.authority.set(sid, values)
        except SessionAuthorityError as e:
            logger.error("session set failed for %s: %s", username, e)
            self._discard(sid)
            return None

        session = Session(id=sid, values=values)

        # 2) Grants, one call per scope, independently
        for call in plan_grants(self.acl_dir):
            try:
                self.authority.grant(sid, call.scope, call.as_objects())
            except SessionAuthorityError as e:
                logger.warning("grant %s %s failed for %s: %s", call.scope, call.objects[:1], username, e)
                continue
            session.grants.update((call.scope, obj, perm) for obj, perm in call.objects)

        logger.info("session created for %s with %d grants", username, len(session.grants))
        return session

    def _discard(self, sid: str) -> None:
        try:
            self.authority.destroy(sid)
        except SessionAuthorityError as e:
            logger.warning("could not destroy half-created session: %s", e)
