"""
handoff/token_store.py — Single-use verification tokens across the process boundary

Security & Ops
- Purpose: The verifying worker proves a passkey assertion but cannot create a session
  without re-entering itself. It mints a token here; the browser carries it to the
  front door, which consumes it and creates the session.

- Guarantees:
  1) **Unpredictable**: 16 random bytes (`secrets`), rendered as 32 lowercase hex chars.
  2) **Single-use**: `consume` atomically renames the record away before reading it,
     so two concurrent consumers can never both observe it. The record is deleted
     whatever the outcome.
  3) **Short-lived**: valid for `ttl` seconds (default 120) from issuance.
  4) **No path traversal**: the token doubles as a file name, so anything that is not
     exactly 32 lowercase hex chars is rejected before touching the filesystem.

Tunable / Config
- WEBAUTHN_TOKEN_DIR : Directory for token records (created 0700 if missing).
- WEBAUTHN_TOKEN_TTL : Lifetime in seconds.

Storage format
- One file per token: `<dir>/verify-<token>.json`, mode 0600, body `{"username", "timestamp"}`.
"""

from __future__ import annotations

import json
import logging
import os
import re
import secrets
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"^[0-9a-f]{32}$")
DEFAULT_TTL = 120

_PREFIX = "verify-"
_SUFFIX = ".json"


class TokenStore:
    """Filesystem-backed store of pending verification tokens."""

    def __init__(self, directory: str, ttl: int = DEFAULT_TTL, clock: Callable[[], float] = time.time):
        self.directory = directory
        self.ttl = ttl
        self._clock = clock

    def _path(self, token: str) -> str:
        return os.path.join(self.directory, f"{_PREFIX}{token}{_SUFFIX}")

    def _ensure_dir(self) -> None:
        os.makedirs(self.directory, mode=0o700, exist_ok=True)

    def issue(self, username: str) -> str:
        """
        Mint a token for `username` and persist its record (owner-only permissions).

        Returns:
          The 32-char hex token to hand back to the browser.

        Raises:
          OSError if the record cannot be written.
        """
        self._ensure_dir()
        token = secrets.token_hex(16)
        record = json.dumps({"username": username, "timestamp": int(self._clock())})

        # O_EXCL: never overwrite an existing record
        fd = os.open(self._path(token), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(record)

        logger.info("verify token %s... issued for %s", token[:8], username)
        return token

    def consume(self, token: str, remote_addr: Optional[str] = None) -> Optional[str]:
        """
        Redeem a token exactly once.

        Returns:
          The username when the record exists, parses, and is no older than `ttl`;
          otherwise None. The record is gone after this call either way.
        """
        if not isinstance(token, str) or not TOKEN_RE.fullmatch(token):
            logger.warning("malformed verify token rejected (remote=%s)", remote_addr)
            return None

        path = self._path(token)
        claimed = f"{path}.{os.getpid()}.{secrets.token_hex(4)}.claimed"
        try:
            os.rename(path, claimed)
        except FileNotFoundError:
            logger.warning("unknown or already used verify token %s... (remote=%s)", token[:8], remote_addr)
            return None

        try:
            with open(claimed, "r", encoding="utf-8") as f:
                record = json.load(f)
        except (OSError, ValueError):
            logger.warning("unreadable verify token record %s... (remote=%s)", token[:8], remote_addr)
            return None
        finally:
            try:
                os.unlink(claimed)
            except FileNotFoundError:
                pass

        username = record.get("username") if isinstance(record, dict) else None
        issued_at = record.get("timestamp") if isinstance(record, dict) else None
        if not isinstance(username, str) or not username or not isinstance(issued_at, (int, float)):
            logger.warning("malformed verify token record %s... (remote=%s)", token[:8], remote_addr)
            return None

        if self._clock() - issued_at > self.ttl:
            logger.warning("expired verify token %s... for %s (remote=%s)", token[:8], username, remote_addr)
            return None

        logger.info("verify token %s... consumed for %s", token[:8], username)
        return username

    def purge_expired(self) -> int:
        """Delete records older than `ttl` (abandoned ceremonies). Returns the count removed."""
        if not os.path.isdir(self.directory):
            return 0
        now = self._clock()
        removed = 0
        for name in os.listdir(self.directory):
            if not (name.startswith(_PREFIX) and name.endswith(_SUFFIX)):
                continue
            path = os.path.join(self.directory, name)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    issued_at = json.load(f).get("timestamp", 0)
            except (OSError, ValueError, AttributeError):
                issued_at = 0
            if not isinstance(issued_at, (int, float)) or now - issued_at > self.ttl:
                try:
                    os.unlink(path)
                    removed += 1
                except FileNotFoundError:
                    pass
        return removed
