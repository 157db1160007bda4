"""
tests/conftest.py — Shared fakes for the verifier helper and the session authority

Nothing here spawns a process or opens a socket:
  • FakeVerifier stands in for `subprocess.run` inside VerifierGateway.
  • FakeAuthority is an in-memory ubus `session` object.
"""

from __future__ import annotations

import json
import secrets
import subprocess
from pathlib import Path
from typing import Any, Dict

import pytest

from passkey_auth.config import BUNDLED_PLUGIN_DIR, Settings
from passkey_auth.handoff.token_store import TokenStore
from passkey_auth.session.authority import SessionAuthorityError

# --- Fakes ---------------------------------------------------------------------------------------


def ok(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"success": True, "data": data}


def fail(code: str, message: str) -> Dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message}}


class FakeVerifier:
    """
    Scripted replacement for `subprocess.run`.

    `responses` maps a subcommand ("login-finish", "credential-manage list", ...) to
    either an envelope dict (printed as JSON, exit 0) or a `(returncode, stdout)` tuple.
    """

    def __init__(self, responses: Dict[str, Any] | None = None, missing: bool = False):
        self.responses = responses or {}
        self.missing = missing
        self.calls: list[dict] = []

    def __call__(self, argv, input=None, capture_output=False, text=False, check=False):
        self.calls.append({"argv": list(argv), "input": input})
        if self.missing:
            raise FileNotFoundError(argv[0])
        sub = argv[1]
        if sub == "credential-manage":
            sub = f"{sub} {argv[2]}"
        resp = self.responses.get(sub, fail("UNKNOWN_COMMAND", sub))
        if isinstance(resp, tuple):
            rc, out = resp
        else:
            rc, out = 0, json.dumps(resp)
        return subprocess.CompletedProcess(argv, rc, stdout=out, stderr="")

    def subcommands(self) -> list[str]:
        return [c["argv"][1] for c in self.calls]


class FakeAuthority:
    """In-memory session authority with the UbusSessionAuthority method set."""

    def __init__(self, passwords: Dict[str, str] | None = None, down: bool = False, failing_scopes=()):
        self.passwords = passwords or {}
        self.down = down
        self.failing_scopes = set(failing_scopes)
        self.sessions: Dict[str, dict] = {}
        self.destroyed: list[str] = []

    def _up(self) -> None:
        if self.down:
            raise SessionAuthorityError("connection refused")

    def create(self, timeout: int) -> str:
        self._up()
        sid = secrets.token_hex(16)
        self.sessions[sid] = {"timeout": timeout, "values": {}, "grants": set()}
        return sid

    def set(self, sid: str, values: Dict[str, Any]) -> None:
        self._up()
        self.sessions[sid]["values"].update(values)

    def grant(self, sid: str, scope: str, objects) -> None:
        self._up()
        if scope in self.failing_scopes:
            raise SessionAuthorityError(f"grant {scope} denied")
        self.sessions[sid]["grants"].update((scope, obj, perm) for obj, perm in objects)

    def destroy(self, sid: str) -> None:
        self._up()
        self.sessions.pop(sid, None)
        self.destroyed.append(sid)

    def login(self, username: str, password: str, timeout: int):
        if self.down or self.passwords.get(username) != password:
            return None
        return self.create(timeout)


# --- Fixtures ------------------------------------------------------------------------------------

ACL_DOC = {
    "luci-base": {
        "description": "Base access",
        "read": {
            "ubus": {"luci": ["getVersion", "getFeatures"]},
            "uci": ["luci"],
            "file": {"/etc/openwrt_release": ["read"]},
        },
        "write": {
            "uci": ["luci"],
            "cgi-io": ["upload"],
        },
    },
    "luci-mod-status": {
        "read": {"ubus": {"system": ["info", "board"]}},
    },
}


@pytest.fixture
def acl_dir(tmp_path: Path) -> Path:
    d = tmp_path / "acl.d"
    d.mkdir()
    (d / "luci-base.json").write_text(json.dumps(ACL_DOC))
    (d / "broken.json").write_text("{ not json")
    (d / "notes.txt").write_text("ignored")
    return d


@pytest.fixture
def token_dir(tmp_path: Path) -> Path:
    return tmp_path / "tokens"


@pytest.fixture
def token_store(token_dir: Path) -> TokenStore:
    return TokenStore(str(token_dir), ttl=120)


@pytest.fixture
def fake_authority() -> FakeAuthority:
    return FakeAuthority(passwords={"root": "secret"})


@pytest.fixture
def settings(tmp_path: Path, acl_dir: Path, token_dir: Path) -> Settings:
    return Settings(
        helper_path=str(tmp_path / "webauthn-helper"),
        token_dir=str(token_dir),
        acl_dir=str(acl_dir),
        plugin_dir=BUNDLED_PLUGIN_DIR,
    )
