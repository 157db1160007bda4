"""
verifier/gateway.py — Subprocess gateway to the external WebAuthn verifier

Security & Ops
- Purpose: Drive the already-trusted verifier binary for every ceremony step
  (health-check, register-begin/finish, login-begin/finish, credential-manage) and
  normalize whatever it prints into either its inner payload or `{error, message}`.

- Trust boundaries:
  • This module never validates WebAuthn cryptography itself; the helper does.
  • Usernames, device names and origins are attacker-influenced. They are passed
    as single argv elements (`--flag=value`) with no shell in between, so shell
    metacharacters and leading dashes are never interpreted.
  • Assertions are piped on stdin and never logged.

- Session creation:
  • `finish_login` hands the verified username to the handoff token store and
    returns the token. It must never call the session authority: in production this
    code runs inside the same single-threaded worker that serves that authority.

Result envelope (helper stdout)
- {"success": true,  "data": {...}}
- {"success": false, "error": {"code": "...", "message": "..."}}

Error codes
- HELPER_NOT_FOUND : binary missing (callers hide the passkey option).
- EXEC_FAILED      : spawn failure, or non-zero exit with unparsable output.
- PARSE_ERROR      : output not JSON, or JSON without the expected envelope shape.
- anything else    : verifier domain error, passed through (CHALLENGE_EXPIRED, INVALID_ORIGIN, CLONE_WARNING, ...).

Production Readiness / Improvements
- Calls are blocking with no timeout. Wrap the helper with a process-level timeout
  (e.g. `timeout 10 webauthn-helper`) if unbounded latency is unacceptable.
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

HELPER_NOT_FOUND = "HELPER_NOT_FOUND"
EXEC_FAILED = "EXEC_FAILED"
PARSE_ERROR = "PARSE_ERROR"
INVALID_ORIGIN = "INVALID_ORIGIN"

CEREMONY_KINDS = ("register", "login")
MANAGE_ACTIONS = ("list", "delete", "update")

# Short, non-technical text used when the helper does not supply a message.
FRIENDLY_MESSAGES = {
    "CHALLENGE_EXPIRED": "Time limit exceeded. Please try again.",
    INVALID_ORIGIN: "Security Check Failed: Domain mismatch.",
    "CLONE_WARNING": "Security Alert: This key may have been cloned!",
    HELPER_NOT_FOUND: "Passkey service is not installed.",
    EXEC_FAILED: "Passkey service failed to run.",
    PARSE_ERROR: "Passkey service returned an invalid response.",
}

_RAW_LIMIT = 512


def error_result(code: str, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    """Build the normalized `{error, message}` result."""
    out: Dict[str, Any] = {"error": code, "message": message or FRIENDLY_MESSAGES.get(code, "Passkey operation failed.")}
    out.update(extra)
    return out


def is_error(result: Dict[str, Any]) -> bool:
    return isinstance(result, dict) and "error" in result


def rp_id_from_origin(origin: str) -> Optional[str]:
    """Relying-party id = hostname of the request origin (scheme://host[:port])."""
    try:
        parsed = urlparse(origin or "")
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return parsed.hostname


def _flag(name: str, value: Any) -> str:
    return f"--{name}={value}"


class VerifierGateway:
    """
    Invoke the verifier helper and normalize its result envelope.

    Usage:
      gw = VerifierGateway("/usr/libexec/webauthn-helper")
      opts = gw.begin_ceremony("login", "root", "https://router.lan")
      if is_error(opts): show(opts["message"])

    `runner` defaults to `subprocess.run`; tests inject a fake with the same signature.
    """

    def __init__(
        self,
        helper_path: str,
        user_verification: str = "preferred",
        runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
    ):
        self.helper_path = helper_path
        self.user_verification = user_verification
        self._runner = runner or subprocess.run

    # --- Core invocation -------------------------------------------------------------------------

    def invoke(self, args: List[str], stdin_doc: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run the helper with `args` and return its unwrapped payload or a normalized error.

        Never raises for spawn, exit-status or parse failures.
        """
        argv = [self.helper_path, *args]
        stdin_text = json.dumps(stdin_doc, separators=(",", ":")) if stdin_doc is not None else None
        logger.debug("verifier call: %s", args[0] if args else "<none>")

        try:
            proc = self._runner(
                argv,
                input=stdin_text,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            logger.warning("verifier helper not found at %s", self.helper_path)
            return error_result(HELPER_NOT_FOUND)
        except (OSError, ValueError) as e:
            logger.error("verifier helper failed to start: %s", e)
            return error_result(EXEC_FAILED)

        raw = (proc.stdout or "").strip()
        try:
            doc = json.loads(raw)
        except ValueError:
            if proc.returncode != 0:
                logger.error("verifier exited %s: %s", proc.returncode, (proc.stderr or raw)[:_RAW_LIMIT])
                return error_result(EXEC_FAILED, raw=raw[:_RAW_LIMIT])
            logger.error("verifier returned non-JSON output")
            return error_result(PARSE_ERROR, raw=raw[:_RAW_LIMIT])

        return self._unwrap(doc, raw)

    def _unwrap(self, doc: Any, raw: str) -> Dict[str, Any]:
        if not isinstance(doc, dict) or not isinstance(doc.get("success"), bool):
            logger.error("verifier envelope malformed")
            return error_result(PARSE_ERROR, raw=raw[:_RAW_LIMIT])

        if doc["success"]:
            data = doc.get("data", {})
            if data is None:
                data = {}
            if not isinstance(data, dict):
                logger.error("verifier payload is not an object")
                return error_result(PARSE_ERROR, raw=raw[:_RAW_LIMIT])
            return data

        err = doc.get("error")
        if not isinstance(err, dict) or not isinstance(err.get("code"), str):
            logger.error("verifier error envelope malformed")
            return error_result(PARSE_ERROR, raw=raw[:_RAW_LIMIT])
        logger.warning("verifier reported %s", err["code"])
        return error_result(err["code"], err.get("message") or None)

    # --- Operations ------------------------------------------------------------------------------

    def health(self) -> Dict[str, Any]:
        """Return the helper's health payload verbatim, or HELPER_NOT_FOUND if it is absent."""
        return self.invoke(["health-check"])

    def begin_ceremony(
        self,
        kind: str,
        username: str,
        origin: str,
        user_verification: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Start a registration or login ceremony.

        Args:
          kind: "register" or "login".
          username: Identity the ceremony is for.
          origin: Browser origin; its hostname becomes the relying-party id.
          user_verification: Policy override ("required", "preferred", "discouraged").

        Returns:
          The helper's challenge options (`{challengeId, publicKey}`) or a normalized error.
        """
        if kind not in CEREMONY_KINDS:
            raise ValueError(f"unknown ceremony kind: {kind}")
        rp_id = rp_id_from_origin(origin)
        if not rp_id:
            return error_result(INVALID_ORIGIN)
        return self.invoke([
            f"{kind}-begin",
            _flag("username", username),
            _flag("rp-id", rp_id),
            _flag("user-verification", user_verification or self.user_verification),
        ])

    def finish_ceremony(
        self,
        kind: str,
        challenge_id: str,
        origin: str,
        client_assertion: Dict[str, Any],
        device_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Complete a ceremony by piping the browser's credential JSON to the helper.

        `client_assertion` must carry `id`, `type` and `response`; `rawId` defaults to `id`.
        """
        if kind not in CEREMONY_KINDS:
            raise ValueError(f"unknown ceremony kind: {kind}")
        doc = dict(client_assertion)
        doc.setdefault("rawId", doc.get("id"))

        args = [f"{kind}-finish", _flag("challenge-id", challenge_id), _flag("origin", origin)]
        if kind == "register" and device_name:
            args.append(_flag("device-name", device_name))
        return self.invoke(args, stdin_doc=doc)

    def finish_login(
        self,
        challenge_id: str,
        origin: str,
        client_assertion: Dict[str, Any],
        token_store,
    ) -> Dict[str, Any]:
        """
        Verify a login assertion and hand the identity to the front door via a token.

        Returns:
          {"success": True, "verifyToken": <hex>, "username": <str>} on success,
          otherwise the normalized error (no token is issued).
        """
        outcome = self.finish_ceremony("login", challenge_id, origin, client_assertion)
        if is_error(outcome):
            return outcome

        username = outcome.get("username")
        if not isinstance(username, str) or not username:
            logger.error("verifier login outcome carried no username")
            return error_result(PARSE_ERROR)

        token = token_store.issue(username)
        return {"success": True, "verifyToken": token, "username": username}

    def manage(
        self,
        action: str,
        credential_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """List, delete or rename stored credentials via `credential-manage`."""
        if action not in MANAGE_ACTIONS:
            raise ValueError(f"unknown manage action: {action}")
        args = ["credential-manage", action]
        if action in ("delete", "update"):
            if not credential_id:
                return error_result("INVALID_ARGUMENT", "Credential id is required.")
            args.append(_flag("id", credential_id))
        if action == "update":
            args.append(_flag("name", name or ""))
        return self.invoke(args)
