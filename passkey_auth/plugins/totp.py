"""
plugins/totp.py — One-time code (RFC 6238) second factor

Users listed in TOTP_SECRETS_FILE (`{"<username>": "<base32 secret>"}`) must supply
a 6-digit code in `totp_code` after their primary credential. One step of clock
drift is accepted either side.
"""

from __future__ import annotations

import base64
import json
import logging
import time

from cryptography.hazmat.primitives.hashes import SHA1
from cryptography.hazmat.primitives.twofactor import InvalidToken
from cryptography.hazmat.primitives.twofactor.totp import TOTP

logger = logging.getLogger(__name__)

name = "totp"
priority = 60

CODE_FIELD = "totp_code"
DIGITS = 6
STEP = 30
DRIFT_STEPS = 1


def _secret_for(ctx, user):
    res = ctx.resources
    path = res.settings.totp_secrets_file if res is not None else None
    if not path or not user:
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            secrets_doc = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("TOTP secrets unreadable: %s", e)
        return None
    secret = secrets_doc.get(user) if isinstance(secrets_doc, dict) else None
    return secret if isinstance(secret, str) and secret else None


def _decode_secret(secret: str) -> bytes:
    s = secret.replace(" ", "").upper()
    return base64.b32decode(s + "=" * (-len(s) % 8))


def code_matches(secret: str, code: str, now: float) -> bool:
    if len(code) != DIGITS or not code.isdigit():
        return False
    totp = TOTP(_decode_secret(secret), DIGITS, SHA1(), STEP, enforce_key_length=False)
    for drift in range(-DRIFT_STEPS, DRIFT_STEPS + 1):
        try:
            totp.verify(code.encode("ascii"), int(now) + drift * STEP)
            return True
        except InvalidToken:
            continue
    return False


def check(ctx, user):
    if _secret_for(ctx, user) is None:
        return {"required": False}
    return {
        "required": True,
        "fields": [{
            "name": CODE_FIELD,
            "label": "One-time code",
            "type": "text",
            "inputmode": "numeric",
            "autocomplete": "one-time-code",
        }],
        "message": "Enter the code from your authenticator app.",
    }


def verify(ctx, user):
    secret = _secret_for(ctx, user)
    if secret is None:
        return {"success": False, "message": "Authentication failed"}
    if code_matches(secret, ctx.param(CODE_FIELD).strip(), time.time()):
        return {"success": True}
    return {"success": False, "message": "Invalid one-time code"}
