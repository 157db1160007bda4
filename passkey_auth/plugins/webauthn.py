"""
plugins/webauthn.py — Passkey login plugin

Two jobs, neither of which is a mandatory factor (`required` is always False):
  1) Login page: when the verifier is healthy, inject the passkey button + script.
     When it is not, contribute nothing so the option silently disappears.
  2) Token redemption: when the form carries `webauthn_verify_token`, consume it and
     create the session here, in the front-door process. The resulting session
     short-circuits the password step.
"""

from __future__ import annotations

import html
import logging

from passkey_auth.verifier.health import passkey_available

logger = logging.getLogger(__name__)

name = "webauthn"
priority = 20

TOKEN_FIELD = "webauthn_verify_token"
SCRIPT_URL = "/luci-static/resources/view/system/webauthn-login.js"

_WIDGET = (
    '<div class="cbi-value" id="webauthn-login" data-username="{user}">'
    '<button type="button" class="btn cbi-button" id="webauthn-login-btn" disabled>'
    "Sign in with passkey</button>"
    '<div id="webauthn-status" class="alert-message" style="display:none"></div>'
    "</div>"
    '<script src="{script}"></script>'
)


def _widget(user: str) -> str:
    return _WIDGET.format(user=html.escape(user, quote=True), script=SCRIPT_URL)


def check(ctx, user):
    res = ctx.resources
    if res is None:
        return {"required": False}

    token = ctx.param(TOKEN_FIELD)
    if token:
        username = res.token_store.consume(token, remote_addr=ctx.remote_addr)
        if not username:
            return {"required": False}
        session = res.bootstrap.create_session(username)
        if session is None:
            logger.error("passkey login for %s: session creation failed (remote=%s)", username, ctx.remote_addr)
            return {"required": False}
        return {"required": False, "session": session}

    if not passkey_available(res.gateway):
        return {"required": False}
    return {"required": False, "html": _widget(user or res.settings.default_user)}


def verify(ctx, user):
    return {"success": True}
