"""
server/api.py — Front-door login (session-creating context)

Overview
--------
GET  /login  renders the login form with whatever the plugin chain injects
             (extra fields, passkey widget markup).
POST /login  runs one login attempt:
               1) collect_challenge; a plugin may hand back a ready session
                  (passkey handoff token redeemed by plugins/webauthn.py),
               2) otherwise password login against the session authority,
               3) if a plugin requires a factor, verify_challenge; on failure the
                  fresh session is destroyed,
               4) success → 302 to "/" with the `sysauth` session cookie.

Security & Ops
--------------
- Client-facing failures are one short message; codes, usernames and remote
  addresses go to the server log only.
- Cookie: HttpOnly, SameSite=Strict, Secure when the request arrived over https.
- This process may call the session authority; the verifying worker may not.

Tunable / Config (env)
----------------------
- UBUS_URL, UBUS_SID, SESSION_TIMEOUT, ACL_DIR
- AUTH_PLUGINS_ENABLED, AUTH_PLUGIN_DIR, AUTH_PLUGINS_DISABLED
- WEBAUTHN_HELPER, WEBAUTHN_TOKEN_DIR, WEBAUTHN_TOKEN_TTL, TOTP_SECRETS_FILE
"""

from __future__ import annotations

import html
import logging
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from ..auth.chain import GENERIC_FAILURE, AuthChain, ChallengeOutcome
from ..auth.context import RequestContext, Resources
from ..auth.registry import PluginRegistry
from ..config import Settings
from ..handoff.token_store import TokenStore
from ..session.authority import SessionAuthorityError, UbusSessionAuthority
from ..session.bootstrap import SessionBootstrap
from ..verifier.gateway import VerifierGateway

logger = logging.getLogger(__name__)

SESSION_COOKIE = "sysauth"

app = FastAPI(title="Router admin login")


# --- Dependencies --------------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def get_authority(settings: Settings = Depends(get_settings)) -> UbusSessionAuthority:
    return UbusSessionAuthority(settings.ubus_url, settings.ubus_sid)


def get_resources(
    settings: Settings = Depends(get_settings),
    authority: UbusSessionAuthority = Depends(get_authority),
) -> Resources:
    return Resources(
        settings=settings,
        gateway=VerifierGateway(settings.helper_path, settings.user_verification),
        token_store=TokenStore(settings.token_dir, settings.token_ttl),
        bootstrap=SessionBootstrap(authority, settings.acl_dir, settings.session_timeout),
    )


@lru_cache(maxsize=1)
def _process_chain() -> AuthChain:
    return AuthChain(PluginRegistry.from_settings(get_settings()))


def get_chain() -> AuthChain:
    return _process_chain()


# --- Rendering -----------------------------------------------------------------------------------

_PAGE = """<!doctype html>
<html><head><meta charset="utf-8"><title>Authorization Required</title></head>
<body>
<h2>Authorization Required</h2>
{error}
<form method="post" action="/login">
<input type="text" name="luci_username" value="{username}" autocomplete="username">
<input type="password" name="luci_password" autocomplete="current-password">
{fields}
<button type="submit">Log in</button>
</form>
{extra}
</body></html>
"""


def _render_field(spec: Dict) -> str:
    name = html.escape(str(spec.get("name", "")), quote=True)
    label = html.escape(str(spec.get("label", name)))
    attrs = " ".join(
        f'{k}="{html.escape(str(v), quote=True)}"'
        for k, v in spec.items()
        if k in ("type", "inputmode", "autocomplete", "placeholder")
    )
    return f'<label>{label} <input name="{name}" {attrs}></label>'


def render_login(
    username: str,
    fields: List[Dict],
    extra_html: Optional[str],
    error: Optional[str] = None,
    message: str = "",
) -> str:
    notes = []
    if error:
        notes.append(f'<div class="alert-message error">{html.escape(error)}</div>')
    if message:
        notes.append(f'<div class="alert-message">{html.escape(message)}</div>')
    return _PAGE.format(
        error="\n".join(notes),
        username=html.escape(username, quote=True),
        fields="\n".join(_render_field(f) for f in fields if isinstance(f, dict)),
        # plugin markup is trusted server-side content
        extra=extra_html or "",
    )


# --- Login flow ----------------------------------------------------------------------------------

class LoginResult:
    def __init__(self, session_id: Optional[str] = None, outcome: Optional[ChallengeOutcome] = None,
                 error: Optional[str] = None):
        self.session_id = session_id
        self.outcome = outcome
        self.error = error


def attempt_login(chain: AuthChain, resources: Resources, authority, ctx: RequestContext) -> LoginResult:
    """One synchronous pass through the chain + primary credential."""
    settings = resources.settings
    user = ctx.param("luci_username") or settings.default_user

    outcome = chain.collect_challenge(ctx, user)

    if outcome.session is not None:
        session_id = outcome.session.id
        session_user = outcome.session.username or user
        if session_user != user:
            # factors are owed by the session's identity, not the submitted one;
            # the check that produced the session stays memoised
            logger.info("login for %s carried a session for %s (remote=%s)", user, session_user, ctx.remote_addr)
            ctx.checks = {k: v for k, v in ctx.checks.items() if v is not None and v.session is not None}
            user = session_user
            outcome = chain.collect_challenge(ctx, user)
    else:
        password = ctx.param("luci_password")
        session_id = authority.login(user, password, settings.session_timeout) if password else None
        if not session_id:
            logger.warning("login failed for %s (remote=%s)", user, ctx.remote_addr)
            return LoginResult(outcome=outcome, error=GENERIC_FAILURE)

    if outcome.pending:
        verdict = chain.verify_challenge(ctx, user)
        if not verdict.success:
            logger.warning("second factor %s failed for %s (remote=%s)", verdict.plugin, user, ctx.remote_addr)
            try:
                authority.destroy(session_id)
            except SessionAuthorityError as e:
                logger.error("could not destroy rejected session: %s", e)
            return LoginResult(outcome=outcome, error=verdict.message or GENERIC_FAILURE)

    logger.info("login succeeded for %s (remote=%s)", user, ctx.remote_addr)
    return LoginResult(session_id=session_id, outcome=outcome)


def _remote(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@app.get("/login", response_class=HTMLResponse)
def login_page(
    request: Request,
    chain: AuthChain = Depends(get_chain),
    resources: Resources = Depends(get_resources),
):
    user = resources.settings.default_user
    ctx = RequestContext(remote_addr=_remote(request), origin=request.headers.get("origin"), resources=resources)
    outcome = chain.collect_challenge(ctx, user)
    return HTMLResponse(render_login(user, outcome.fields, outcome.html, message=outcome.message))


@app.post("/login")
async def login(
    request: Request,
    chain: AuthChain = Depends(get_chain),
    resources: Resources = Depends(get_resources),
    authority: UbusSessionAuthority = Depends(get_authority),
):
    form = await request.form()
    ctx = RequestContext(
        form={k: v for k, v in form.items() if isinstance(v, str)},
        remote_addr=_remote(request),
        origin=request.headers.get("origin"),
        resources=resources,
    )
    result = await run_in_threadpool(attempt_login, chain, resources, authority, ctx)

    if result.session_id is None:
        outcome = result.outcome
        page = render_login(
            ctx.param("luci_username") or resources.settings.default_user,
            outcome.fields if outcome else [],
            outcome.html if outcome else None,
            error=result.error,
            message=outcome.message if outcome else "",
        )
        return HTMLResponse(page, status_code=403)

    response = RedirectResponse("/", status_code=302)
    response.set_cookie(
        SESSION_COOKIE,
        result.session_id,
        httponly=True,
        samesite="strict",
        secure=request.url.scheme == "https",
        path="/",
    )
    return response
