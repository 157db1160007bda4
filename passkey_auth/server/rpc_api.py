"""
server/rpc_api.py — Verifying-context passkey endpoints (documented)

Overview
--------
These routes mirror the `luci.webauthn` RPC methods the browser calls:

  POST /webauthn/health
  POST /webauthn/register_begin     POST /webauthn/register_finish
  POST /webauthn/login_begin        POST /webauthn/login_finish
  POST /webauthn/manage_list        POST /webauthn/manage_delete     POST /webauthn/manage_update

Every route answers 200 with the verifier's payload or an in-band `{error, message}`,
the same way ubus replies carry errors in their result object.

Security & Ops
--------------
- Reentrancy: this process is the single-threaded worker that also serves the session
  authority. `login_finish` therefore never creates a session; it mints a handoff token
  (see handoff/token_store.py) that the browser takes to the front door.
- Access control: register_* and manage_* are expected to sit behind an ACL that only
  authenticated administrators reach; health/login_* are reachable anonymously.
- Inputs are validated by the pydantic models below before they reach the helper.

Tunable / Config
----------------
- WEBAUTHN_HELPER, WEBAUTHN_USER_VERIFICATION, WEBAUTHN_TOKEN_DIR, WEBAUTHN_TOKEN_TTL
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI
from pydantic import BaseModel, Field

from ..config import Settings
from ..handoff.token_store import TokenStore
from ..verifier.gateway import VerifierGateway

router = APIRouter(prefix="/webauthn", tags=["webauthn"])


# ----------------------------- Dependencies ------------------------------------------------------

def get_settings() -> Settings:
    return Settings.from_env()


def get_gateway(settings: Settings = Depends(get_settings)) -> VerifierGateway:
    return VerifierGateway(settings.helper_path, settings.user_verification)


def get_token_store(settings: Settings = Depends(get_settings)) -> TokenStore:
    return TokenStore(settings.token_dir, settings.token_ttl)


# ----------------------------- Request models ----------------------------------------------------

class BeginReq(BaseModel):
    username: str = Field("root", min_length=1, max_length=64)
    origin: str = Field(..., min_length=1, max_length=255)
    userVerification: Optional[str] = Field(None, pattern="^(required|preferred|discouraged)$")


class CredentialReq(BaseModel):
    challengeId: str = Field(..., min_length=1, max_length=128)
    id: str = Field(..., min_length=1)
    rawId: Optional[str] = None
    type: str = "public-key"
    response: Dict[str, Any]
    origin: str = Field(..., min_length=1, max_length=255)

    def assertion(self) -> Dict[str, Any]:
        return {"id": self.id, "rawId": self.rawId or self.id, "type": self.type, "response": self.response}


class RegisterFinishReq(CredentialReq):
    deviceName: Optional[str] = Field(None, max_length=64)


class ManageDeleteReq(BaseModel):
    id: str = Field(..., min_length=1)


class ManageUpdateReq(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., max_length=64)


# ----------------------------- Health ------------------------------------------------------------

@router.post("/health")
def health(gw: VerifierGateway = Depends(get_gateway)):
    return gw.health()


# ----------------------------- Registration ------------------------------------------------------

@router.post("/register_begin")
def register_begin(req: BeginReq, gw: VerifierGateway = Depends(get_gateway)):
    return gw.begin_ceremony("register", req.username, req.origin, req.userVerification)


@router.post("/register_finish")
def register_finish(req: RegisterFinishReq, gw: VerifierGateway = Depends(get_gateway)):
    return gw.finish_ceremony("register", req.challengeId, req.origin, req.assertion(), device_name=req.deviceName)


# ----------------------------- Login -------------------------------------------------------------

@router.post("/login_begin")
def login_begin(req: BeginReq, gw: VerifierGateway = Depends(get_gateway)):
    return gw.begin_ceremony("login", req.username, req.origin, req.userVerification)


@router.post("/login_finish")
def login_finish(
    req: CredentialReq,
    gw: VerifierGateway = Depends(get_gateway),
    store: TokenStore = Depends(get_token_store),
):
    """
    Verify the assertion; on success return `{success, verifyToken, username}`.

    The browser then posts `webauthn_verify_token` to the front door. No session is
    created here.
    """
    return gw.finish_login(req.challengeId, req.origin, req.assertion(), store)


# ----------------------------- Credential management ---------------------------------------------

@router.post("/manage_list")
def manage_list(gw: VerifierGateway = Depends(get_gateway)):
    return gw.manage("list")


@router.post("/manage_delete")
def manage_delete(req: ManageDeleteReq, gw: VerifierGateway = Depends(get_gateway)):
    return gw.manage("delete", credential_id=req.id)


@router.post("/manage_update")
def manage_update(req: ManageUpdateReq, gw: VerifierGateway = Depends(get_gateway)):
    return gw.manage("update", credential_id=req.id, name=req.name)


app = FastAPI(title="Passkey verifier RPC")
app.include_router(router)
