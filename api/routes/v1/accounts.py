"""
api/routes/v1/accounts.py -- Account administration endpoints (ADMIN only).

Routes:
  GET   /api/v1/admin/accounts                -- list all accounts
  GET   /api/v1/admin/accounts/{account_id}   -- one account
  PATCH /api/v1/admin/accounts/{account_id}   -- enable / disable

The ADMIN requirement is enforced by the access policy (/api/v1/admin/**)
before these handlers run. Disabling an account takes effect on its next
request: the gate re-checks the enabled flag every time, whatever the token
says.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AccountPatch, AccountResponse
from auth.dependencies import require_identity
from auth.models import IdentityContext
from auth.service import CredentialService

router = APIRouter()


def _service(request: Request) -> CredentialService:
    return request.app.state.credential_service


@router.get("/admin/accounts", response_model=list[AccountResponse])
def list_accounts(
    request: Request,
    identity: IdentityContext = Depends(require_identity),
) -> list[AccountResponse]:
    return [AccountResponse.from_account(a) for a in _service(request).list_accounts()]


@router.get("/admin/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    request: Request,
    account_id: int,
    identity: IdentityContext = Depends(require_identity),
) -> AccountResponse:
    return AccountResponse.from_account(_service(request).get_account(account_id))


@router.patch("/admin/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    request: Request,
    account_id: int,
    body: AccountPatch,
    identity: IdentityContext = Depends(require_identity),
) -> AccountResponse:
    """Enable or disable an account.

    Refuses self-disable and disabling the last enabled ADMIN (400).
    """
    account = _service(request).set_enabled(account_id, body.enabled, actor=identity)
    return AccountResponse.from_account(account)
