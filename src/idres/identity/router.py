"""Identity router: all /api/v1/auth/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from idres.dependencies import get_reconciliation_engine
from idres.identity.engine import ReconciliationEngine
from idres.identity.errors import InvalidIdentifierError
from idres.identity.schemas import (
    AccountResponse,
    AnonymousRequest,
    AuthResponse,
    AvailabilityResponse,
    LogoutRequest,
    MessageResponse,
    UsernameUpdateRequest,
    UsernameUpdateResponse,
    WalletConnectRequest,
    WalletLinkRequest,
    WalletLinkResponse,
)
from idres.identity.types import Account, AuthResult

router = APIRouter(prefix="/api/v1/auth", tags=["Identity"])


def _auth_response(result: AuthResult) -> AuthResponse:
    """Build an AuthResponse from an AuthResult."""
    if result.auth_type == "wallet":
        message = "New user created with wallet" if result.is_new_user else "Authenticated with existing wallet"
    else:
        message = "New anonymous user created" if result.is_new_user else "Authenticated with existing username"
    return AuthResponse(
        token=result.token,
        uid=result.uid,
        is_new_user=result.is_new_user,
        username=result.username,
        auth_type=result.auth_type,
        message=message,
    )


def _account_response(account: Account) -> AccountResponse:
    """Build an AccountResponse from an Account."""
    return AccountResponse(
        uid=account.id,
        username=account.username,
        is_anonymous=account.is_anonymous,
        has_wallet=account.wallet_address is not None,
        wallet_address=account.wallet_address,
        created_at=account.created_at,
        last_active_at=account.last_active_at,
        wallet_linked_at=account.wallet_linked_at,
    )


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@router.post("/anonymous", response_model=AuthResponse)
async def anonymous(
    body: AnonymousRequest,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> AuthResponse:
    """Sign in without a wallet."""
    result = await engine.authenticate(None, body.username)
    return _auth_response(result)


@router.post("/wallet/connect", response_model=AuthResponse)
async def wallet_connect(
    body: WalletConnectRequest,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> AuthResponse:
    """Sign in with a wallet address, creating the account on first use."""
    if not body.wallet_address:
        raise InvalidIdentifierError("wallet address", "is required")
    result = await engine.authenticate(body.wallet_address, body.username)
    return _auth_response(result)


# ---------------------------------------------------------------------------
# Linking and rename
# ---------------------------------------------------------------------------


@router.post("/wallet/link", response_model=WalletLinkResponse)
async def wallet_link(
    body: WalletLinkRequest,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> WalletLinkResponse:
    """Attach a wallet to an existing account."""
    account = await engine.link_wallet(body.uid, body.wallet_address)
    return WalletLinkResponse(wallet_address=account.wallet_address or body.wallet_address)


@router.post("/username", response_model=UsernameUpdateResponse)
async def update_username(
    body: UsernameUpdateRequest,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> UsernameUpdateResponse:
    """Set or change the account's username."""
    account = await engine.rename(body.uid, body.username)
    return UsernameUpdateResponse(username=account.username or body.username)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    body: LogoutRequest,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> MessageResponse:
    """Record the account's last activity."""
    await engine.record_activity(body.uid)
    return MessageResponse(message="Logged out successfully")


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@router.get("/user/{uid}", response_model=AccountResponse)
async def get_account(
    uid: str,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> AccountResponse:
    """Get an account profile."""
    account = await engine.get_account(uid)
    return _account_response(account)


@router.get("/username/available/{username}", response_model=AvailabilityResponse)
async def username_available(
    username: str,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> AvailabilityResponse:
    """Check whether a username is free."""
    return AvailabilityResponse(available=await engine.is_username_available(username))


@router.get("/wallet/available/{wallet_address}", response_model=AvailabilityResponse)
async def wallet_available(
    wallet_address: str,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> AvailabilityResponse:
    """Check whether a wallet address is free."""
    return AvailabilityResponse(available=await engine.is_wallet_available(wallet_address))
