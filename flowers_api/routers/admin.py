"""Admin API endpoints for vendor bots."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from flowers_api.config import settings
from flowers_api.schemas.bot import (
    BotListResponse,
    BotSessionInfo,
    ReconcileResponse,
    TelegramTokenResponse,
    TelegramTokenUpdate,
)
from flowers_api.services.bot_reconciler import BotReconciler
from flowers_api.services.bot_registry import SessionRegistry
from flowers_api.services.credential_store import CredentialStore, TenantNotFoundError
from flowers_api.services.telegram_service import mask_token

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="ADMIN_TOKEN not configured",
        )
    if not provided or provided != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


def get_bot_registry(request: Request) -> SessionRegistry:
    return request.app.state.bot_registry


def get_bot_reconciler(request: Request) -> BotReconciler:
    return request.app.state.bot_reconciler


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.credential_store


@router.get("/bots", response_model=BotListResponse)
def list_bots(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    registry: SessionRegistry = Depends(get_bot_registry),
):
    _require_admin_token(x_admin_token)
    bots = [
        BotSessionInfo(
            tenant_id=session.tenant_id,
            token=mask_token(session.credential),
            bot_username=session.bot_username,
            state=session.state.value,
            started_at=session.started_at,
        )
        for session in registry.sessions()
    ]
    return BotListResponse(count=len(bots), bots=bots)


@router.post("/bots/reconcile", response_model=ReconcileResponse)
async def reconcile_bots(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    reconciler: BotReconciler = Depends(get_bot_reconciler),
):
    _require_admin_token(x_admin_token)
    result = await reconciler.reconcile()
    return ReconcileResponse(**result.summary())


@router.put("/tenants/{tenant_id}/telegram-token", response_model=TelegramTokenResponse)
def update_telegram_token(
    tenant_id: UUID,
    payload: TelegramTokenUpdate,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    store: CredentialStore = Depends(get_credential_store),
):
    """Enable (token) or disable (null) a vendor bot. Applied on the next reconciliation."""
    _require_admin_token(x_admin_token)
    try:
        store.set_token(tenant_id, payload.telegram_token)
    except TenantNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return TelegramTokenResponse(
        success=True,
        tenant_id=tenant_id,
        bot_enabled=payload.telegram_token is not None,
    )
