"""
Banking Routes

User-facing endpoints for:
- Starting a bank connection (authorization URL)
- OAuth callback handling
- Completing a connection from an authorization code
- Syncing, status and disconnecting
"""

import logging
from urllib.parse import urlencode
from fastapi import APIRouter, Depends, HTTPException, status, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from typing import Optional

from backend.config import get_settings
from backend.database import get_db
from backend.app import models, schemas
from backend.app.auth import get_current_user_id
from backend.app.bank_integration.service import BankIntegrationService, get_provider
from backend.app.bank_integration.connections import ConnectionManager
from backend.app.bank_integration.providers.base import BaseBankProvider
from backend.app.bank_integration.errors import (
    AggregatorError, AuthorizationCodeReusedError, InvalidOAuthStateError,
    NotFoundError, TokenExchangeError
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/banking", tags=["banking"])

NO_CONNECTION_MESSAGE = "No active bank connection found. Please connect your bank first."
EXPIRED_CODE_HINT = "Try starting a fresh banking connection - the authorization code may have expired"
REUSED_CODE_HINT = "Please start a fresh banking connection - authorization codes can only be used once."


def get_bank_service(
    db: Session = Depends(get_db),
    provider: BaseBankProvider = Depends(get_provider)
) -> BankIntegrationService:
    return BankIntegrationService(db, provider)


def _sync_failed(e: AggregatorError) -> HTTPException:
    logger.error(f"Bank sync failed: {e}")
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Failed to sync bank data: {e}"
    )


@router.get("/connect", response_model=schemas.AuthUrlResponse)
def connect(
    user_id: str = Depends(get_current_user_id),
    service: BankIntegrationService = Depends(get_bank_service)
):
    """
    Start a bank connection.

    Returns the aggregator authorization URL the client should redirect to.
    The embedded state token is stored and checked on callback.
    """
    result = service.start_oauth_flow(user_id)
    return {"authUrl": result['authorization_url']}


@router.get("/callback")
def oauth_callback(
    code: Optional[str] = Query(None, description="Authorization code"),
    state: Optional[str] = Query(None, description="CSRF state token"),
    error: Optional[str] = Query(None, description="Error reported by the aggregator"),
    db: Session = Depends(get_db)
):
    """
    OAuth callback endpoint.

    The aggregator redirects the browser here. The state is verified and the
    code is forwarded to the client app, which completes the connection for
    its signed-in user.
    """
    frontend_url = get_settings().frontend_url.rstrip('/')

    if error:
        logger.warning(f"Aggregator returned error on callback: {error}")
        return RedirectResponse(url=f"{frontend_url}/?{urlencode({'connection': 'error', 'reason': error})}")

    if not code:
        return RedirectResponse(url=f"{frontend_url}/?connection=error&reason=missing_code")

    try:
        ConnectionManager(db).consume_oauth_state(state)
    except InvalidOAuthStateError as e:
        logger.warning(f"Rejected OAuth callback: {e}")
        return RedirectResponse(url=f"{frontend_url}/?connection=error&reason=invalid_state")

    query = urlencode({'connection': 'success', 'code': code, 'state': state})
    return RedirectResponse(url=f"{frontend_url}/?{query}")


@router.post("/complete-connection", response_model=schemas.CompleteConnectionResponse)
async def complete_connection(
    request: schemas.CompleteConnectionRequest,
    user_id: str = Depends(get_current_user_id),
    service: BankIntegrationService = Depends(get_bank_service)
):
    """
    Exchange the authorization code, store the connection and run the initial sync.

    Example:
        POST /banking/complete-connection
        {"code": "abc123"}

        Response:
        {
            "success": true,
            "message": "Banking connection completed. Synced 2 accounts and 41 transactions.",
            "accountsCount": 2,
            "transactionsCount": 41
        }
    """
    if not request.code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Authorization code is required")

    try:
        result = await service.complete_connection(user_id, request.code, state=request.state)
    except AuthorizationCodeReusedError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"success": False, "message": str(e), "hint": REUSED_CODE_HINT}
        )
    except InvalidOAuthStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TokenExchangeError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST if e.is_invalid_grant else status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": "Failed to complete banking connection",
                "error": f"TrueLayer token exchange failed: {e}",
                "hint": EXPIRED_CODE_HINT
            }
        )
    except AggregatorError as e:
        raise _sync_failed(e)

    accounts_count = result['accounts_created']
    transactions_count = result['transactions_created']
    return {
        "success": True,
        "message": f"Banking connection completed. Synced {accounts_count} accounts and {transactions_count} transactions.",
        "accountsCount": accounts_count,
        "transactionsCount": transactions_count
    }


@router.post("/sync", response_model=schemas.SyncResponse)
async def sync(
    user_id: str = Depends(get_current_user_id),
    service: BankIntegrationService = Depends(get_bank_service)
):
    """Re-sync the caller's active connection."""
    connection = service.connections.get_active(user_id)
    if not connection:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_CONNECTION_MESSAGE)

    try:
        result = await service.sync(connection)
    except AggregatorError as e:
        raise _sync_failed(e)

    return {
        "success": True,
        "accountsSynced": result['accounts_created'],
        "transactionsSynced": result['transactions_created'],
        "totalAccounts": result['total_accounts']
    }


@router.post("/force-sync", response_model=schemas.ForceSyncResponse)
async def force_sync(
    user_id: str = Depends(get_current_user_id),
    service: BankIntegrationService = Depends(get_bank_service)
):
    """Refresh tokens unconditionally, then re-sync the active connection."""
    connection = service.connections.get_active(user_id)
    if not connection:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_CONNECTION_MESSAGE)

    try:
        result = await service.sync(connection, force_refresh=True)
    except AggregatorError as e:
        raise _sync_failed(e)

    new_transactions = result['transactions_created']
    return {
        "success": True,
        "message": f"Fresh sync completed. Found {new_transactions} new transactions.",
        "newTransactions": new_transactions
    }


@router.post("/sync-all", response_model=schemas.SyncAllResponse)
async def sync_all(
    user_id: str = Depends(get_current_user_id),
    service: BankIntegrationService = Depends(get_bank_service)
):
    """Sync every active connection of the caller; one failure does not stop the rest."""
    results = await service.sync_all(user_id)
    if not results:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_CONNECTION_MESSAGE)

    return {
        "success": all(r['success'] for r in results),
        "results": [
            {
                "connectionId": r['connection_id'],
                "success": r['success'],
                "accountsSynced": r.get('accounts_created', 0),
                "transactionsSynced": r.get('transactions_created', 0),
                "error": r.get('error')
            }
            for r in results
        ]
    }


@router.get("/status", response_model=schemas.BankingStatus)
def banking_status(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Connection and account summary for the caller."""
    connections = ConnectionManager(db).list_active(user_id)
    accounts = db.query(models.Account).filter(
        models.Account.user_id == user_id,
        models.Account.is_active == True
    ).all()

    institutions = []
    for account in accounts:
        if account.institution_name and account.institution_name not in institutions:
            institutions.append(account.institution_name)

    synced_times = [c.last_synced for c in connections if c.last_synced]

    return {
        "connected": len(connections) > 0,
        "connections": [
            {"id": c.id, "lastSynced": c.last_synced, "createdAt": c.created_at}
            for c in connections
        ],
        "institutions": institutions,
        "lastSynced": max(synced_times) if synced_times else None,
        "accountsCount": len(accounts)
    }


@router.delete("/disconnect", response_model=schemas.SuccessResponse)
def disconnect_all(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Deactivate every connection of the caller and their accounts."""
    ConnectionManager(db).deactivate_all(user_id)
    return {"success": True}


@router.delete("/disconnect/{connection_id}", response_model=schemas.SuccessResponse)
def disconnect_one(
    connection_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Deactivate one connection and the accounts it produced."""
    try:
        ConnectionManager(db).deactivate_one(connection_id, user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return {"success": True}
