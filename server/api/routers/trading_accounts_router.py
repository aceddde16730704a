import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from api.deps import get_current_user_id, get_storage
from api.schemes import (
    BalanceUpdateBody,
    MessageResponse,
    NewTradingAccount,
    TradingAccount,
    TradingAccountBody,
)
from backend.storage.base import Storage
from backend.storage.exceptions import StorageError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/trading-accounts")


@router.get("", response_model=List[TradingAccount])
async def list_trading_accounts(
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_trading_accounts(user_id)


@router.post("", response_model=TradingAccount)
async def connect_trading_account(
    body: TradingAccountBody,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    try:
        return await storage.create_trading_account(
            NewTradingAccount(user_id=user_id, **body.model_dump())
        )
    except StorageError:
        logger.exception("Error creating trading account.", extra={"user_id": user_id})
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create trading account")


@router.delete("/{account_id}", response_model=MessageResponse)
async def disconnect_trading_account(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    try:
        await storage.delete_trading_account(account_id, user_id)
    except StorageError:
        logger.exception("Error deleting trading account.", extra={"user_id": user_id, "account_id": account_id})
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to disconnect trading account")
    return MessageResponse(message="Trading account disconnected successfully")


@router.patch("/{account_id}/balance", response_model=MessageResponse)
async def update_balance(
    account_id: str,
    body: BalanceUpdateBody,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    try:
        updated = await storage.update_trading_account_balance(
            account_id, body.balance, body.daily_pnl, user_id=user_id
        )
    except StorageError:
        logger.exception("Error updating account balance.", extra={"user_id": user_id, "account_id": account_id})
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update account balance")
    if not updated:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Trading account not found")
    return MessageResponse(message="Account balance updated successfully")
