import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from api.deps import get_current_user_id, get_storage
from api.schemes import (
    MasterCopierBody,
    MasterCopierConnection,
    MasterCopierStatusBody,
    MessageResponse,
    NewMasterCopierConnection,
)
from backend.storage.base import Storage
from backend.storage.exceptions import StorageError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/master-copier")


@router.get("", response_model=List[MasterCopierConnection])
async def list_connections(
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_master_copier_connections(user_id)


@router.post("/connect", response_model=MasterCopierConnection)
async def connect(
    body: MasterCopierBody,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    accounts = await storage.get_trading_accounts(user_id)
    if not any(a.id == body.trading_account_id for a in accounts):
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Trading account not found")

    try:
        return await storage.create_master_copier_connection(
            NewMasterCopierConnection(user_id=user_id, **body.model_dump())
        )
    except StorageError:
        logger.exception("Error connecting to master copier.", extra={"user_id": user_id})
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to connect to master copier")


@router.patch("/{connection_id}/status", response_model=MessageResponse)
async def update_status(
    connection_id: str,
    body: MasterCopierStatusBody,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    try:
        updated = await storage.update_master_copier_status(connection_id, body.is_active, user_id=user_id)
    except StorageError:
        logger.exception("Error updating master copier status.", extra={"user_id": user_id})
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update master copier status")
    if not updated:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Master copier connection not found")
    return MessageResponse(message="Master copier status updated successfully")
