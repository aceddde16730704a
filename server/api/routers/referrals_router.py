import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from api.deps import get_current_user_id, get_storage
from api.schemes import (
    EarningStatusBody,
    MessageResponse,
    NewReferralEarning,
    NewReferralLink,
    ReferralEarning,
    ReferralLink,
    ReferralLinkBody,
    ReferralStats,
)
from backend.storage.base import Storage
from backend.storage.exceptions import InvalidStatusTransition, StorageError

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------
# Earnings
# ---------------------------
@router.get("/referral-earnings", response_model=List[ReferralEarning])
async def list_referral_earnings(
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_referral_earnings(user_id)


@router.post("/referral-earnings", response_model=ReferralEarning)
async def record_referral_earning(
    body: NewReferralEarning,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    referrer, referred = await asyncio.gather(
        storage.get_user(body.referrer_id),
        storage.get_user(body.referred_user_id),
    )
    if referrer is None or referred is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Referrer and referred user must both exist")

    try:
        return await storage.create_referral_earning(body)
    except StorageError:
        logger.exception("Error creating referral earning.", extra={"user_id": user_id})
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create referral earning")


@router.patch("/referral-earnings/{earning_id}/status", response_model=ReferralEarning)
async def update_referral_earning_status(
    earning_id: str,
    body: EarningStatusBody,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    try:
        earning = await storage.update_referral_earning_status(earning_id, body.status, user_id=user_id)
    except InvalidStatusTransition as e:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(e))
    except StorageError:
        logger.exception("Error updating referral earning status.", extra={"user_id": user_id})
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update referral earning status")
    if earning is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Referral earning not found")
    return earning


@router.get("/referral-stats", response_model=ReferralStats)
async def referral_stats(
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    total, count = await asyncio.gather(
        storage.get_total_referral_earnings(user_id),
        storage.get_referral_count(user_id),
    )
    return ReferralStats(total_earnings=total, referral_count=count)


# ---------------------------
# Links
# ---------------------------
@router.get("/referral-links", response_model=List[ReferralLink])
async def list_referral_links(
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_referral_links(user_id)


@router.post("/referral-links", response_model=ReferralLink)
async def create_referral_link(
    body: ReferralLinkBody,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    links = await storage.get_referral_links(user_id)
    if any(l.broker == body.broker for l in links):
        raise HTTPException(status.HTTP_409_CONFLICT, detail="Referral link already exists for this broker")

    try:
        return await storage.create_referral_link(NewReferralLink(user_id=user_id, **body.model_dump()))
    except StorageError:
        logger.exception("Error creating referral link.", extra={"user_id": user_id})
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create referral link")


@router.get("/referral-links/{broker}", response_model=ReferralLink)
async def get_referral_link(
    broker: str,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    links = await storage.get_referral_links(user_id)
    link = next((l for l in links if l.broker == broker), None)
    if link is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Referral link not found for this broker")
    return link


async def _track(storage: Storage, link_id: str, *, clicks=None, conversions=None, what: str) -> MessageResponse:
    try:
        tracked = await storage.update_referral_link_stats(link_id, clicks=clicks, conversions=conversions)
    except StorageError:
        logger.exception("Error tracking referral %s.", what, extra={"link_id": link_id})
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to track {what}")
    if not tracked:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Referral link not found")
    return MessageResponse(message=f"{what.capitalize()} tracked successfully")


# public tracking endpoints
@router.post("/referral-links/{link_id}/click", response_model=MessageResponse)
async def track_click(link_id: str, storage: Storage = Depends(get_storage)):
    return await _track(storage, link_id, clicks=1, what="click")


@router.post("/referral-links/{link_id}/conversion", response_model=MessageResponse)
async def track_conversion(link_id: str, storage: Storage = Depends(get_storage)):
    return await _track(storage, link_id, conversions=1, what="conversion")
