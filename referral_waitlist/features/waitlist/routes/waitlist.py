from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from referral_waitlist.features.waitlist.exceptions import EntryNotFound
from referral_waitlist.features.waitlist.schemas.waitlist import (
    PromotionIn,
    PromotionResponse,
    RankResponse,
    RedeemReferralIn,
    WaitlistEntryOut,
    WaitlistEntryResponse,
    WaitlistIn,
    WaitlistSummaryResponse,
)
from referral_waitlist.features.waitlist.services.waitlist import WaitlistService
from referral_waitlist.features.waitlist.utils.referral_code_generator import code_fragments
from referral_waitlist.platform.db.session import get_db
from referral_waitlist.platform.response import api_response

router = APIRouter(prefix="/waitlist", tags=["Waitlist"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=WaitlistEntryResponse)
async def join_waitlist(payload: WaitlistIn, db: AsyncSession = Depends(get_db)):
    service = WaitlistService(db)
    first_six, last_six = code_fragments(payload.phone_number)
    entry = await service.enroll(payload.user_id, first_six, last_six)
    await service.attach_referral_link(payload.user_id, entry.referral_code)

    return api_response(
        data=WaitlistEntryOut.model_validate(entry),
        message="Successfully added to waitlist",
        status_code=status.HTTP_201_CREATED,
    )


@router.get("/referrals/{code}")
async def check_referral_code(
    code: str,
    user_id: str | None = Query(default=None, description="Caller, excluded from the match"),
    db: AsyncSession = Depends(get_db),
):
    match = await WaitlistService(db).lookup_referral_code(code, user_id)
    if not match.found:
        return api_response(message="Referral code not found", status_code=status.HTTP_404_NOT_FOUND)
    return api_response(data=match, message="Referral code found")


@router.post("/referrals/redeem", response_model=RankResponse)
async def redeem_referral(payload: RedeemReferralIn, db: AsyncSession = Depends(get_db)):
    service = WaitlistService(db)
    entry = await service.get_entry_by_user_id(payload.user_id)
    if entry is None:
        raise EntryNotFound(f"User {payload.user_id} is not on the waitlist")

    await service.redeem_referral(entry.id, payload.referral_code, payload.referrer_user_id)
    rank = await service.get_rank(payload.user_id)
    return api_response(data=rank, message="Referral code redeemed")


@router.post("/promotions", response_model=PromotionResponse)
async def promote_waitlist_front(payload: PromotionIn, db: AsyncSession = Depends(get_db)):
    result = await WaitlistService(db).promote_front(payload.amount)
    return api_response(data=result, message=f"Promoted {result.promoted} waitlist entries")


@router.post("/positions/recompute")
async def recompute_positions(db: AsyncSession = Depends(get_db)):
    moved = await WaitlistService(db).recompute_positions()
    return api_response(data={"moved": moved}, message="Waitlist positions recomputed")


@router.get("/{user_id}/rank", response_model=RankResponse)
async def get_rank(user_id: str, db: AsyncSession = Depends(get_db)):
    rank = await WaitlistService(db).get_rank(user_id)
    if rank is None:
        return api_response(message="User is not on the waitlist", status_code=status.HTTP_404_NOT_FOUND)
    return api_response(data=rank, message="Waitlist position retrieved")


@router.get("/{user_id}", response_model=WaitlistSummaryResponse)
async def get_waitlist_info(user_id: str, db: AsyncSession = Depends(get_db)):
    summary = await WaitlistService(db).get_summary(user_id)
    if summary is None:
        return api_response(message="User is not on the waitlist", status_code=status.HTTP_404_NOT_FOUND)
    return api_response(data=summary, message="Waitlist info retrieved")
