from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from referral_waitlist.features.waitlist.models.waitlist import CodeType
from referral_waitlist.platform.response import APIResponse


class WaitlistIn(BaseModel):
    user_id: str = Field(..., min_length=1, description="Owner of the waitlist slot")
    phone_number: str = Field(..., min_length=6, description="Source of the personal referral codes")


class WaitlistEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str = Field(validation_alias="users_user_id")
    position: int
    referral_code: str
    code_type: CodeType
    referrals: int
    used_referral_code: bool


class RankOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    position: int
    used_referral_code: bool


class WaitlistSummary(BaseModel):
    position: int
    referral_code: str
    code_type: CodeType
    used_referral_code: bool
    max_position: int
    waitlist_referral_link: Optional[str] = None


class ActiveReferralMatch(BaseModel):
    id: str
    user_id: str
    position: int


class PromotedReferralMatch(BaseModel):
    id: str
    user_id: str


class ReferralCodeMatch(BaseModel):
    active: Optional[ActiveReferralMatch] = None
    promoted: Optional[PromotedReferralMatch] = None

    @property
    def found(self) -> bool:
        return self.active is not None or self.promoted is not None

    @property
    def owner_user_id(self) -> Optional[str]:
        if self.active is not None:
            return self.active.user_id
        if self.promoted is not None:
            return self.promoted.user_id
        return None


class RedeemReferralIn(BaseModel):
    user_id: str = Field(..., min_length=1, description="User redeeming the code")
    referral_code: str = Field(..., min_length=1)
    referrer_user_id: Optional[str] = None


class PromotionIn(BaseModel):
    amount: int = Field(..., ge=1)


class PromotionResult(BaseModel):
    requested: int
    promoted: int
    batches: int
    user_ids: list[str] = []


class WaitlistEntryResponse(APIResponse[WaitlistEntryOut]):
    pass


class RankResponse(APIResponse[RankOut]):
    pass


class WaitlistSummaryResponse(APIResponse[WaitlistSummary]):
    pass


class PromotionResponse(APIResponse[PromotionResult]):
    pass
