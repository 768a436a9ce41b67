from fastapi import APIRouter

from referral_waitlist.features.waitlist.routes.waitlist import router as waitlist_router

api_router = APIRouter()

api_router.include_router(waitlist_router)
