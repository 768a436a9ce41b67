import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from referral_waitlist.api.v1 import api_router
from referral_waitlist.features.health.routes.health import router as health_router
from referral_waitlist.platform.config import settings
from referral_waitlist.platform.db.session import create_tables
from referral_waitlist.platform.exceptions import add_exception_handlers

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.ENVIRONMENT == "local":
        await create_tables()
    yield


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Signup waitlist with referral-based queue jumping",
    version="1.0.0",
    debug=settings.DEBUG,
    lifespan=lifespan,
)


@app.get("/", tags=["Info"])
def root():
    return {
        "app_name": f"{settings.APP_NAME} API",
        "description": "Signup waitlist with referral-based queue jumping.",
        "version": "1.0.0",
        "docs_url": "/docs",
        "api_base": "/api/v1",
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)

app.include_router(health_router)
app.include_router(api_router, prefix="/api/v1")
