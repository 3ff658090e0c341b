# app/routers/cron.py

import logging

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.core.redis import get_redis_client
from app.dependencies import get_db, verify_cron_secret
from app.schemas.admin import CronRunResponse
from app.services import abandoned_cart, announcement

logger = logging.getLogger(__name__)

# Called by the external scheduler; the bearer check runs before anything else
cron_router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@cron_router.get("/abandoned-carts", response_model=CronRunResponse)
async def abandoned_carts_cron(db: Session = Depends(get_db), redis: Redis = Depends(get_redis_client)):
    summary = await abandoned_cart.run_abandoned_cart_sweep(db, redis)
    return CronRunResponse(job="abandoned-carts", summary=summary)


@cron_router.get("/announcement-emails", response_model=CronRunResponse)
async def announcement_emails_cron(db: Session = Depends(get_db), redis: Redis = Depends(get_redis_client)):
    summary = await announcement.run_announcement_sweep(db, redis)
    return CronRunResponse(job="announcement-emails", summary=summary)
