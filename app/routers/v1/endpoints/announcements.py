# app/routers/v1/endpoints/announcements.py

from fastapi import APIRouter, Depends, status
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.core.redis import get_redis_client
from app.dependencies import get_db
from app.schemas.announcement import AnnouncementSignupCreate, AnnouncementSignupResponse
from app.services import announcement as announcement_service

router = APIRouter(prefix="/announcements")


@router.post("/signup", response_model=AnnouncementSignupResponse, status_code=status.HTTP_201_CREATED)
async def announcement_signup_endpoint(
    data: AnnouncementSignupCreate,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
):
    """
    "Notify me" signup for an event whose tickets are not on sale yet.
    The confirmation email goes out before the response.
    """
    return await announcement_service.signup_for_announcement(db, redis, data)
