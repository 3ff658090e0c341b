# app/routers/v1/endpoints/admin/reps.py

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from app.core.redis import get_redis_client
from app.crud import rep as crud_rep
from app.dependencies import get_admin_org_id, get_db
from app.schemas.rep import ManualPointsAdjustment, PointsAdjustmentResult, RepPointsHistory, RepRead
from app.services import rep_points

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{rep_id}", response_model=RepRead)
def get_rep_endpoint(rep_id: int, org_id: str = Depends(get_admin_org_id), db: Session = Depends(get_db)):
    rep = crud_rep.get_rep(db, org_id, rep_id)
    if rep is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rep not found")
    return rep


@router.get("/{rep_id}/points", response_model=RepPointsHistory)
async def get_rep_points_endpoint(
    rep_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    org_id: str = Depends(get_admin_org_id),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
):
    """[ADMIN] Balance, level and the points ledger of a rep, newest first."""
    rep = crud_rep.get_rep(db, org_id, rep_id)
    if rep is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rep not found")
    return await rep_points.get_points_history(db, redis, org_id, rep, skip=skip, limit=limit)


@router.post("/{rep_id}/points", response_model=PointsAdjustmentResult)
async def adjust_rep_points_endpoint(
    rep_id: int,
    data: ManualPointsAdjustment,
    org_id: str = Depends(get_admin_org_id),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
):
    """
    [ADMIN] Awards (positive) or deducts (negative) points by hand.
    Goes through the ledger like every other balance change.
    """
    if data.points == 0 and data.currency == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Adjustment must not be zero")
    if crud_rep.get_rep(db, org_id, rep_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rep not found")

    new_balance = await rep_points.award_points(
        db, redis,
        org_id=org_id, rep_id=rep_id, points=data.points, currency=data.currency,
        source_type=data.source_type, description=data.description, created_by=data.created_by or "admin",
    )
    if new_balance is None:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Points adjustment failed")

    rep = crud_rep.get_rep(db, org_id, rep_id)
    logger.info(f"Admin adjusted rep {rep_id} by {data.points:+d} points.")
    return PointsAdjustmentResult(rep_id=rep_id, new_balance=new_balance, level=rep.level)
