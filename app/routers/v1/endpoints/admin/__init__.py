# app/routers/v1/endpoints/admin/__init__.py

from fastapi import APIRouter, Depends
from app.dependencies import verify_admin_key

from . import (
    orders,
    reps,
    settings,
    tasks,
    tickets,
)

# Every admin endpoint requires the X-Admin-Key header
router = APIRouter(
    tags=["Admin"],
    dependencies=[Depends(verify_admin_key)]
)

# /admin/orders, /admin/orders/{id}/refund, ...
router.include_router(orders.router, prefix="/orders")

# /admin/reps/{id}, /admin/reps/{id}/points
router.include_router(reps.router, prefix="/reps")

# /admin/tickets/{code}, /admin/tickets/{code}/scan
router.include_router(tickets.router, prefix="/tickets")

# /admin/settings/{key}
router.include_router(settings.router, prefix="/settings")

# /admin/tasks, /admin/tasks/run
router.include_router(tasks.router, prefix="/tasks")
