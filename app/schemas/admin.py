# app/schemas/admin.py
from pydantic import BaseModel
from typing import Literal, Optional

from app.schemas.lifecycle import SweepSummary


class TaskInfo(BaseModel):
    """One background task that can be run by hand."""
    task_name: str
    description: str


class TaskRunRequest(BaseModel):
    # Literal keeps the accepted names in the OpenAPI schema
    task_name: Literal["all", "abandoned_carts", "announcement_emails"]


class TaskRunResponse(BaseModel):
    status: str
    message: str


class CronRunResponse(BaseModel):
    job: str
    summary: SweepSummary
    error: Optional[str] = None
