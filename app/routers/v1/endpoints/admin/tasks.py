# app/routers/v1/endpoints/admin/tasks.py

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, HTTPException, status

from app.schemas.admin import TaskInfo, TaskRunRequest, TaskRunResponse
from app.tasks_registry import TASKS, get_tasks_list

logger = logging.getLogger(__name__)

# Prefix /tasks is added in admin/__init__.py
router = APIRouter()


@router.get("", response_model=List[TaskInfo])
def get_tasks_list_endpoint():
    """
    [ADMIN] Lists the background tasks that can be run by hand.
    """
    return get_tasks_list()


@router.post("/run", response_model=TaskRunResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_task_endpoint(request_data: TaskRunRequest, background_tasks: BackgroundTasks):
    """
    [ADMIN] Schedules one task, or all of them, to run after the response.
    Each task opens its own DB session.
    """
    task_name_to_run = request_data.task_name

    if task_name_to_run == "all":
        for name, data in TASKS.items():
            background_tasks.add_task(data["function"])
        message = "All background tasks have been scheduled to run."
        logger.info("All background tasks were manually triggered.")
    elif task_name_to_run in TASKS:
        background_tasks.add_task(TASKS[task_name_to_run]["function"])
        message = f"Task '{task_name_to_run}' has been scheduled to run."
        logger.info(f"Background task '{task_name_to_run}' was manually triggered.")
    else:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Task '{task_name_to_run}' not found.")

    return TaskRunResponse(status="accepted", message=message)
