"""
API endpoints for scheduled tasks and their execution logs
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from tablesync.models.task import TaskConfig
from tablesync.scheduler.errors import TaskNotFoundError, TriggerError
from tablesync.services.task_manager import TaskManager

# Handlers are async so they run on the loop that owns the engine's timers
router = APIRouter()


class CronValidationRequest(BaseModel):
    expression: str


def get_task_manager(request: Request) -> TaskManager:
    return request.app.state.task_manager


def _get_task_or_404(manager: TaskManager, task_id: str):
    try:
        return manager.get_task(task_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/tasks")
async def list_tasks(manager: TaskManager = Depends(get_task_manager)) -> List[Dict[str, Any]]:
    return [t.to_json_dict() for t in manager.get_tasks()]


@router.post("/tasks", status_code=201)
async def create_task(task: TaskConfig, manager: TaskManager = Depends(get_task_manager)) -> Dict[str, Any]:
    try:
        return manager.add_task(task).to_json_dict()
    except TriggerError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/tasks/{task_id}")
async def update_task(task_id: str, task: TaskConfig, manager: TaskManager = Depends(get_task_manager)) -> Dict[str, Any]:
    if task.id != task_id:
        raise HTTPException(status_code=400, detail="task id does not match the URL")
    _get_task_or_404(manager, task_id)
    try:
        return manager.update_task(task).to_json_dict()
    except TriggerError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(task_id: str, manager: TaskManager = Depends(get_task_manager)) -> None:
    _get_task_or_404(manager, task_id)
    manager.delete_task(task_id)


@router.get("/tasks/stats")
async def task_stats(manager: TaskManager = Depends(get_task_manager)) -> Dict[str, int]:
    return manager.get_task_stats()


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, manager: TaskManager = Depends(get_task_manager)) -> Dict[str, Any]:
    return _get_task_or_404(manager, task_id).to_json_dict()


@router.get("/tasks/{task_id}/logs")
async def get_task_logs(task_id: str, manager: TaskManager = Depends(get_task_manager)) -> Dict[str, Any]:
    _get_task_or_404(manager, task_id)
    logs = [entry.to_json_dict() for entry in manager.get_task_logs(task_id)]
    return {"logs": logs, "total": len(logs)}


@router.get("/tasks/{task_id}/next-run")
async def get_next_run(task_id: str, manager: TaskManager = Depends(get_task_manager)) -> Dict[str, str]:
    _get_task_or_404(manager, task_id)
    return {"nextRun": manager.get_next_run_time(task_id)}


@router.post("/tasks/{task_id}/run")
async def run_task_now(task_id: str, manager: TaskManager = Depends(get_task_manager)) -> Dict[str, Any]:
    _get_task_or_404(manager, task_id)
    result = await manager.execute_now(task_id)
    return result.to_json_dict()


@router.post("/tasks/{task_id}/toggle")
async def toggle_task(task_id: str, manager: TaskManager = Depends(get_task_manager)) -> Dict[str, Any]:
    _get_task_or_404(manager, task_id)
    try:
        task = manager.toggle_task(task_id)
    except TriggerError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return task.to_json_dict()


@router.post("/cron/validate")
async def validate_cron(body: CronValidationRequest, manager: TaskManager = Depends(get_task_manager)) -> Dict[str, Any]:
    return manager.validate_cron(body.expression).to_json_dict()
