from fastapi import APIRouter, Depends, Request, status

from app.dependencies import get_task_service
from app.schemas.common import Envelope
from app.schemas.task import TaskIn
from app.services.query import QueryOptions
from app.services.tasks import TaskService
from app.utils.sanitization import parse_json_param

router = APIRouter(prefix="/tasks", tags=["tasks"])

@router.get("", response_model=Envelope)
async def list_tasks(request: Request, service: TaskService = Depends(get_task_service)):
    options = QueryOptions.from_params(request.query_params)
    return Envelope(message="OK", data=await service.list(options))

@router.post("", response_model=Envelope, status_code=status.HTTP_201_CREATED)
async def create_task(data: TaskIn | None = None, service: TaskService = Depends(get_task_service)):
    task = await service.create(data or TaskIn())
    return Envelope(message="Task created", data=task.to_document())

@router.get("/{task_id}", response_model=Envelope)
async def get_task(task_id: str, request: Request, service: TaskService = Depends(get_task_service)):
    select = parse_json_param(request.query_params.get("select") or request.query_params.get("filter"))
    return Envelope(message="OK", data=await service.get(task_id, select))

@router.put("/{task_id}", response_model=Envelope)
async def replace_task(task_id: str, data: TaskIn | None = None, service: TaskService = Depends(get_task_service)):
    task = await service.replace(task_id, data or TaskIn())
    return Envelope(message="Task updated", data=task.to_document())

@router.delete("/{task_id}", response_model=Envelope)
async def delete_task(task_id: str, service: TaskService = Depends(get_task_service)):
    task = await service.delete(task_id)
    return Envelope(message="Task deleted", data=task.to_document())
