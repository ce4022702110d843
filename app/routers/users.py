from fastapi import APIRouter, Depends, Request, status

from app.dependencies import get_user_service
from app.schemas.common import Envelope
from app.schemas.user import UserIn
from app.services.query import QueryOptions
from app.services.users import UserService
from app.utils.sanitization import parse_json_param

router = APIRouter(prefix="/users", tags=["users"])

@router.get("", response_model=Envelope)
async def list_users(request: Request, service: UserService = Depends(get_user_service)):
    options = QueryOptions.from_params(request.query_params)
    return Envelope(message="OK", data=await service.list(options))

@router.post("", response_model=Envelope, status_code=status.HTTP_201_CREATED)
async def create_user(data: UserIn | None = None, service: UserService = Depends(get_user_service)):
    user = await service.create(data or UserIn())
    return Envelope(message="User created", data=user.to_document())

@router.get("/{user_id}", response_model=Envelope)
async def get_user(user_id: str, request: Request, service: UserService = Depends(get_user_service)):
    select = parse_json_param(request.query_params.get("select") or request.query_params.get("filter"))
    return Envelope(message="OK", data=await service.get(user_id, select))

@router.put("/{user_id}", response_model=Envelope)
async def replace_user(user_id: str, data: UserIn | None = None, service: UserService = Depends(get_user_service)):
    user = await service.replace(user_id, data or UserIn())
    return Envelope(message="User updated", data=user.to_document())

@router.delete("/{user_id}", response_model=Envelope)
async def delete_user(user_id: str, service: UserService = Depends(get_user_service)):
    user = await service.delete(user_id)
    return Envelope(message="User deleted", data=user.to_document())
