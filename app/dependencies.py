from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from app.config import settings
from app.database import get_db
from app.services.tasks import TaskService
from app.services.users import UserService
from app.stores.tasks import TaskStore
from app.stores.users import UserStore


def get_task_service(db: AsyncSession = Depends(get_db)) -> TaskService:
    return TaskService(TaskStore(db), UserStore(db), default_limit=settings.task_default_limit)


def get_user_service(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(TaskStore(db), UserStore(db), default_limit=settings.user_default_limit)
