import logging

from app.errors import MalformedId, NotFound, ValidationError
from app.models.ids import is_object_id
from app.schemas.task import Task, TaskIn
from app.services.query import QueryBuilder, QueryOptions
from app.services.sync import RelationshipSynchronizer
from app.stores.tasks import TASKS, TaskStore
from app.stores.users import UserStore

logger = logging.getLogger(__name__)


class TaskService:
    """Task operations: reads go through the query builder, writes through the synchronizer."""

    def __init__(self, tasks: TaskStore, users: UserStore, default_limit: int | None = 100):
        self.tasks = tasks
        self.sync = RelationshipSynchronizer(tasks, users)
        self.query = QueryBuilder(TASKS, default_limit=default_limit)

    async def list(self, options: QueryOptions) -> list[dict] | int:
        plan = self.query.build(options)
        if plan.count:
            return await self.tasks.count(plan)
        return [plan.project(t.to_document()) for t in await self.tasks.find(plan)]

    async def get(self, task_id: str, select=None) -> dict:
        task = await self.load(task_id)
        projection = QueryBuilder.projection(select)
        document = task.to_document()
        return projection.apply(document) if projection else document

    async def load(self, task_id: str) -> Task:
        if not is_object_id(task_id):
            raise MalformedId("Malformed task id")
        task = await self.tasks.find_by_id(task_id.lower())
        if task is None:
            raise NotFound("Task not found")
        return task

    @staticmethod
    def _validate(data: TaskIn) -> None:
        if not data.name or data.deadline is None:
            raise ValidationError("Task must have name and deadline")

    @staticmethod
    def _fields(data: TaskIn) -> dict:
        return {
            "name": data.name,
            "description": data.description or "",
            "deadline": data.deadline,
            "completed": data.completed,
        }

    async def create(self, data: TaskIn) -> Task:
        self._validate(data)
        return await self.sync.create_task(**self._fields(data), assigned_user=data.assignedUser or "")

    async def replace(self, task_id: str, data: TaskIn) -> Task:
        self._validate(data)
        current = await self.load(task_id)
        return await self.sync.replace_task(
            current, **self._fields(data), assigned_user=data.assignedUser or ""
        )

    async def delete(self, task_id: str) -> Task:
        task = await self.load(task_id)
        return await self.sync.delete_task(task)
