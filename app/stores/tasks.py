import logging

from sqlalchemy import delete, select, update

from app.errors import NotFound
from app.models.task import Task as TaskModel
from app.schemas.task import Task
from app.services.query import Collection, QueryPlan
from app.stores.base import BaseStore
from app.utils.dates import to_storage, utcnow

logger = logging.getLogger(__name__)

TASKS = Collection(
    name="tasks",
    model=TaskModel,
    fields={
        "_id": TaskModel.id,
        "name": TaskModel.name,
        "description": TaskModel.description,
        "deadline": TaskModel.deadline,
        "completed": TaskModel.completed,
        "assignedUser": TaskModel.assigned_user,
        "assignedUserName": TaskModel.assigned_user_name,
        "dateCreated": TaskModel.date_created,
    },
    id_fields=frozenset({"_id", "assignedUser"}),
)


def _row_to_task(row: TaskModel) -> Task:
    return Task(
        id=row.id,
        name=row.name,
        description=row.description or "",
        deadline=row.deadline,
        completed=bool(row.completed),
        assigned_user=row.assigned_user or "",
        assigned_user_name=row.assigned_user_name,
        date_created=row.date_created,
    )


class TaskStore(BaseStore):
    collection = TASKS

    async def find(self, plan: QueryPlan) -> list[Task]:
        async with self._read("list tasks"):
            result = await self.session.execute(plan.statement)
            return [_row_to_task(r) for r in result.scalars().all()]

    async def find_by_id(self, task_id: str) -> Task | None:
        statement = (
            select(TaskModel)
            .filter(TaskModel.id == task_id)
            .execution_options(populate_existing=True)
        )
        async with self._read("load task"):
            row = (await self.session.execute(statement)).scalars().first()
        return _row_to_task(row) if row else None

    async def existing_ids(self, task_ids: list[str]) -> set[str]:
        if not task_ids:
            return set()
        async with self._read("look up tasks"):
            result = await self.session.execute(select(TaskModel.id).filter(TaskModel.id.in_(task_ids)))
            return set(result.scalars().all())

    async def insert(
        self,
        *,
        name: str,
        deadline,
        description: str = "",
        completed: bool = False,
        assigned_user: str = "",
        assigned_user_name: str,
    ) -> Task:
        row = TaskModel(
            name=name,
            description=description,
            deadline=to_storage(deadline),
            completed=completed,
            assigned_user=assigned_user,
            assigned_user_name=assigned_user_name,
            date_created=utcnow(),
        )
        async with self._write("create task"):
            self.session.add(row)
        logger.debug("Task inserted id=%s assignedUser=%r", row.id, row.assigned_user)
        return _row_to_task(row)

    async def replace(self, task: Task) -> Task:
        statement = (
            update(TaskModel)
            .where(TaskModel.id == task.id)
            .values(
                name=task.name,
                description=task.description,
                deadline=to_storage(task.deadline),
                completed=task.completed,
                assigned_user=task.assigned_user,
                assigned_user_name=task.assigned_user_name,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._write("update task"):
            result = await self.session.execute(statement)
        if result.rowcount == 0:
            raise NotFound("Task not found")
        return task

    async def delete(self, task_id: str) -> int:
        async with self._write("delete task"):
            result = await self.session.execute(delete(TaskModel).where(TaskModel.id == task_id))
        return result.rowcount
