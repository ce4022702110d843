import logging
from collections import defaultdict

from sqlalchemy import delete, exists, insert, literal, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.errors import DuplicateEmail, NotFound, StoreUnavailable
from app.models.user import User as UserModel, UserPendingTask
from app.schemas.user import User
from app.services.query import Collection, QueryPlan, SetField
from app.stores.base import BaseStore
from app.utils.dates import utcnow

logger = logging.getLogger(__name__)

USERS = Collection(
    name="users",
    model=UserModel,
    fields={
        "_id": UserModel.id,
        "name": UserModel.name,
        "email": UserModel.email,
        "dateCreated": UserModel.date_created,
    },
    set_fields={
        "pendingTasks": SetField(
            model=UserPendingTask,
            owner=UserPendingTask.user_id,
            value=UserPendingTask.task_id,
            key=UserModel.id,
        ),
    },
    id_fields=frozenset({"_id"}),
)


def _dedupe(task_ids: list[str]) -> list[str]:
    return list(dict.fromkeys(task_ids))


class UserStore(BaseStore):
    """
    Users plus their pendingTasks lists.

    A user's pending-task rows are part of the user document: insert,
    replace and delete write the user row and its rows in one commit.
    """

    collection = USERS

    def _integrity_error(self, exc: IntegrityError):
        if "email" in str(exc.orig).lower():
            return DuplicateEmail("Email already exists")
        return super()._integrity_error(exc)

    async def _pending_for(self, user_ids: list[str]) -> dict[str, list[str]]:
        pending = defaultdict(list)
        if not user_ids:
            return pending
        result = await self.session.execute(
            select(UserPendingTask.user_id, UserPendingTask.task_id)
            .filter(UserPendingTask.user_id.in_(user_ids))
            .order_by(UserPendingTask.seq)
        )
        for user_id, task_id in result.all():
            pending[user_id].append(task_id)
        return pending

    async def _to_users(self, rows: list[UserModel]) -> list[User]:
        pending = await self._pending_for([r.id for r in rows])
        return [
            User(
                id=r.id,
                name=r.name,
                email=r.email,
                pending_tasks=pending.get(r.id, []),
                date_created=r.date_created,
            )
            for r in rows
        ]

    async def find(self, plan: QueryPlan) -> list[User]:
        async with self._read("list users"):
            rows = (await self.session.execute(plan.statement)).scalars().all()
            return await self._to_users(rows)

    async def find_by_id(self, user_id: str) -> User | None:
        statement = (
            select(UserModel)
            .filter(UserModel.id == user_id)
            .execution_options(populate_existing=True)
        )
        async with self._read("load user"):
            row = (await self.session.execute(statement)).scalars().first()
            if row is None:
                return None
            return (await self._to_users([row]))[0]

    async def insert(self, *, name: str, email: str, pending_tasks: list[str] = ()) -> User:
        row = UserModel(name=name, email=email, date_created=utcnow())
        task_ids = _dedupe(list(pending_tasks))
        async with self._write("create user"):
            self.session.add(row)
            await self.session.flush()
            self.session.add_all(UserPendingTask(user_id=row.id, task_id=t) for t in task_ids)
        logger.debug("User inserted id=%s pendingTasks=%s", row.id, task_ids)
        return User(id=row.id, name=row.name, email=row.email, pending_tasks=task_ids, date_created=row.date_created)

    async def replace(self, user: User) -> User:
        task_ids = _dedupe(user.pending_tasks)
        async with self._write("update user"):
            result = await self.session.execute(
                update(UserModel)
                .where(UserModel.id == user.id)
                .values(name=user.name, email=user.email)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFound("User not found")
            await self.session.execute(delete(UserPendingTask).where(UserPendingTask.user_id == user.id))
            self.session.add_all(UserPendingTask(user_id=user.id, task_id=t) for t in task_ids)
        return user.model_copy(update={"pending_tasks": task_ids})

    async def delete(self, user_id: str) -> int:
        async with self._write("delete user"):
            await self.session.execute(delete(UserPendingTask).where(UserPendingTask.user_id == user_id))
            result = await self.session.execute(delete(UserModel).where(UserModel.id == user_id))
        return result.rowcount

    async def add_pending_task(self, user_id: str, task_id: str) -> None:
        """Set-add: a no-op when the pair exists or the user does not."""
        pair = (UserPendingTask.user_id == user_id) & (UserPendingTask.task_id == task_id)
        source = select(literal(user_id), literal(task_id)).where(
            exists().where(UserModel.id == user_id),
            ~exists().where(pair),
        )
        statement = insert(UserPendingTask).from_select(["user_id", "task_id"], source)
        try:
            await self.session.execute(statement)
            await self.session.commit()
        except IntegrityError:
            # A concurrent add of the same pair won; the set already holds it
            await self.session.rollback()
            logger.debug("Set-add task=%s user=%s was a no-op", task_id, user_id)
            return
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("users: failed to add %s to %s pendingTasks: %s", task_id, user_id, exc)
            raise StoreUnavailable("Failed to update pending tasks") from exc
        logger.debug("Set-add task=%s user=%s", task_id, user_id)

    async def remove_pending_task(self, user_id: str, task_id: str) -> None:
        """Set-remove: a no-op when the pair is absent."""
        statement = delete(UserPendingTask).where(
            UserPendingTask.user_id == user_id,
            UserPendingTask.task_id == task_id,
        )
        async with self._write("update pending tasks"):
            await self.session.execute(statement)
        logger.debug("Set-remove task=%s user=%s", task_id, user_id)
