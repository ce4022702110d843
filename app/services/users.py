from app.errors import MalformedId, NotFound, ValidationError
from app.models.ids import is_object_id
from app.schemas.user import User, UserIn
from app.services.query import QueryBuilder, QueryOptions
from app.services.sync import RelationshipSynchronizer
from app.stores.tasks import TaskStore
from app.stores.users import USERS, UserStore


class UserService:

    def __init__(self, tasks: TaskStore, users: UserStore, default_limit: int | None = None):
        self.users = users
        self.sync = RelationshipSynchronizer(tasks, users)
        self.query = QueryBuilder(USERS, default_limit=default_limit)

    async def list(self, options: QueryOptions) -> list[dict] | int:
        plan = self.query.build(options)
        if plan.count:
            return await self.users.count(plan)
        return [plan.project(u.to_document()) for u in await self.users.find(plan)]

    async def get(self, user_id: str, select=None) -> dict:
        user = await self.load(user_id)
        projection = QueryBuilder.projection(select)
        document = user.to_document()
        return projection.apply(document) if projection else document

    async def load(self, user_id: str) -> User:
        if not is_object_id(user_id):
            raise MalformedId("Malformed user id")
        user = await self.users.find_by_id(user_id.lower())
        if user is None:
            raise NotFound("User not found")
        return user

    @staticmethod
    def _validate(data: UserIn) -> None:
        if not data.name or not data.email:
            raise ValidationError("User must have name and email")

    async def create(self, data: UserIn) -> User:
        self._validate(data)
        return await self.sync.create_user(
            name=data.name, email=data.email, pending_tasks=data.pendingTasks
        )

    async def replace(self, user_id: str, data: UserIn) -> User:
        self._validate(data)
        current = await self.load(user_id)
        return await self.sync.replace_user(
            current, name=data.name, email=data.email, pending_tasks=data.pendingTasks
        )

    async def delete(self, user_id: str) -> User:
        user = await self.load(user_id)
        return await self.sync.delete_user(user)
