"""
Keeps the Task.assignedUser <-> User.pendingTasks relation consistent.

The two sides live in separate documents and there is no cross-document
transaction, so each operation is a short sequence of single-document
writes. The directly requested write happens first on create/replace; the
corrective writes on the other collection follow. Every corrective write is
a set-add, a set-remove or a plain field overwrite, so re-running one is
harmless. When a corrective write fails the primary write is left in place
and the failure is reported as SyncIncomplete; `reconcile` re-drives them.
"""
import logging
from contextlib import asynccontextmanager

from app.errors import ReferenceNotFound, StoreUnavailable, SyncIncomplete
from app.models.ids import is_object_id
from app.models.task import UNASSIGNED
from app.schemas.task import Task
from app.schemas.user import User
from app.services.query import QueryBuilder, QueryOptions
from app.stores.tasks import TASKS, TaskStore
from app.stores.users import USERS, UserStore

logger = logging.getLogger(__name__)

UNASSIGN = {"assignedUser": "", "assignedUserName": UNASSIGNED}


class RelationshipSynchronizer:

    def __init__(self, tasks: TaskStore, users: UserStore):
        self.tasks = tasks
        self.users = users

    @asynccontextmanager
    async def _secondary(self, entity, what: str):
        try:
            yield
        except StoreUnavailable as exc:
            logger.exception("Primary write for %s kept, but failed to %s", entity.id, what)
            raise SyncIncomplete(f"Saved, but failed to {what}", entity=entity) from exc

    # ── validation ──────────────────────────────────────

    async def resolve_assignee(self, user_id: str) -> User:
        user = await self.users.find_by_id(user_id.lower()) if is_object_id(user_id) else None
        if user is None:
            raise ReferenceNotFound("Assigned user not found")
        return user

    async def resolve_pending(self, task_ids: list[str], held=()) -> list[str]:
        """
        Normalise a pendingTasks list. Entries not in `held` must name an
        existing task; held entries whose task is gone are dropped.
        """
        held = set(held)
        malformed = [t for t in task_ids if not is_object_id(t)]
        normalised = list(dict.fromkeys(t.lower() for t in task_ids if is_object_id(t)))
        existing = await self.tasks.existing_ids(normalised)
        missing = malformed + [t for t in normalised if t not in existing and t not in held]
        if missing:
            raise ReferenceNotFound(f"Pending task not found: {', '.join(missing)}")
        return [t for t in normalised if t in existing]

    # ── task side ───────────────────────────────────────

    async def create_task(
        self, *, name, deadline, description="", completed=False, assigned_user=""
    ) -> Task:
        if not assigned_user:
            task = await self.tasks.insert(
                name=name, deadline=deadline, description=description,
                completed=completed, assigned_user="", assigned_user_name=UNASSIGNED,
            )
            logger.info("Task created id=%s (unassigned)", task.id)
            return task

        user = await self.resolve_assignee(assigned_user)
        task = await self.tasks.insert(
            name=name, deadline=deadline, description=description,
            completed=completed, assigned_user=user.id, assigned_user_name=user.name,
        )
        logger.info("Task created id=%s assignedUser=%s", task.id, user.id)

        async with self._secondary(task, "add the task to the user's pending tasks"):
            await self.users.add_pending_task(user.id, task.id)
        return task

    async def replace_task(self, current: Task, **fields) -> Task:
        """Full replace of `current`; `fields` carries every writable task field."""
        previous = current.assigned_user
        assigned_user = fields.pop("assigned_user", "") or ""

        if assigned_user:
            user = await self.resolve_assignee(assigned_user)
            task = current.model_copy(
                update={**fields, "assigned_user": user.id, "assigned_user_name": user.name}
            )
            task = await self.tasks.replace(task)
            logger.info("Task replaced id=%s assignedUser=%s (was %r)", task.id, user.id, previous)

            async with self._secondary(task, "move the task between pending lists"):
                if previous and previous != user.id:
                    await self.users.remove_pending_task(previous, task.id)
                await self.users.add_pending_task(user.id, task.id)
            return task

        task = current.model_copy(
            update={**fields, "assigned_user": "", "assigned_user_name": UNASSIGNED}
        )
        task = await self.tasks.replace(task)
        logger.info("Task replaced id=%s (unassigned, was %r)", task.id, previous)

        if previous:
            async with self._secondary(task, "remove the task from the previous user's pending tasks"):
                await self.users.remove_pending_task(previous, task.id)
        return task

    async def delete_task(self, task: Task) -> Task:
        if task.assigned_user:
            await self.users.remove_pending_task(task.assigned_user, task.id)
        await self.tasks.delete(task.id)
        logger.info("Task deleted id=%s", task.id)
        return task

    # ── user side ───────────────────────────────────────

    async def create_user(self, *, name, email, pending_tasks=()) -> User:
        task_ids = await self.resolve_pending(list(pending_tasks))
        user = await self.users.insert(name=name, email=email, pending_tasks=task_ids)
        logger.info("User created id=%s pendingTasks=%d", user.id, len(task_ids))

        if task_ids:
            async with self._secondary(user, "assign the pending tasks"):
                await self._assign_tasks(user, task_ids)
        return user

    async def replace_user(self, current: User, *, name, email, pending_tasks=()) -> User:
        task_ids = await self.resolve_pending(list(pending_tasks), held=current.pending_tasks)
        previous_ids = set(current.pending_tasks)
        new_ids = set(task_ids)

        user = await self.users.replace(
            current.model_copy(update={"name": name, "email": email, "pending_tasks": task_ids})
        )
        logger.info("User replaced id=%s pendingTasks=%d", user.id, len(task_ids))

        removed = [t for t in current.pending_tasks if t not in new_ids]
        added = [t for t in task_ids if t not in previous_ids]

        async with self._secondary(user, "update the tasks of the user"):
            if removed:
                # Only tasks still pointing here; others were reassigned meanwhile
                await self.tasks.update_matching(
                    {"_id": {"$in": removed}, "assignedUser": user.id}, UNASSIGN
                )
            await self._assign_tasks(user, added)
            if user.name != current.name:
                await self.tasks.update_matching(
                    {"assignedUser": user.id}, {"assignedUserName": user.name}
                )
        return user

    async def _assign_tasks(self, user: User, task_ids: list[str]) -> None:
        for task_id in task_ids:
            task = await self.tasks.find_by_id(task_id)
            if task is None:
                continue
            if task.assigned_user and task.assigned_user != user.id:
                await self.users.remove_pending_task(task.assigned_user, task.id)
            # Unconditional: a reassignment racing with this one is overwritten
            await self.tasks.update_matching(
                {"_id": task.id}, {"assignedUser": user.id, "assignedUserName": user.name}
            )

    async def delete_user(self, user: User) -> User:
        await self.tasks.update_matching({"assignedUser": user.id}, UNASSIGN)
        await self.users.delete(user.id)
        logger.info("User deleted id=%s", user.id)
        return user

    # ── repair ──────────────────────────────────────────

    async def reconcile(self) -> dict[str, int]:
        """
        Sweep both collections and re-drive every corrective write.

        Returns how many repairs of each kind were made:
        - added: task id missing from its assignee's pendingTasks
        - unassigned: task pointing at a user that no longer exists
        - renamed: stale assignedUserName
        - removed: pendingTasks entry naming a missing or reassigned task
        """
        repairs = {"added": 0, "unassigned": 0, "renamed": 0, "removed": 0}
        everything = QueryOptions()
        tasks = await self.tasks.find(QueryBuilder(TASKS).build(everything))
        users = {u.id: u for u in await self.users.find(QueryBuilder(USERS).build(everything))}

        for task in tasks:
            if not task.assigned_user:
                continue
            user = users.get(task.assigned_user)
            if user is None:
                await self.tasks.update_matching(
                    {"_id": task.id, "assignedUser": task.assigned_user}, UNASSIGN
                )
                repairs["unassigned"] += 1
                continue
            if task.id not in user.pending_tasks:
                await self.users.add_pending_task(user.id, task.id)
                repairs["added"] += 1
            if task.assigned_user_name != user.name:
                await self.tasks.update_matching(
                    {"_id": task.id, "assignedUser": user.id}, {"assignedUserName": user.name}
                )
                repairs["renamed"] += 1

        assigned_to = {t.id: t.assigned_user for t in tasks}
        for user in users.values():
            for task_id in user.pending_tasks:
                if assigned_to.get(task_id) != user.id:
                    await self.users.remove_pending_task(user.id, task_id)
                    repairs["removed"] += 1

        logger.info("Reconcile finished: %s", repairs)
        return repairs
