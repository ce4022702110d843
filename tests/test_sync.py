import logging

import pytest
from sqlalchemy.exc import IntegrityError

from app.errors import ReferenceNotFound, StoreUnavailable, SyncIncomplete
from app.models.ids import new_object_id
from app.schemas.task import TaskIn
from app.schemas.user import UserIn
from app.services.query import QueryBuilder, QueryOptions

from .conftest import deadline


async def assert_consistent(task_store, user_store):
    """Both directions of the assignment relation hold across the database."""
    tasks = {t.id: t for t in await task_store.find(_all(task_store))}
    users = {u.id: u for u in await user_store.find(_all(user_store))}

    for task in tasks.values():
        if task.assigned_user:
            user = users[task.assigned_user]
            assert user.pending_tasks.count(task.id) == 1
            assert task.assigned_user_name == user.name
        else:
            assert task.assigned_user_name == "unassigned"
    for user in users.values():
        for task_id in user.pending_tasks:
            assert task_id not in tasks or tasks[task_id].assigned_user == user.id


def _all(store):
    return QueryBuilder(store.collection).build(QueryOptions())


# ── task side ───────────────────────────────────────────

async def test_create_task_with_assignee_updates_pending_tasks(make_user, make_task, task_store, user_store):
    user = await make_user(name="Alice")
    task = await make_task(assigned_user=user.id)

    assert task.assigned_user == user.id
    assert task.assigned_user_name == "Alice"
    assert (await user_store.find_by_id(user.id)).pending_tasks == [task.id]
    await assert_consistent(task_store, user_store)


async def test_create_task_without_assignee(make_task, user_store):
    task = await make_task()
    assert task.assigned_user == ""
    assert task.assigned_user_name == "unassigned"


async def test_create_task_ignores_client_supplied_user_name(make_user, task_service):
    user = await make_user(name="Alice")
    task = await task_service.create(
        TaskIn(name="t", deadline=deadline(), assignedUser=user.id, assignedUserName="Mallory")
    )
    assert task.assigned_user_name == "Alice"


async def test_create_task_with_missing_user_writes_nothing(task_service):
    before = await task_service.list(QueryOptions(count=True))
    with pytest.raises(ReferenceNotFound):
        await task_service.create(TaskIn(name="t", deadline=deadline(), assignedUser=new_object_id()))
    with pytest.raises(ReferenceNotFound):
        await task_service.create(TaskIn(name="t", deadline=deadline(), assignedUser="not-an-id"))
    assert await task_service.list(QueryOptions(count=True)) == before


async def test_replace_twice_keeps_a_single_pending_entry(make_user, make_task, task_service, user_store):
    user = await make_user()
    task = await make_task()
    body = TaskIn(name="same", deadline=deadline(), assignedUser=user.id)

    await task_service.replace(task.id, body)
    await task_service.replace(task.id, body)

    assert (await user_store.find_by_id(user.id)).pending_tasks == [task.id]


async def test_reassignment_moves_task_between_users(make_user, make_task, task_service, task_store, user_store):
    u1 = await make_user(name="One")
    u2 = await make_user(name="Two")
    task = await make_task(assigned_user=u1.id)

    updated = await task_service.replace(
        task.id, TaskIn(name=task.name, deadline=task.deadline, assignedUser=u2.id)
    )

    assert updated.assigned_user_name == "Two"
    assert (await user_store.find_by_id(u1.id)).pending_tasks == []
    assert (await user_store.find_by_id(u2.id)).pending_tasks == [task.id]
    await assert_consistent(task_store, user_store)


async def test_replace_with_missing_user_leaves_task_unmodified(make_user, make_task, task_service, task_store):
    user = await make_user()
    task = await make_task(name="original", assigned_user=user.id)

    with pytest.raises(ReferenceNotFound):
        await task_service.replace(
            task.id, TaskIn(name="changed", deadline=deadline(), assignedUser=new_object_id())
        )

    stored = await task_store.find_by_id(task.id)
    assert stored.name == "original"
    assert stored.assigned_user == user.id


async def test_unassigning_a_task_clears_previous_pending_entry(make_user, make_task, task_service, user_store):
    user = await make_user()
    task = await make_task(assigned_user=user.id)

    updated = await task_service.replace(task.id, TaskIn(name=task.name, deadline=task.deadline))

    assert updated.assigned_user == ""
    assert updated.assigned_user_name == "unassigned"
    assert (await user_store.find_by_id(user.id)).pending_tasks == []


async def test_delete_task_removes_pending_entry(make_user, make_task, task_service, task_store, user_store):
    user = await make_user()
    keep = await make_task(assigned_user=user.id)
    gone = await make_task(assigned_user=user.id)

    await task_service.delete(gone.id)

    assert await task_store.find_by_id(gone.id) is None
    assert (await user_store.find_by_id(user.id)).pending_tasks == [keep.id]


# ── user side ───────────────────────────────────────────

async def test_delete_user_unassigns_all_their_tasks(make_user, make_task, user_service, task_store, user_store):
    user = await make_user()
    t1 = await make_task(assigned_user=user.id)
    t2 = await make_task(assigned_user=user.id)

    await user_service.delete(user.id)

    assert await user_store.find_by_id(user.id) is None
    for task_id in (t1.id, t2.id):
        task = await task_store.find_by_id(task_id)
        assert task.assigned_user == ""
        assert task.assigned_user_name == "unassigned"


async def test_replace_user_applies_symmetric_difference(make_user, make_task, user_service, task_store, user_store):
    user = await make_user(name="Owner")
    other = await make_user(name="Other")
    kept = await make_task(assigned_user=user.id)
    dropped = await make_task(assigned_user=user.id)
    stolen = await make_task(assigned_user=other.id)
    fresh = await make_task()

    updated = await user_service.replace(
        user.id,
        UserIn(name="Owner", email=user.email, pendingTasks=[kept.id, stolen.id, fresh.id, fresh.id]),
    )

    assert updated.pending_tasks == [kept.id, stolen.id, fresh.id]
    assert (await task_store.find_by_id(dropped.id)).assigned_user == ""
    assert (await task_store.find_by_id(stolen.id)).assigned_user == user.id
    assert (await task_store.find_by_id(fresh.id)).assigned_user_name == "Owner"
    assert (await user_store.find_by_id(other.id)).pending_tasks == []
    await assert_consistent(task_store, user_store)


async def test_replace_user_does_not_clobber_a_task_reassigned_elsewhere(
    make_user, make_task, user_service, task_store, user_store
):
    user = await make_user()
    other = await make_user()
    task = await make_task(assigned_user=user.id)

    # Simulate a stale pendingTasks entry: the task already moved to `other`
    await task_store.update_matching({"_id": task.id}, {"assignedUser": other.id, "assignedUserName": other.name})
    await user_store.add_pending_task(other.id, task.id)

    await user_service.replace(user.id, UserIn(name=user.name, email=user.email, pendingTasks=[]))

    assert (await task_store.find_by_id(task.id)).assigned_user == other.id


async def test_renaming_a_user_refreshes_cached_names(make_user, make_task, user_service, task_store):
    user = await make_user(name="Before")
    task = await make_task(assigned_user=user.id)

    await user_service.replace(user.id, UserIn(name="After", email=user.email, pendingTasks=[task.id]))

    assert (await task_store.find_by_id(task.id)).assigned_user_name == "After"


async def test_create_user_with_pending_tasks_assigns_them(make_user, make_task, task_store, user_store):
    previous = await make_user()
    task = await make_task(assigned_user=previous.id)

    user = await make_user(name="New", pending=[task.id])

    assert (await task_store.find_by_id(task.id)).assigned_user == user.id
    assert (await user_store.find_by_id(previous.id)).pending_tasks == []
    await assert_consistent(task_store, user_store)


async def test_pending_tasks_must_exist(make_user, user_service):
    with pytest.raises(ReferenceNotFound):
        await make_user(pending=[new_object_id()])
    assert await user_service.list(QueryOptions(count=True)) == 0


async def test_dangling_pending_entries_are_tolerated(make_user, make_task, task_service, user_store):
    user = await make_user()
    task = await make_task(assigned_user=user.id)
    # Delete the task row directly, leaving the reference behind
    await task_service.tasks.delete(task.id)

    assert (await user_store.find_by_id(user.id)).pending_tasks == [task.id]
    assert await task_service.list(QueryOptions(count=True)) == 0


async def test_user_holding_a_dangling_entry_can_be_written_back(make_user, make_task, task_service, user_service, user_store):
    user = await make_user()
    task = await make_task(assigned_user=user.id)
    await task_service.tasks.delete(task.id)

    # A client echoing the user as read gets its write through
    current = await user_store.find_by_id(user.id)
    updated = await user_service.replace(
        user.id, UserIn(name="Renamed", email=current.email, pendingTasks=current.pending_tasks)
    )

    assert updated.name == "Renamed"
    assert updated.pending_tasks == []
    assert (await user_store.find_by_id(user.id)).pending_tasks == []


async def test_replace_user_rejects_newly_added_missing_task(make_user, make_task, user_service, user_store):
    task = await make_task()
    user = await make_user(pending=[task.id])

    with pytest.raises(ReferenceNotFound):
        await user_service.replace(
            user.id, UserIn(name=user.name, email=user.email, pendingTasks=[task.id, new_object_id()])
        )
    assert (await user_store.find_by_id(user.id)).pending_tasks == [task.id]


# ── partial failure and repair ──────────────────────────

async def test_secondary_failure_keeps_primary_write(make_user, task_service, task_store, user_store, monkeypatch):
    user = await make_user()

    async def broken(*args, **kwargs):
        raise StoreUnavailable("Failed to update pending tasks")

    monkeypatch.setattr(user_store, "add_pending_task", broken)

    with pytest.raises(SyncIncomplete) as info:
        await task_service.create(TaskIn(name="t", deadline=deadline(), assignedUser=user.id))

    task = info.value.entity
    assert (await task_store.find_by_id(task.id)).assigned_user == user.id
    assert (await user_store.find_by_id(user.id)).pending_tasks == []


async def test_reconcile_restores_the_invariant(make_user, make_task, sync, task_store, user_store):
    alice = await make_user(name="Alice")
    bob = await make_user(name="Bob")
    missing_entry = await make_task(assigned_user=alice.id)
    orphaned = await make_task(assigned_user=bob.id)
    stale_name = await make_task(assigned_user=alice.id)

    await user_store.remove_pending_task(alice.id, missing_entry.id)
    await user_store.delete(bob.id)
    await task_store.update_matching({"_id": stale_name.id}, {"assignedUserName": "Alicia"})
    await user_store.add_pending_task(alice.id, orphaned.id)

    repairs = await sync.reconcile()

    assert repairs == {"added": 1, "unassigned": 1, "renamed": 1, "removed": 1}
    await assert_consistent(task_store, user_store)
    assert await sync.reconcile() == {"added": 0, "unassigned": 0, "renamed": 0, "removed": 0}


async def test_replace_task_failure_keeps_new_assignment(make_user, make_task, task_service, task_store, user_store, monkeypatch):
    u1 = await make_user(name="One")
    u2 = await make_user(name="Two")
    task = await make_task(assigned_user=u1.id)

    async def broken(*args, **kwargs):
        raise StoreUnavailable("Failed to update pending tasks")

    monkeypatch.setattr(user_store, "add_pending_task", broken)

    with pytest.raises(SyncIncomplete) as info:
        await task_service.replace(task.id, TaskIn(name="moved", deadline=deadline(), assignedUser=u2.id))

    assert info.value.entity.assigned_user == u2.id
    stored = await task_store.find_by_id(task.id)
    assert stored.name == "moved"
    assert stored.assigned_user == u2.id
    assert stored.assigned_user_name == "Two"
    assert (await user_store.find_by_id(u1.id)).pending_tasks == []
    assert (await user_store.find_by_id(u2.id)).pending_tasks == []


async def test_replace_user_failure_keeps_user_write(make_user, make_task, user_service, task_store, user_store, monkeypatch):
    user = await make_user(name="Before")
    task = await make_task(assigned_user=user.id)

    async def broken(*args, **kwargs):
        raise StoreUnavailable("Failed to update tasks")

    monkeypatch.setattr(task_store, "update_matching", broken)

    with pytest.raises(SyncIncomplete) as info:
        await user_service.replace(user.id, UserIn(name="After", email=user.email, pendingTasks=[]))

    assert info.value.entity.name == "After"
    stored = await user_store.find_by_id(user.id)
    assert stored.name == "After"
    assert stored.pending_tasks == []
    # The task side was never written
    unchanged = await task_store.find_by_id(task.id)
    assert unchanged.assigned_user == user.id
    assert unchanged.assigned_user_name == "Before"


async def test_delete_task_cleanup_failure_leaves_task_in_place(make_user, make_task, task_service, task_store, user_store, monkeypatch):
    user = await make_user()
    task = await make_task(assigned_user=user.id)

    async def broken(*args, **kwargs):
        raise StoreUnavailable("Failed to update pending tasks")

    monkeypatch.setattr(user_store, "remove_pending_task", broken)

    with pytest.raises(StoreUnavailable):
        await task_service.delete(task.id)

    assert (await task_store.find_by_id(task.id)).assigned_user == user.id
    assert (await user_store.find_by_id(user.id)).pending_tasks == [task.id]


async def test_set_add_race_is_logged_as_no_op(make_user, make_task, user_store, monkeypatch, caplog):
    user = await make_user()
    task = await make_task()

    async def duplicate(*args, **kwargs):
        raise IntegrityError("INSERT INTO user_pending_tasks", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(user_store.session, "execute", duplicate)

    with caplog.at_level(logging.DEBUG, logger="app.stores.users"):
        await user_store.add_pending_task(user.id, task.id)

    messages = [r.getMessage() for r in caplog.records if r.name == "app.stores.users"]
    assert messages == [f"Set-add task={task.id} user={user.id} was a no-op"]
