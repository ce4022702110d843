"""
Restore the Task.assignedUser <-> User.pendingTasks relation across the
whole database. Safe to run at any time and as often as needed.

Usage:
    python -m app.scripts.reconcile
"""
import asyncio
import logging

from app.config import settings
from app.database import AsyncSessionLocal, engine, init_models
from app.logging_setup import setup_logging
from app.services.sync import RelationshipSynchronizer
from app.stores.tasks import TaskStore
from app.stores.users import UserStore

logger = logging.getLogger(__name__)


async def reconcile() -> dict[str, int]:
    async with AsyncSessionLocal() as db:
        sync = RelationshipSynchronizer(TaskStore(db), UserStore(db))
        return await sync.reconcile()


async def main():
    setup_logging(settings.log_level, settings.log_file)
    await init_models()
    try:
        repairs = await reconcile()
    finally:
        await engine.dispose()
    for kind, n in repairs.items():
        print(f"{kind:>10}: {n}")


if __name__ == "__main__":
    asyncio.run(main())
