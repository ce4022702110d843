"""
Fill the database with random users and tasks through the services, so the
assignment relation is built exactly as the API would build it.

Usage:
    python -m app.scripts.populate_data --users 20 --tasks 100
"""
import argparse
import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone

from app.config import settings
from app.database import AsyncSessionLocal, engine, init_models
from app.logging_setup import setup_logging
from app.schemas.task import TaskIn
from app.schemas.user import UserIn
from app.services.tasks import TaskService
from app.services.users import UserService
from app.stores.tasks import TaskStore
from app.stores.users import UserStore

logger = logging.getLogger(__name__)

FIRST_NAMES = ["Ada", "Grace", "Linus", "Barbara", "Ken", "Margaret", "Dennis", "Frances", "Alan", "Radia"]
LAST_NAMES = ["Lovelace", "Hopper", "Torvalds", "Liskov", "Thompson", "Hamilton", "Ritchie", "Allen", "Turing", "Perlman"]
VERBS = ["Write", "Review", "Refactor", "Test", "Deploy", "Document", "Benchmark", "Fix"]
NOUNS = ["parser", "scheduler", "login page", "report", "cache", "migration", "dashboard", "API client"]


async def populate(n_users: int, n_tasks: int, completed_ratio: float = 0.5, assigned_ratio: float = 0.6):
    async with AsyncSessionLocal() as db:
        tasks, users = TaskStore(db), UserStore(db)
        user_service = UserService(tasks, users)
        task_service = TaskService(tasks, users)

        created_users = []
        for i in range(n_users):
            name = f"{random.choice(FIRST_NAMES)} {random.choice(LAST_NAMES)}"
            email = f"{name.lower().replace(' ', '.')}.{i}@example.com"
            created_users.append(await user_service.create(UserIn(name=name, email=email)))

        now = datetime.now(timezone.utc)
        for _ in range(n_tasks):
            assignee = ""
            if created_users and random.random() < assigned_ratio:
                assignee = random.choice(created_users).id
            await task_service.create(TaskIn(
                name=f"{random.choice(VERBS)} the {random.choice(NOUNS)}",
                description="Generated by populate_data",
                deadline=now + timedelta(days=random.randint(-10, 60)),
                completed=random.random() < completed_ratio,
                assignedUser=assignee,
            ))

    logger.info("Created %d users and %d tasks", n_users, n_tasks)


def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("-u", "--users", type=int, default=20)
    parser.add_argument("-t", "--tasks", type=int, default=100)
    args = parser.parse_args()

    setup_logging(settings.log_level, settings.log_file)

    async def run():
        await init_models()
        try:
            await populate(args.users, args.tasks)
        finally:
            await engine.dispose()

    asyncio.run(run())


if __name__ == "__main__":
    main()
