import logging
from contextlib import asynccontextmanager

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ServiceError, StoreUnavailable
from app.services.query import Collection, QueryPlan, compile_where

logger = logging.getLogger(__name__)


class BaseStore:
    """
    Accessor for one collection.

    Every write commits on its own: a store call touches a single document,
    so callers that change several documents get several independent writes.
    """

    collection: Collection

    def __init__(self, session: AsyncSession):
        self.session = session

    def _integrity_error(self, exc: IntegrityError) -> ServiceError:
        return StoreUnavailable(f"Constraint violated on {self.collection.name}")

    @asynccontextmanager
    async def _write(self, what: str):
        try:
            yield
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise self._integrity_error(exc) from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("%s: failed to %s: %s", self.collection.name, what, exc)
            raise StoreUnavailable(f"Failed to {what}") from exc
        except Exception:
            await self.session.rollback()
            raise

    @asynccontextmanager
    async def _read(self, what: str):
        try:
            yield
        except SQLAlchemyError as exc:
            logger.error("%s: failed to %s: %s", self.collection.name, what, exc)
            raise StoreUnavailable(f"Failed to {what}") from exc

    async def count(self, plan: QueryPlan) -> int:
        async with self._read("count documents"):
            return int(await self.session.scalar(plan.statement) or 0)

    async def update_matching(self, filter: dict, fields: dict) -> int:
        """Overwrite `fields` (external names) on every document matching `filter`."""
        clause = compile_where(self.collection, filter)
        values = {self.collection.column_key(name): value for name, value in fields.items()}
        statement = (
            update(self.collection.model)
            .where(clause)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._write(f"update {self.collection.name}"):
            result = await self.session.execute(statement)
        logger.debug("%s: updated %s document(s) matching %s", self.collection.name, result.rowcount, filter)
        return result.rowcount
