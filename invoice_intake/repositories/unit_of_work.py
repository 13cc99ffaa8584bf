"""
Repositories opened over one database session.

Long-lived components (job workers, the template store) outlive any request,
so they open a scope per operation. Database failures leave the scope as
PersistenceUnavailable.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from invoice_intake.core.database import AsyncSessionLocal
from invoice_intake.core.exceptions import PersistenceUnavailable
from invoice_intake.repositories.counterparty_repository import CounterpartyRepository
from invoice_intake.repositories.counterparty_repository_interface import ICounterpartyRepository
from invoice_intake.repositories.record_repository import RecordRepository
from invoice_intake.repositories.record_repository_interface import IRecordRepository


@dataclass
class Repositories:
    counterparties: ICounterpartyRepository
    records: IRecordRepository


RepositoryProvider = Callable[[], AsyncContextManager[Repositories]]


def repository_provider(
    session_factory: async_sessionmaker[AsyncSession],
) -> RepositoryProvider:
    @asynccontextmanager
    async def open_scope() -> AsyncIterator[Repositories]:
        async with session_factory() as session:
            try:
                yield Repositories(
                    counterparties=CounterpartyRepository(session),
                    records=RecordRepository(session),
                )
                await session.commit()
            except (SQLAlchemyError, OSError) as e:
                await session.rollback()
                raise PersistenceUnavailable(
                    "Database unavailable", {"error": str(e)}
                ) from e
            except Exception:
                await session.rollback()
                raise

    return open_scope


open_repositories = repository_provider(AsyncSessionLocal)
