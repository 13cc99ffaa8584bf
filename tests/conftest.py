"""In-memory stand-ins for the repositories and the cache."""
import asyncio
import contextlib
import json
import uuid
from typing import Any, Optional

import pytest

from invoice_intake.core.exceptions import PersistenceUnavailable
from invoice_intake.models.approved_record import ApprovedRecord
from invoice_intake.models.counterparty import Counterparty
from invoice_intake.repositories.counterparty_repository_interface import ICounterpartyRepository
from invoice_intake.repositories.record_repository_interface import IRecordRepository
from invoice_intake.repositories.unit_of_work import Repositories


class FakeCounterpartyRepository(ICounterpartyRepository):

    def __init__(self) -> None:
        self.items: dict[str, Counterparty] = {}
        self.save_calls = 0

    async def create(self, entity: Counterparty) -> Counterparty:
        if not entity.id:
            entity.id = str(uuid.uuid4())
        self.items[entity.id] = entity
        return entity

    async def get_by_id(self, entity_id: str) -> Optional[Counterparty]:
        return self.items.get(entity_id)

    async def update(self, entity: Counterparty) -> Counterparty:
        self.items[entity.id] = entity
        return entity

    async def find_by_tax_id(self, tax_id: str) -> Optional[Counterparty]:
        wanted = tax_id.strip().upper()
        return next((c for c in self.items.values() if c.tax_id == wanted), None)

    async def find_by_name(self, name: str) -> Optional[Counterparty]:
        wanted = name.strip().lower()
        return next((c for c in self.items.values() if c.name.lower() == wanted), None)

    async def find_similar_with_tax_id(self, name: str) -> Optional[Counterparty]:
        wanted = name.strip().lower()
        return next(
            (c for c in self.items.values() if wanted in c.name.lower() and c.tax_id),
            None,
        )

    async def get_template(self, counterparty_id: str) -> Optional[dict]:
        # Yield to the loop so concurrent learn() calls could interleave without the lock
        await asyncio.sleep(0)
        counterparty = self.items.get(counterparty_id)
        return counterparty.template if counterparty else None

    async def save_template(self, counterparty_id: str, template: dict) -> bool:
        await asyncio.sleep(0)
        counterparty = self.items.get(counterparty_id)
        if counterparty is None:
            return False
        counterparty.template = template
        self.save_calls += 1
        return True

    async def list_templates(self) -> list[dict]:
        return [c.template for c in self.items.values() if c.template]


class FakeRecordRepository(IRecordRepository):

    def __init__(self) -> None:
        self.items: dict[str, ApprovedRecord] = {}

    async def create(self, entity: ApprovedRecord) -> ApprovedRecord:
        if not entity.id:
            entity.id = str(uuid.uuid4())
        self.items[entity.id] = entity
        return entity

    async def get_by_job_id(self, job_id: str) -> Optional[ApprovedRecord]:
        return next((r for r in self.items.values() if r.job_id == job_id), None)

    async def find_duplicate(
        self,
        invoice_number: str,
        counterparty_name: str,
    ) -> Optional[ApprovedRecord]:
        wanted = counterparty_name.strip().lower()
        return next(
            (
                r
                for r in self.items.values()
                if r.invoice_number == invoice_number
                and wanted in (r.counterparty_name or "").lower()
            ),
            None,
        )

    async def find_hsn_code_for_item(self, item_name: str) -> Optional[str]:
        wanted = item_name.strip().lower()
        for record in self.items.values():
            for item in record.line_items:
                if wanted in item.name.lower() and item.hsn_code:
                    return item.hsn_code
        return None


class InMemoryCache:
    """Stores JSON round-tripped values, like RedisCache."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> Any | None:
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self.data[key] = json.dumps(value)
        self.ttls[key] = ttl_seconds

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def close(self) -> None:
        return None


@contextlib.asynccontextmanager
async def unavailable_repositories():
    raise PersistenceUnavailable("Database unavailable", {"error": "connection refused"})
    yield  # pragma: no cover


@pytest.fixture
def counterparty_repo() -> FakeCounterpartyRepository:
    return FakeCounterpartyRepository()


@pytest.fixture
def record_repo() -> FakeRecordRepository:
    return FakeRecordRepository()


@pytest.fixture
def repositories(
    counterparty_repo: FakeCounterpartyRepository,
    record_repo: FakeRecordRepository,
):
    """RepositoryProvider over the in-memory repositories."""
    repos = Repositories(counterparties=counterparty_repo, records=record_repo)
    return lambda: contextlib.nullcontext(repos)


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def broken_repositories():
    """RepositoryProvider whose database is unreachable."""
    return unavailable_repositories
