from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
from invoice_intake.repositories.base_repository import (
    LIKE_ESCAPE,
    contains_pattern,
    escape_like,
)
from invoice_intake.repositories.counterparty_repository_interface import ICounterpartyRepository
from invoice_intake.models.counterparty import Counterparty
import logging

logger = logging.getLogger(__name__)


class CounterpartyRepository(ICounterpartyRepository):

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, entity: Counterparty) -> Counterparty:
        self.db.add(entity)
        await self.db.commit()
        await self.db.refresh(entity)
        logger.info(f"Created counterparty: {entity.name} ({entity.id})")
        return entity

    async def get_by_id(
        self,
        entity_id: str,
    ) -> Optional[Counterparty]:
        result = await self.db.execute(
            select(Counterparty).where(Counterparty.id == entity_id)
        )
        return result.scalar_one_or_none()

    async def update(
        self,
        entity: Counterparty,
    ) -> Counterparty:
        await self.db.commit()
        await self.db.refresh(entity)
        return entity

    async def find_by_tax_id(self, tax_id: str) -> Optional[Counterparty]:
        result = await self.db.execute(
            select(Counterparty)
            .where(Counterparty.tax_id == tax_id.strip().upper())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_by_name(self, name: str) -> Optional[Counterparty]:
        result = await self.db.execute(
            select(Counterparty)
            .where(Counterparty.name.ilike(escape_like(name.strip()), escape=LIKE_ESCAPE))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_similar_with_tax_id(self, name: str) -> Optional[Counterparty]:
        result = await self.db.execute(
            select(Counterparty)
            .where(
                Counterparty.name.ilike(contains_pattern(name), escape=LIKE_ESCAPE),
                Counterparty.tax_id.is_not(None),
            )
            .order_by(Counterparty.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_template(self, counterparty_id: str) -> Optional[dict]:
        result = await self.db.execute(
            select(Counterparty.template).where(Counterparty.id == counterparty_id)
        )
        return result.scalar_one_or_none()

    async def save_template(self, counterparty_id: str, template: dict) -> bool:
        counterparty = await self.get_by_id(counterparty_id)
        if not counterparty:
            return False
        counterparty.template = template
        await self.db.commit()
        logger.info(f"Saved template for counterparty: {counterparty_id}")
        return True

    async def list_templates(self) -> list[dict]:
        result = await self.db.execute(
            select(Counterparty.template).where(Counterparty.template.is_not(None))
        )
        return [t for t in result.scalars().all() if t]
