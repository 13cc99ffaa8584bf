from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from invoice_intake.models.approved_record import ApprovedLineItem, ApprovedRecord
from invoice_intake.repositories.base_repository import LIKE_ESCAPE, contains_pattern
from invoice_intake.repositories.record_repository_interface import IRecordRepository
import logging

logger = logging.getLogger(__name__)


class RecordRepository(IRecordRepository):

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, entity: ApprovedRecord) -> ApprovedRecord:
        self.db.add(entity)
        await self.db.commit()
        await self.db.refresh(entity)
        logger.info(f"Created approved record: {entity.id} (job {entity.job_id})")
        return entity

    async def get_by_job_id(self, job_id: str) -> Optional[ApprovedRecord]:
        result = await self.db.execute(
            select(ApprovedRecord).where(ApprovedRecord.job_id == job_id)
        )
        return result.scalar_one_or_none()

    async def find_duplicate(
        self,
        invoice_number: str,
        counterparty_name: str,
    ) -> Optional[ApprovedRecord]:
        result = await self.db.execute(
            select(ApprovedRecord)
            .where(
                ApprovedRecord.invoice_number == invoice_number,
                ApprovedRecord.counterparty_name.ilike(
                    contains_pattern(counterparty_name), escape=LIKE_ESCAPE
                ),
            )
            .order_by(ApprovedRecord.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_hsn_code_for_item(self, item_name: str) -> Optional[str]:
        result = await self.db.execute(
            select(ApprovedLineItem.hsn_code)
            .where(
                ApprovedLineItem.name.ilike(contains_pattern(item_name), escape=LIKE_ESCAPE),
                ApprovedLineItem.hsn_code.is_not(None),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()
