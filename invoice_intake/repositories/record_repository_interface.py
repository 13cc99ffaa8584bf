from abc import abstractmethod
from typing import Optional
from invoice_intake.repositories.base_repository import BaseRepository
from invoice_intake.models.approved_record import ApprovedRecord


class IRecordRepository(BaseRepository[ApprovedRecord]):

    @abstractmethod
    async def get_by_job_id(self, job_id: str) -> Optional[ApprovedRecord]:
        raise NotImplementedError

    @abstractmethod
    async def find_duplicate(
        self,
        invoice_number: str,
        counterparty_name: str,
    ) -> Optional[ApprovedRecord]:
        """Same invoice number from a counterparty whose name contains `counterparty_name`."""
        raise NotImplementedError

    @abstractmethod
    async def find_hsn_code_for_item(self, item_name: str) -> Optional[str]:
        """HSN code of a previously approved line item with a similar name."""
        raise NotImplementedError
