from abc import abstractmethod
from typing import Optional
from invoice_intake.repositories.base_repository import BaseRepository
from invoice_intake.models.counterparty import Counterparty


class ICounterpartyRepository(BaseRepository[Counterparty]):

    @abstractmethod
    async def get_by_id(self, entity_id: str) -> Optional[Counterparty]:
        raise NotImplementedError

    @abstractmethod
    async def update(self, entity: Counterparty) -> Counterparty:
        """Persist changes to a counterparty loaded from this repository."""
        raise NotImplementedError

    @abstractmethod
    async def find_by_tax_id(self, tax_id: str) -> Optional[Counterparty]:
        raise NotImplementedError

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[Counterparty]:
        """Case-insensitive exact name match."""
        raise NotImplementedError

    @abstractmethod
    async def find_similar_with_tax_id(self, name: str) -> Optional[Counterparty]:
        """A counterparty whose name contains `name` and that has a GSTIN on file."""
        raise NotImplementedError

    @abstractmethod
    async def get_template(self, counterparty_id: str) -> Optional[dict]:
        raise NotImplementedError

    @abstractmethod
    async def save_template(self, counterparty_id: str, template: dict) -> bool:
        """Store the template JSON; False when the counterparty does not exist."""
        raise NotImplementedError

    @abstractmethod
    async def list_templates(self) -> list[dict]:
        raise NotImplementedError
