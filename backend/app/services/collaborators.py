"""
Storage contracts the configuration engine depends on.

The SQLAlchemy implementations live in ``app.db.stores``; tests use in-memory
ones. Every lookup is scoped to a company id.
"""
from typing import List, Optional, Protocol, Sequence, Tuple

from app.models.config_schema import ConfigurationDocument
from app.models.records import CompanyRecord, DropdownRecord, VehicleRecord


class CompanyDirectory(Protocol):
    async def get_company(self, company_id: str) -> Optional[CompanyRecord]:
        ...


class DropdownStore(Protocol):
    async def find_dropdown(
        self,
        company_id: str,
        *,
        dropdown_id: Optional[str] = None,
        name: Optional[str] = None,
        active_only: bool = True,
    ) -> Optional[DropdownRecord]:
        ...

    async def find_dropdowns(self, company_id: str, dropdown_ids: Sequence[str]) -> List[DropdownRecord]:
        ...


class VehicleStore(Protocol):
    async def find_vehicle(
        self, company_id: str, vehicle_stock_id: int, vehicle_type: str
    ) -> Optional[VehicleRecord]:
        ...

    async def save_vehicle(self, vehicle: VehicleRecord) -> None:
        ...


class ConfigurationStore(Protocol):
    async def get(self, company_id: str, purpose: str, config_id: str) -> Optional[ConfigurationDocument]:
        ...

    async def find_active(self, company_id: str, purpose: str) -> Optional[ConfigurationDocument]:
        """Active config for the purpose: the default one first, else the latest updated."""
        ...

    async def find_by_name(self, company_id: str, purpose: str, config_name: str) -> Optional[ConfigurationDocument]:
        ...

    async def find_default(self, company_id: str, purpose: str) -> Optional[ConfigurationDocument]:
        ...

    async def list(
        self,
        company_id: str,
        purpose: str,
        *,
        search: str = "",
        status: str = "all",
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[ConfigurationDocument], int]:
        ...

    async def list_active(self, company_id: str, purpose: str) -> List[ConfigurationDocument]:
        ...

    async def save(self, *docs: ConfigurationDocument) -> None:
        """Insert or replace each document whole, in one unit of work."""
        ...
