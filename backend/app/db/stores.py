"""
SQLAlchemy implementations of the configuration engine's storage contracts.

Each store wraps the request's AsyncSession; commit/rollback stays with
``get_db``. Configurations are saved as whole documents (JSONB tree columns
replaced in one UPDATE), so concurrent edits resolve as last write wins.
"""
import logging
import uuid
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.config_schema import ConfigurationDocument
from app.models.orm_models import Company, Configuration, DropdownMaster, Vehicle
from app.models.records import CompanyRecord, DropdownRecord, VehicleRecord
from app.services.errors import ConflictError, NotFoundError

logger = logging.getLogger("autoerp-db")

_DOCUMENT_COLUMNS = (
    "company_id", "purpose", "config_name", "description", "version", "is_active", "is_default",
    "created_by", "settings", "valuation_settings", "categories", "sections", "calculations",
)
_VEHICLE_COLUMNS = (
    "inspection_result", "trade_in_result", "inspection_report_pdf", "tradein_report_pdf",
    "last_inspection_config_id", "last_tradein_config_id",
)


def _is_uuid(value) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def config_to_document(row: Configuration) -> ConfigurationDocument:
    return ConfigurationDocument.model_validate({
        "id": row.id,
        "company_id": row.company_id,
        "purpose": row.purpose,
        "config_name": row.config_name,
        "description": row.description,
        "version": row.version,
        "is_active": row.is_active,
        "is_default": row.is_default,
        "created_by": row.created_by,
        "settings": row.settings or {},
        "valuation_settings": row.valuation_settings,
        "categories": row.categories or [],
        "sections": row.sections or [],
        "calculations": row.calculations or [],
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    })


class SqlCompanyDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_company(self, company_id: str) -> Optional[CompanyRecord]:
        if not _is_uuid(company_id):
            return None
        row = await self.db.get(Company, company_id)
        if row is None or not row.is_active:
            return None
        return CompanyRecord(id=row.id, name=row.name, s3_config=row.s3_config)


class SqlDropdownStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _record(row: DropdownMaster) -> DropdownRecord:
        return DropdownRecord(
            id=row.id,
            company_id=row.company_id,
            dropdown_name=row.dropdown_name,
            display_name=row.display_name,
            description=row.description,
            allow_multiple_selection=row.allow_multiple_selection,
            is_active=row.is_active,
            values=row.values or [],
        )

    async def find_dropdown(
        self,
        company_id: str,
        *,
        dropdown_id: Optional[str] = None,
        name: Optional[str] = None,
        active_only: bool = True,
    ) -> Optional[DropdownRecord]:
        stmt = select(DropdownMaster).where(DropdownMaster.company_id == company_id)
        if dropdown_id is not None:
            if not _is_uuid(dropdown_id):
                return None
            stmt = stmt.where(DropdownMaster.id == dropdown_id)
        if name is not None:
            stmt = stmt.where(DropdownMaster.dropdown_name == name)
        if active_only:
            stmt = stmt.where(DropdownMaster.is_active.is_(True))
        row = (await self.db.execute(stmt.limit(1))).scalar_one_or_none()
        return self._record(row) if row else None

    async def find_dropdowns(self, company_id: str, dropdown_ids: Sequence[str]) -> List[DropdownRecord]:
        ids = [d for d in dropdown_ids if _is_uuid(d)]
        if not ids:
            return []
        result = await self.db.execute(
            select(DropdownMaster).where(DropdownMaster.company_id == company_id, DropdownMaster.id.in_(ids))
        )
        return [self._record(row) for row in result.scalars().all()]


class SqlVehicleStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_vehicle(self, company_id: str, vehicle_stock_id: int, vehicle_type: str) -> Optional[VehicleRecord]:
        result = await self.db.execute(
            select(Vehicle).where(
                Vehicle.company_id == company_id,
                Vehicle.vehicle_stock_id == vehicle_stock_id,
                Vehicle.vehicle_type == vehicle_type,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        data = {
            c: getattr(row, c) for c in (
                "id", "company_id", "vehicle_stock_id", "vehicle_type", "make", "model", "year",
                "vin", "plate_no", "vehicle_hero_image", *_VEHICLE_COLUMNS,
            )
        }
        for column in ("inspection_result", "trade_in_result", "inspection_report_pdf", "tradein_report_pdf"):
            data[column] = data[column] or []
        return VehicleRecord.model_validate(data)

    async def save_vehicle(self, vehicle: VehicleRecord) -> None:
        row = await self.db.get(Vehicle, vehicle.id)
        if row is None or row.company_id != vehicle.company_id:
            raise NotFoundError("vehicle", str(vehicle.vehicle_stock_id))
        data = vehicle.model_dump(mode="json")
        for column in _VEHICLE_COLUMNS:
            setattr(row, column, data[column])
        await self.db.flush()


class SqlConfigurationStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _scoped(self, company_id: str, purpose: str):
        return select(Configuration).where(
            Configuration.company_id == company_id,
            Configuration.purpose == purpose,
        )

    async def _first(self, stmt) -> Optional[ConfigurationDocument]:
        row = (await self.db.execute(stmt.limit(1))).scalar_one_or_none()
        return config_to_document(row) if row else None

    async def get(self, company_id: str, purpose: str, config_id: str) -> Optional[ConfigurationDocument]:
        if not _is_uuid(company_id) or not _is_uuid(config_id):
            return None
        return await self._first(self._scoped(company_id, purpose).where(Configuration.id == config_id))

    async def find_active(self, company_id: str, purpose: str) -> Optional[ConfigurationDocument]:
        if not _is_uuid(company_id):
            return None
        return await self._first(
            self._scoped(company_id, purpose)
            .where(Configuration.is_active.is_(True))
            .order_by(Configuration.is_default.desc(), Configuration.updated_at.desc())
        )

    async def find_by_name(self, company_id: str, purpose: str, config_name: str) -> Optional[ConfigurationDocument]:
        return await self._first(self._scoped(company_id, purpose).where(Configuration.config_name == config_name))

    async def find_default(self, company_id: str, purpose: str) -> Optional[ConfigurationDocument]:
        return await self._first(self._scoped(company_id, purpose).where(Configuration.is_default.is_(True)))

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
        stmt = self._scoped(company_id, purpose)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(Configuration.config_name.ilike(pattern), Configuration.description.ilike(pattern)))
        if status != "all":
            stmt = stmt.where(Configuration.is_active.is_(status == "active"))
        total = (await self.db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
        result = await self.db.execute(
            stmt.order_by(Configuration.updated_at.desc()).offset(offset).limit(limit)
        )
        return [config_to_document(r) for r in result.scalars().all()], total

    async def list_active(self, company_id: str, purpose: str) -> List[ConfigurationDocument]:
        if not _is_uuid(company_id):
            return []
        result = await self.db.execute(
            self._scoped(company_id, purpose)
            .where(Configuration.is_active.is_(True))
            .order_by(Configuration.is_default.desc(), Configuration.updated_at.desc())
        )
        return [config_to_document(r) for r in result.scalars().all()]

    async def save(self, *docs: ConfigurationDocument) -> None:
        # Flush cleared defaults before the new default so the partial unique index holds per statement.
        try:
            for doc in sorted(docs, key=lambda d: d.is_default):
                row = await self.db.get(Configuration, doc.id)
                if row is None:
                    row = Configuration(id=doc.id, created_at=doc.created_at)
                    self.db.add(row)
                data = doc.model_dump(mode="json")
                for column in _DOCUMENT_COLUMNS:
                    setattr(row, column, data[column])
                row.updated_at = doc.updated_at
                await self.db.flush()
        except IntegrityError as e:
            logger.warning("Configuration save rejected by constraint: %s", e.orig)
            raise ConflictError("Configuration conflicts with an existing default or name") from e
