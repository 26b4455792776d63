"""
vehicle_results.py — Read and write a vehicle's inspection / trade-in result snapshot.

The snapshot is independent data: it is never regenerated from the
configuration, only rendered against it. Each save records which
configuration produced the form so later views replay the same version.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from app.models.records import VehicleRecord
from app.services.collaborators import ConfigurationStore, VehicleStore
from app.services.config_resolver import check_purpose
from app.services.errors import NotFoundError, ValidationError
from app.services.workshop_merge import WorkshopFieldInsert, insert_workshop_field

logger = logging.getLogger("autoerp-vehicles")


def _set_result(vehicle: VehicleRecord, purpose: str, result: List[Any]) -> None:
    if purpose == "inspection":
        vehicle.inspection_result = result
    else:
        vehicle.trade_in_result = result


class VehicleResultService:
    def __init__(self, vehicles: VehicleStore, configs: ConfigurationStore):
        self.vehicles = vehicles
        self.configs = configs

    async def _vehicle(self, company_id: str, vehicle_stock_id: int, purpose: str) -> VehicleRecord:
        check_purpose(purpose)
        vehicle = await self.vehicles.find_vehicle(company_id, vehicle_stock_id, purpose)
        if vehicle is None:
            raise NotFoundError("vehicle", str(vehicle_stock_id))
        return vehicle.model_copy(deep=True)

    async def get_result(self, company_id: str, vehicle_stock_id: int, purpose: str) -> Dict[str, Any]:
        vehicle = await self._vehicle(company_id, vehicle_stock_id, purpose)
        return {
            "vehicle": vehicle.summary(),
            "result": vehicle.result_for(purpose),
            "lastConfigId": vehicle.last_config_id_for(purpose),
            "reportPdfs": vehicle.inspection_report_pdf if purpose == "inspection" else vehicle.tradein_report_pdf,
        }

    async def save_result(
        self,
        company_id: str,
        vehicle_stock_id: int,
        purpose: str,
        result: Any,
        report_pdf_url: Optional[str] = None,
        config_id: Optional[str] = None,
    ) -> VehicleRecord:
        """Replace the vehicle's snapshot for ``purpose`` verbatim and tag it with ``config_id``."""
        vehicle = await self._vehicle(company_id, vehicle_stock_id, purpose)
        if not isinstance(result, list):
            raise ValidationError("invalid_result", "Result must be a list of categories or sections")
        if config_id and await self.configs.get(company_id, purpose, config_id) is None:
            raise NotFoundError("configuration", config_id)
        _set_result(vehicle, purpose, result)
        if purpose == "inspection":
            if config_id:
                vehicle.last_inspection_config_id = config_id
            if report_pdf_url:
                vehicle.inspection_report_pdf.append(report_pdf_url)
        else:
            if config_id:
                vehicle.last_tradein_config_id = config_id
            if report_pdf_url:
                vehicle.tradein_report_pdf.append(report_pdf_url)

        await self.vehicles.save_vehicle(vehicle)
        logger.info(
            "Saved %s result for vehicle %s (config %s)", purpose, vehicle_stock_id, config_id,
            extra={"company_id": company_id, "config_id": config_id},
        )
        return vehicle

    async def add_workshop_field(
        self,
        company_id: str,
        vehicle_stock_id: int,
        purpose: str,
        field_data: Mapping[str, Any],
        category_id: Optional[str] = None,
    ) -> WorkshopFieldInsert:
        vehicle = await self._vehicle(company_id, vehicle_stock_id, purpose)
        inserted = insert_workshop_field(vehicle.result_for(purpose), purpose, field_data, category_id)
        _set_result(vehicle, purpose, inserted.snapshot)
        await self.vehicles.save_vehicle(vehicle)
        logger.info(
            "Added workshop field %s to vehicle %s (%s)",
            inserted.field["field_id"], vehicle_stock_id, purpose,
            extra={"company_id": company_id},
        )
        return inserted
