"""
Master inspection routes — what the inspection / trade-in form client calls.

Resolve the configuration to render, read and save a vehicle's result
snapshot, add workshop fields, and recompute calculations server-side.
"""
import logging
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from app.api.deps import EngineServices, get_services, require_company_access
from app.services.errors import ValidationError
from app.services.formula_engine import evaluate_configuration

router = APIRouter(prefix="/api/master-inspection", tags=["Master Inspection"])
logger = logging.getLogger("autoerp-api")


class SaveResultRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    inspection_result: Optional[List[Any]] = None
    trade_in_result: Optional[List[Any]] = None
    report_pdf_url: Optional[str] = Field(default=None, alias="reportPdfUrl")
    config_id: Optional[str] = None

    def result_for(self, purpose: str) -> List[Any]:
        # Key matching the purpose wins; clients sometimes send the other one.
        primary, other = (
            (self.inspection_result, self.trade_in_result) if purpose == "inspection"
            else (self.trade_in_result, self.inspection_result)
        )
        result = primary if primary is not None else other
        if result is None:
            raise ValidationError("invalid_result", "Body needs inspection_result or trade_in_result")
        return result


class EvaluateRequest(BaseModel):
    values: Dict[str, Any]
    config_id: Optional[str] = None
    vehicle_stock_id: Optional[int] = None


class WorkshopFieldRequest(BaseModel):
    field: Dict[str, Any]
    category_id: Optional[str] = None


@router.get("/config/{company_id}/{purpose}")
async def get_configuration(
    purpose: str,
    config_id: Optional[str] = None,
    vehicle_stock_id: Optional[int] = None,
    company_id: str = Depends(require_company_access),
    services: EngineServices = Depends(get_services),
):
    resolved = await services.resolver.resolve(
        company_id, purpose, config_id=config_id, vehicle_stock_id=vehicle_stock_id,
    )
    return {"success": True, "data": resolved.to_payload()}


@router.get("/active-configs/{company_id}/{purpose}")
async def list_active_configurations(
    purpose: str,
    company_id: str = Depends(require_company_access),
    services: EngineServices = Depends(get_services),
):
    return {"success": True, "data": await services.resolver.list_active_configurations(company_id, purpose)}


@router.get("/view/{company_id}/{vehicle_stock_id}/{purpose}")
async def view_result(
    vehicle_stock_id: int,
    purpose: str,
    company_id: str = Depends(require_company_access),
    services: EngineServices = Depends(get_services),
):
    return {"success": True, "data": await services.results.get_result(company_id, vehicle_stock_id, purpose)}


@router.post("/save/{company_id}/{vehicle_stock_id}/{purpose}")
async def save_result(
    vehicle_stock_id: int,
    purpose: str,
    req: SaveResultRequest,
    company_id: str = Depends(require_company_access),
    services: EngineServices = Depends(get_services),
):
    vehicle = await services.results.save_result(
        company_id, vehicle_stock_id, purpose, req.result_for(purpose),
        report_pdf_url=req.report_pdf_url, config_id=req.config_id,
    )
    return {
        "success": True,
        "message": f"{purpose.capitalize()} data saved",
        "data": {
            "vehicle": vehicle.summary(),
            "lastConfigId": vehicle.last_config_id_for(purpose),
        },
    }


@router.post("/workshop-field/{company_id}/{vehicle_stock_id}/{purpose}", status_code=201)
async def add_workshop_field(
    vehicle_stock_id: int,
    purpose: str,
    req: WorkshopFieldRequest,
    company_id: str = Depends(require_company_access),
    services: EngineServices = Depends(get_services),
):
    inserted = await services.results.add_workshop_field(
        company_id, vehicle_stock_id, purpose, req.field, category_id=req.category_id,
    )
    return {
        "success": True,
        "data": {
            "section_id": inserted.section_id,
            "field": inserted.field,
            "created_section": inserted.created_section,
        },
    }


@router.post("/evaluate/{company_id}/{purpose}")
async def evaluate(
    purpose: str,
    req: EvaluateRequest,
    company_id: str = Depends(require_company_access),
    services: EngineServices = Depends(get_services),
):
    resolved = await services.resolver.resolve(
        company_id, purpose, config_id=req.config_id, vehicle_stock_id=req.vehicle_stock_id,
    )
    return {
        "success": True,
        "data": {
            "config_id": resolved.config.id,
            "calculations": evaluate_configuration(resolved.config, req.values),
        },
    }
