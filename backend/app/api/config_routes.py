"""Configuration admin routes — inspection / trade-in templates and their structure."""
import logging
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field
from app.api.deps import EngineServices, get_company_id, get_services, require_super_admin
from app.models.orm_models import User

router = APIRouter(prefix="/api/config/{purpose}", tags=["Configuration"])
logger = logging.getLogger("autoerp-api")


# ─── Pydantic schemas ────────────────────────────────────────────────────────

class ConfigCreateRequest(BaseModel):
    config_name: str
    description: Optional[str] = None
    version: Optional[str] = None
    is_active: bool = True
    is_default: bool = False
    settings: Optional[Dict[str, Any]] = None
    valuation_settings: Optional[Dict[str, Any]] = None


class ConfigUpdateRequest(BaseModel):
    config_name: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None
    settings: Optional[Dict[str, Any]] = None
    valuation_settings: Optional[Dict[str, Any]] = None


class CategoryRequest(BaseModel):
    category_name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class SectionRequest(BaseModel):
    category_id: Optional[str] = None
    section_name: Optional[str] = None
    description: Optional[str] = None
    is_collapsible: Optional[bool] = None
    is_expanded_by_default: Optional[bool] = None
    is_workshop_section: Optional[bool] = None
    fields: List[Dict[str, Any]] = Field(default_factory=list)


class ReorderRequest(BaseModel):
    ids: List[str]
    category_id: Optional[str] = None


class CalculationRequest(BaseModel):
    category_id: Optional[str] = None
    display_name: Optional[str] = None
    internal_name: Optional[str] = None
    is_active: Optional[bool] = None
    formula: List[Dict[str, Any]] = Field(default_factory=list)


class FormulaRequest(BaseModel):
    formula: List[Dict[str, Any]]


class ToggleRequest(BaseModel):
    is_active: Optional[bool] = None


def _ok(data: Any, message: Optional[str] = None) -> Dict[str, Any]:
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def _delete_body(result) -> Dict[str, Any]:
    return _ok({
        "config": result.config.model_dump(mode="json"),
        "removed_ids": result.removed_ids,
        "dangling_calculation_ids": result.dangling_calculation_ids,
    })


# ─── Configurations ──────────────────────────────────────────────────────────

@router.get("")
async def list_configurations(
    purpose: str,
    search: str = "",
    status: str = "all",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    return _ok(await services.mutations.list_configurations(company_id, purpose, search, status, page, limit))


@router.post("", status_code=201)
async def create_configuration(
    purpose: str,
    req: ConfigCreateRequest,
    replace_default: bool = False,
    user: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    doc = await services.mutations.create_configuration(
        company_id, purpose, req.model_dump(exclude_none=True),
        created_by=user.id, replace_default=replace_default,
    )
    return _ok(doc.model_dump(mode="json"), "Configuration created")


@router.get("/{config_id}")
async def get_configuration(
    purpose: str,
    config_id: str,
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    doc = await services.mutations.get_configuration(company_id, purpose, config_id)
    return _ok(doc.model_dump(mode="json"))


@router.put("/{config_id}")
async def update_configuration(
    purpose: str,
    config_id: str,
    req: ConfigUpdateRequest,
    replace_default: bool = False,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    doc = await services.mutations.update_configuration(
        company_id, purpose, config_id, req.model_dump(exclude_unset=True), replace_default=replace_default,
    )
    return _ok(doc.model_dump(mode="json"), "Configuration updated")


@router.delete("/{config_id}")
async def deactivate_configuration(
    purpose: str,
    config_id: str,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    doc = await services.mutations.deactivate_configuration(company_id, purpose, config_id)
    return _ok(doc.summary(), "Configuration deactivated")


# ─── Categories ──────────────────────────────────────────────────────────────

@router.post("/{config_id}/categories", status_code=201)
async def add_category(
    purpose: str,
    config_id: str,
    req: CategoryRequest,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    category = await services.mutations.add_category(company_id, purpose, config_id, req.model_dump(exclude_none=True))
    return _ok(category.model_dump(mode="json"), "Category added")


@router.put("/{config_id}/categories/reorder")
async def reorder_categories(
    purpose: str,
    config_id: str,
    req: ReorderRequest,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    doc = await services.mutations.reorder_categories(company_id, purpose, config_id, req.ids)
    return _ok(doc.model_dump(mode="json"), "Categories reordered")


@router.put("/{config_id}/categories/{category_id}")
async def update_category(
    purpose: str,
    config_id: str,
    category_id: str,
    req: CategoryRequest,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    category = await services.mutations.update_category(
        company_id, purpose, config_id, category_id, req.model_dump(exclude_unset=True),
    )
    return _ok(category.model_dump(mode="json"), "Category updated")


@router.delete("/{config_id}/categories/{category_id}")
async def delete_category(
    purpose: str,
    config_id: str,
    category_id: str,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    return _delete_body(await services.mutations.delete_category(company_id, purpose, config_id, category_id))


# ─── Sections ────────────────────────────────────────────────────────────────

@router.post("/{config_id}/sections", status_code=201)
async def add_section(
    purpose: str,
    config_id: str,
    req: SectionRequest,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    data = req.model_dump(exclude_none=True, exclude={"category_id"})
    section = await services.mutations.add_section(company_id, purpose, config_id, data, category_id=req.category_id)
    return _ok(section.model_dump(mode="json"), "Section added")


@router.put("/{config_id}/sections/reorder")
async def reorder_sections(
    purpose: str,
    config_id: str,
    req: ReorderRequest,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    doc = await services.mutations.reorder_sections(company_id, purpose, config_id, req.ids, category_id=req.category_id)
    return _ok(doc.model_dump(mode="json"), "Sections reordered")


@router.put("/{config_id}/sections/{section_id}")
async def update_section(
    purpose: str,
    config_id: str,
    section_id: str,
    req: SectionRequest,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    changes = req.model_dump(exclude_unset=True, exclude={"category_id", "fields"})
    section = await services.mutations.update_section(company_id, purpose, config_id, section_id, changes)
    return _ok(section.model_dump(mode="json"), "Section updated")


@router.delete("/{config_id}/sections/{section_id}")
async def delete_section(
    purpose: str,
    config_id: str,
    section_id: str,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    return _delete_body(await services.mutations.delete_section(company_id, purpose, config_id, section_id))


# ─── Fields ──────────────────────────────────────────────────────────────────

@router.post("/{config_id}/sections/{section_id}/fields", status_code=201)
async def add_field(
    purpose: str,
    config_id: str,
    section_id: str,
    payload: Dict[str, Any] = Body(...),
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    new_field = await services.mutations.add_field(company_id, purpose, config_id, section_id, payload)
    return _ok(new_field.model_dump(mode="json"), "Field added")


@router.put("/{config_id}/sections/{section_id}/fields/reorder")
async def reorder_fields(
    purpose: str,
    config_id: str,
    section_id: str,
    req: ReorderRequest,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    doc = await services.mutations.reorder_fields(company_id, purpose, config_id, section_id, req.ids)
    return _ok(doc.model_dump(mode="json"), "Fields reordered")


@router.put("/{config_id}/fields/{field_id}")
async def update_field(
    purpose: str,
    config_id: str,
    field_id: str,
    payload: Dict[str, Any] = Body(...),
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    updated = await services.mutations.update_field(company_id, purpose, config_id, field_id, payload)
    return _ok(updated.model_dump(mode="json"), "Field updated")


@router.delete("/{config_id}/fields/{field_id}")
async def delete_field(
    purpose: str,
    config_id: str,
    field_id: str,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    return _delete_body(await services.mutations.delete_field(company_id, purpose, config_id, field_id))


# ─── Calculations ────────────────────────────────────────────────────────────

@router.post("/{config_id}/calculations", status_code=201)
async def add_calculation(
    purpose: str,
    config_id: str,
    req: CalculationRequest,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    data = req.model_dump(exclude_none=True, exclude={"category_id"})
    calc = await services.mutations.add_calculation(company_id, purpose, config_id, data, category_id=req.category_id)
    return _ok(calc.model_dump(mode="json"), "Calculation added")


@router.put("/{config_id}/calculations/{calculation_id}")
async def update_calculation(
    purpose: str,
    config_id: str,
    calculation_id: str,
    req: CalculationRequest,
    category_id: Optional[str] = None,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    changes = req.model_dump(exclude_unset=True, exclude={"category_id", "formula"})
    calc = await services.mutations.update_calculation(
        company_id, purpose, config_id, calculation_id, changes, category_id=category_id,
    )
    return _ok(calc.model_dump(mode="json"), "Calculation updated")


@router.put("/{config_id}/calculations/{calculation_id}/formula")
async def update_calculation_formula(
    purpose: str,
    config_id: str,
    calculation_id: str,
    req: FormulaRequest,
    category_id: Optional[str] = None,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    calc = await services.mutations.update_calculation_formula(
        company_id, purpose, config_id, calculation_id, req.formula, category_id=category_id,
    )
    return _ok(calc.model_dump(mode="json"), "Formula updated")


@router.patch("/{config_id}/calculations/{calculation_id}/toggle")
async def toggle_calculation(
    purpose: str,
    config_id: str,
    calculation_id: str,
    req: ToggleRequest,
    category_id: Optional[str] = None,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    calc = await services.mutations.toggle_calculation(
        company_id, purpose, config_id, calculation_id, is_active=req.is_active, category_id=category_id,
    )
    return _ok(calc.model_dump(mode="json"), "Calculation status updated")


@router.delete("/{config_id}/calculations/{calculation_id}")
async def delete_calculation(
    purpose: str,
    config_id: str,
    calculation_id: str,
    category_id: Optional[str] = None,
    _: User = Depends(require_super_admin),
    company_id: str = Depends(get_company_id),
    services: EngineServices = Depends(get_services),
):
    return _delete_body(
        await services.mutations.delete_calculation(company_id, purpose, config_id, calculation_id, category_id=category_id)
    )
