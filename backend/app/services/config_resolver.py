"""
config_resolver.py — Find the configuration a form should render.

Precedence:
  1. an explicit configuration id (active flag ignored, so historical
     configurations can be replayed)
  2. the vehicle's last-used configuration id for the purpose
  3. the company's active configuration (default first, then latest updated)

Dropdown bindings are expanded into option lists as part of resolution, and
when a vehicle is involved its workshop sections are merged in.
Read-only: nothing is written.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.models.config_schema import PURPOSES, ConfigurationDocument
from app.models.records import CompanyRecord, VehicleRecord
from app.services.collaborators import CompanyDirectory, ConfigurationStore, DropdownStore, VehicleStore
from app.services.config_index import ConfigIndex
from app.services.errors import NotFoundError, ValidationError
from app.services import workshop_merge

logger = logging.getLogger("autoerp-config")


def check_purpose(purpose: str) -> str:
    if purpose not in PURPOSES:
        raise ValidationError("invalid_purpose", f"Purpose must be one of {', '.join(PURPOSES)}, got '{purpose}'")
    return purpose


@dataclass
class ResolvedConfiguration:
    config: ConfigurationDocument
    company: CompanyRecord
    source: str                                   # explicit | vehicle | active
    dropdowns: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    missing_dropdown_ids: List[str] = field(default_factory=list)
    vehicle: Optional[VehicleRecord] = None
    workshop_sections: Optional[List[Dict[str, Any]]] = None

    def to_payload(self) -> Dict[str, Any]:
        config = self.config.model_dump(mode="json")
        for f in _iter_payload_fields(config):
            binding = f.get("dropdown_config") or {}
            dropdown = self.dropdowns.get(binding.get("dropdown_id"))
            if dropdown is not None:
                binding["options"] = dropdown["options"]
                binding.setdefault("dropdown_name", dropdown["dropdown_name"])

        payload: Dict[str, Any] = {
            "config": config,
            "s3Config": self.company.s3_config.model_dump() if self.company.s3_config else None,
            "dropdowns": list(self.dropdowns.values()),
            "company": {
                "id": self.company.id,
                "name": self.company.name,
                "lastConfigId": self.vehicle.last_config_id_for(self.config.purpose) if self.vehicle else None,
            },
        }
        if self.missing_dropdown_ids:
            payload["missingDropdownIds"] = list(self.missing_dropdown_ids)
        if self.workshop_sections is not None:
            payload["workshopSections"] = self.workshop_sections
        return payload


def _iter_payload_fields(config: Dict[str, Any]):
    sections = list(config.get("sections") or [])
    for category in config.get("categories") or []:
        sections.extend(category.get("sections") or [])
    for section in sections:
        yield from section.get("fields") or []


class ConfigResolver:
    def __init__(
        self,
        configs: ConfigurationStore,
        companies: CompanyDirectory,
        dropdowns: DropdownStore,
        vehicles: VehicleStore,
    ):
        self.configs = configs
        self.companies = companies
        self.dropdowns = dropdowns
        self.vehicles = vehicles

    async def _company(self, company_id: str) -> CompanyRecord:
        company = await self.companies.get_company(company_id)
        if company is None:
            raise NotFoundError("company", company_id)
        return company

    async def resolve(
        self,
        company_id: str,
        purpose: str,
        config_id: Optional[str] = None,
        vehicle_stock_id: Optional[int] = None,
    ) -> ResolvedConfiguration:
        check_purpose(purpose)
        company = await self._company(company_id)

        vehicle = None
        if vehicle_stock_id is not None:
            vehicle = await self.vehicles.find_vehicle(company_id, vehicle_stock_id, purpose)
            if vehicle is None:
                logger.info(
                    "Vehicle %s (%s) not found for company %s, resolving without it",
                    vehicle_stock_id, purpose, company_id,
                )

        config, source = None, "active"
        if config_id:
            config = await self.configs.get(company_id, purpose, config_id)
            if config is None:
                raise NotFoundError("configuration", config_id)
            source = "explicit"
        elif vehicle is not None and vehicle.last_config_id_for(purpose):
            last_id = vehicle.last_config_id_for(purpose)
            config = await self.configs.get(company_id, purpose, last_id)
            if config is None:
                logger.warning(
                    "Vehicle %s references missing %s config %s, using active config",
                    vehicle.vehicle_stock_id, purpose, last_id,
                )
            else:
                source = "vehicle"
        if config is None:
            config = await self.configs.find_active(company_id, purpose)
            if config is None:
                raise NotFoundError("configuration", message=f"No active {purpose} configuration for company {company_id}")

        dropdowns, missing = await self._expand_dropdowns(config)
        resolved = ResolvedConfiguration(
            config=config,
            company=company,
            source=source,
            dropdowns=dropdowns,
            missing_dropdown_ids=missing,
            vehicle=vehicle,
        )
        if vehicle is not None:
            merged = workshop_merge.merge(config, vehicle.result_for(purpose))
            resolved.config = merged.config
            resolved.workshop_sections = merged.workshop_sections

        logger.info(
            "Resolved %s config %s for company %s via %s",
            purpose, config.id, company_id, source,
            extra={"config_id": config.id, "company_id": company_id},
        )
        return resolved

    async def _expand_dropdowns(self, config: ConfigurationDocument):
        bindings = ConfigIndex.build(config).dropdown_bindings()
        if not bindings:
            return {}, []
        records = await self.dropdowns.find_dropdowns(config.company_id, list(bindings))
        expanded = {
            r.id: {
                "id": r.id,
                "dropdown_name": r.dropdown_name,
                "display_name": r.display_name,
                "allow_multiple_selection": r.allow_multiple_selection,
                "options": r.active_options(),
            }
            for r in records
        }
        missing = [d for d in bindings if d not in expanded]
        if missing:
            logger.warning(
                "Config %s binds %d missing dropdown(s): %s",
                config.id, len(missing), ", ".join(missing),
                extra={"config_id": config.id, "company_id": config.company_id},
            )
        return expanded, missing

    async def list_active_configurations(self, company_id: str, purpose: str) -> List[Dict[str, Any]]:
        check_purpose(purpose)
        await self._company(company_id)
        configs = await self.configs.list_active(company_id, purpose)
        return [
            {k: v for k, v in c.summary().items() if k in ("id", "config_name", "description", "version", "created_at", "is_default")}
            for c in configs
        ]
