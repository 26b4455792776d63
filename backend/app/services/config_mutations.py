"""
config_mutations.py — Structural edits to inspection / trade-in configurations.

Every operation:
  1. loads the configuration by id scoped to the company (a bare id is never trusted)
  2. applies one change to a deep copy
  3. re-checks the tree (unique ids) and persists the whole document

Nothing is written unless every check passes, so a failed mutation leaves the
stored configuration exactly as it was. Concurrent edits are last write wins.
"""
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from app.models.config_schema import (
    SEEDED_CATEGORIES,
    SEEDED_CATEGORY_IDS,
    CalculationConfig,
    CategoryConfig,
    ConfigurationDocument,
    FieldConfig,
    SectionConfig,
    ValuationSettings,
)
from app.services.collaborators import ConfigurationStore, DropdownStore
from app.services.config_index import ConfigIndex
from app.services.config_resolver import check_purpose
from app.services.errors import ConflictError, NotFoundError, ValidationError
from app.services.formula_engine import normalize_formula

logger = logging.getLogger("autoerp-config")

CONFIG_FIELDS = ("config_name", "description", "version", "is_active", "is_default", "settings", "valuation_settings")
CATEGORY_FIELDS = ("category_name", "description", "is_active")
SECTION_FIELDS = ("section_name", "description", "is_collapsible", "is_expanded_by_default", "is_workshop_section")
CALCULATION_FIELDS = ("display_name", "internal_name", "is_active")


@dataclass
class DeleteResult:
    config: ConfigurationDocument
    removed_ids: List[str] = field(default_factory=list)
    dangling_calculation_ids: List[str] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _validated(model, data: Mapping[str, Any], what: str):
    try:
        return model.model_validate(dict(data))
    except PydanticValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError("invalid_payload", f"Invalid {what}: {loc} {first.get('msg')}".strip()) from e


def _renumber(items: Sequence[Any]) -> None:
    for i, item in enumerate(items):
        item.display_order = i


def _reorder(items: List[Any], ids: Sequence[str], key: str, what: str) -> None:
    """Rewrite ``items`` in the order of ``ids``; the id set must match exactly."""
    current = [getattr(item, key) for item in items]
    if len(ids) != len(set(ids)) or set(ids) != set(current):
        missing = sorted(set(current) - set(ids))
        unknown = sorted(set(ids) - set(current))
        raise ValidationError(
            "reorder_mismatch",
            f"Reorder of {what} must list every existing id exactly once "
            f"(missing: {missing or 'none'}, unknown: {unknown or 'none'})",
        )
    by_id = {getattr(item, key): item for item in items}
    items[:] = [by_id[i] for i in ids]
    _renumber(items)


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", text.lower()).strip("_")


def _referencing_calculations(doc: ConfigurationDocument, field_ids: Sequence[str]) -> List[str]:
    targets = set(field_ids)
    calculations = list(doc.calculations)
    for category in doc.categories:
        calculations.extend(category.calculations)
    return [
        c.calculation_id for c in calculations
        if any(t.field_id in targets for t in c.formula)
    ]


class ConfigMutationService:
    def __init__(self, configs: ConfigurationStore, dropdowns: DropdownStore):
        self.configs = configs
        self.dropdowns = dropdowns

    # -- load / commit -----------------------------------------------------

    async def get_configuration(self, company_id: str, purpose: str, config_id: str) -> ConfigurationDocument:
        check_purpose(purpose)
        doc = await self.configs.get(company_id, purpose, config_id)
        if doc is None:
            raise NotFoundError("configuration", config_id)
        return doc

    async def _load(self, company_id: str, purpose: str, config_id: str):
        doc = (await self.get_configuration(company_id, purpose, config_id)).model_copy(deep=True)
        return doc, ConfigIndex.build(doc)

    async def _commit(self, doc: ConfigurationDocument, action: str, *others: ConfigurationDocument):
        ConfigIndex.build(doc)
        stamp = _now()
        doc.updated_at = stamp
        for other in others:
            other.updated_at = stamp
        await self.configs.save(doc, *others)
        logger.info(
            "Config %s: %s", doc.id, action,
            extra={"config_id": doc.id, "company_id": doc.company_id},
        )
        return doc

    # -- configuration level -----------------------------------------------

    async def list_configurations(
        self,
        company_id: str,
        purpose: str,
        search: str = "",
        status: str = "all",
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        check_purpose(purpose)
        if status not in ("all", "active", "inactive"):
            raise ValidationError("invalid_status", f"Unknown status filter '{status}'")
        page, limit = max(page, 1), max(min(limit, 100), 1)
        items, total = await self.configs.list(
            company_id, purpose, search=search, status=status, offset=(page - 1) * limit, limit=limit,
        )
        return {
            "items": [c.summary() for c in items],
            "total": total,
            "page": page,
            "pages": (total + limit - 1) // limit,
        }

    async def _side_effects(
        self, doc: ConfigurationDocument, replace_default: bool
    ) -> List[ConfigurationDocument]:
        """Other configs that must change alongside ``doc`` (default / active exclusivity)."""
        touched: Dict[str, ConfigurationDocument] = {}

        if doc.is_default:
            current = await self.configs.find_default(doc.company_id, doc.purpose)
            if current is not None and current.id != doc.id:
                if not replace_default:
                    raise ConflictError(
                        f"Configuration '{current.config_name}' is already the default {doc.purpose} configuration",
                        conflicting_id=current.id,
                    )
                current = current.model_copy(deep=True)
                current.is_default = False
                touched[current.id] = current

        if doc.is_active:
            for other in await self.configs.list_active(doc.company_id, doc.purpose):
                if other.id == doc.id:
                    continue
                other = touched.get(other.id) or other.model_copy(deep=True)
                other.is_active = False
                # an inactive configuration cannot stay the default
                other.is_default = False
                touched[other.id] = other

        return list(touched.values())

    async def create_configuration(
        self,
        company_id: str,
        purpose: str,
        data: Mapping[str, Any],
        created_by: Optional[str] = None,
        replace_default: bool = False,
    ) -> ConfigurationDocument:
        check_purpose(purpose)
        name = (data.get("config_name") or "").strip()
        if not name:
            raise ValidationError("config_name_required", "Configuration name is required")
        if await self.configs.find_by_name(company_id, purpose, name) is not None:
            raise ValidationError("duplicate_config_name", f"A {purpose} configuration named '{name}' already exists")

        stamp = _now()
        payload = {k: data[k] for k in CONFIG_FIELDS if k in data and data[k] is not None}
        payload.update(
            id=str(uuid.uuid4()),
            company_id=company_id,
            purpose=purpose,
            config_name=name,
            created_by=created_by,
            created_at=stamp,
            updated_at=stamp,
        )
        if purpose == "inspection":
            payload["categories"] = [
                {**seed, "display_order": i, "sections": [], "calculations": []}
                for i, seed in enumerate(SEEDED_CATEGORIES)
            ]
            payload.pop("valuation_settings", None)
        else:
            payload.setdefault("valuation_settings", ValuationSettings().model_dump())
        doc = _validated(ConfigurationDocument, payload, "configuration")
        if not doc.is_active:
            doc.is_default = False

        others = await self._side_effects(doc, replace_default)
        await self.configs.save(doc, *others)
        logger.info(
            "Created %s config %s (%s) for company %s", purpose, doc.id, name, company_id,
            extra={"config_id": doc.id, "company_id": company_id},
        )
        return doc

    async def update_configuration(
        self,
        company_id: str,
        purpose: str,
        config_id: str,
        changes: Mapping[str, Any],
        replace_default: bool = False,
    ) -> ConfigurationDocument:
        doc, _ = await self._load(company_id, purpose, config_id)
        updates = {k: changes[k] for k in CONFIG_FIELDS if k in changes}
        if "config_name" in updates:
            name = (updates["config_name"] or "").strip()
            if not name:
                raise ValidationError("config_name_required", "Configuration name is required")
            existing = await self.configs.find_by_name(company_id, purpose, name)
            if existing is not None and existing.id != doc.id:
                raise ValidationError("duplicate_config_name", f"A {purpose} configuration named '{name}' already exists")
            updates["config_name"] = name
        if purpose != "tradein":
            updates.pop("valuation_settings", None)

        doc = _validated(ConfigurationDocument, {**doc.model_dump(), **updates}, "configuration")
        if not doc.is_active:
            doc.is_default = False
        others = await self._side_effects(doc, replace_default) if ("is_default" in updates or "is_active" in updates) else []
        return await self._commit(doc, f"updated {', '.join(sorted(updates)) or 'nothing'}", *others)

    async def deactivate_configuration(self, company_id: str, purpose: str, config_id: str) -> ConfigurationDocument:
        """Soft delete: configurations are never removed while vehicles may reference them."""
        doc, _ = await self._load(company_id, purpose, config_id)
        doc.is_active = False
        doc.is_default = False
        return await self._commit(doc, "deactivated")

    # -- categories (inspection only) ---------------------------------------

    @staticmethod
    def _require_inspection(doc: ConfigurationDocument, what: str) -> None:
        if not doc.is_inspection:
            raise ValidationError("unsupported_for_purpose", f"Trade-in configurations have no {what}")

    async def add_category(self, company_id: str, purpose: str, config_id: str, data: Mapping[str, Any]) -> CategoryConfig:
        doc, index = await self._load(company_id, purpose, config_id)
        self._require_inspection(doc, "categories")
        payload = {k: data[k] for k in CATEGORY_FIELDS if k in data}
        payload.update(category_id=index.new_id("category"), display_order=len(doc.categories))
        category = _validated(CategoryConfig, payload, "category")
        doc.categories.append(category)
        await self._commit(doc, f"added category {category.category_id}")
        return category

    async def update_category(
        self, company_id: str, purpose: str, config_id: str, category_id: str, changes: Mapping[str, Any]
    ) -> CategoryConfig:
        doc, index = await self._load(company_id, purpose, config_id)
        self._require_inspection(doc, "categories")
        category = index.category(category_id)
        if changes.get("category_id", category_id) != category_id:
            raise ValidationError("immutable_id", "Category ids cannot be changed")
        if category_id in SEEDED_CATEGORY_IDS and "category_name" in changes \
                and changes["category_name"] != category.category_name:
            raise ValidationError("seeded_category", f"Seeded category '{category_id}' cannot be renamed")
        updated = _validated(
            CategoryConfig,
            {**category.model_dump(), **{k: changes[k] for k in CATEGORY_FIELDS if k in changes}},
            "category",
        )
        doc.categories[doc.categories.index(category)] = updated
        await self._commit(doc, f"updated category {category_id}")
        return updated

    async def delete_category(self, company_id: str, purpose: str, config_id: str, category_id: str) -> DeleteResult:
        doc, index = await self._load(company_id, purpose, config_id)
        self._require_inspection(doc, "categories")
        if category_id in SEEDED_CATEGORY_IDS:
            raise ValidationError("seeded_category", f"Seeded category '{category_id}' cannot be deleted")
        category = index.category(category_id)
        doc.categories.remove(category)
        _renumber(doc.categories)
        field_ids = [f.field_id for s in category.sections for f in s.fields]
        dangling = _referencing_calculations(doc, field_ids)
        self._warn_dangling(doc, dangling)
        await self._commit(doc, f"deleted category {category_id}")
        return DeleteResult(config=doc, removed_ids=[category_id], dangling_calculation_ids=dangling)

    async def reorder_categories(
        self, company_id: str, purpose: str, config_id: str, category_ids: Sequence[str]
    ) -> ConfigurationDocument:
        doc, _ = await self._load(company_id, purpose, config_id)
        self._require_inspection(doc, "categories")
        _reorder(doc.categories, category_ids, "category_id", "categories")
        return await self._commit(doc, "reordered categories")

    # -- sections ----------------------------------------------------------

    def _section_container(self, doc: ConfigurationDocument, index: ConfigIndex, category_id: Optional[str]):
        if doc.is_inspection:
            if not category_id:
                raise ValidationError("category_required", "Inspection sections belong to a category")
            return index.category(category_id).sections
        return doc.sections

    async def add_section(
        self,
        company_id: str,
        purpose: str,
        config_id: str,
        data: Mapping[str, Any],
        category_id: Optional[str] = None,
    ) -> SectionConfig:
        doc, index = await self._load(company_id, purpose, config_id)
        container = self._section_container(doc, index, category_id)
        payload = {k: data[k] for k in SECTION_FIELDS if k in data}
        payload.update(section_id=index.new_id("section"), display_order=len(container), fields=[])
        section = _validated(SectionConfig, payload, "section")
        for raw in data.get("fields") or []:
            new_field = await self._build_field(company_id, index, raw, display_order=len(section.fields))
            section.fields.append(new_field)
        container.append(section)
        await self._commit(doc, f"added section {section.section_id}")
        return section

    async def update_section(
        self, company_id: str, purpose: str, config_id: str, section_id: str, changes: Mapping[str, Any]
    ) -> SectionConfig:
        doc, index = await self._load(company_id, purpose, config_id)
        loc = index.section(section_id)
        if changes.get("section_id", section_id) != section_id:
            raise ValidationError("immutable_id", "Section ids cannot be changed")
        updated = _validated(
            SectionConfig,
            {**loc.section.model_dump(), **{k: changes[k] for k in SECTION_FIELDS if k in changes}},
            "section",
        )
        loc.container[loc.container.index(loc.section)] = updated
        await self._commit(doc, f"updated section {section_id}")
        return updated

    async def delete_section(self, company_id: str, purpose: str, config_id: str, section_id: str) -> DeleteResult:
        doc, index = await self._load(company_id, purpose, config_id)
        loc = index.section(section_id)
        loc.container.remove(loc.section)
        _renumber(loc.container)
        field_ids = [f.field_id for f in loc.section.fields]
        dangling = _referencing_calculations(doc, field_ids)
        self._warn_dangling(doc, dangling)
        await self._commit(doc, f"deleted section {section_id} with {len(field_ids)} field(s)")
        return DeleteResult(config=doc, removed_ids=[section_id, *field_ids], dangling_calculation_ids=dangling)

    async def reorder_sections(
        self,
        company_id: str,
        purpose: str,
        config_id: str,
        section_ids: Sequence[str],
        category_id: Optional[str] = None,
    ) -> ConfigurationDocument:
        doc, index = await self._load(company_id, purpose, config_id)
        _reorder(self._section_container(doc, index, category_id), section_ids, "section_id", "sections")
        return await self._commit(doc, "reordered sections")

    # -- fields ------------------------------------------------------------

    async def _bind_dropdown(self, company_id: str, f: FieldConfig) -> None:
        """Point a dropdown field at an active dropdown master of the same company."""
        binding = f.dropdown_config
        if binding is None or not binding.dropdown_name:
            raise ValidationError(
                "dropdown_binding_required",
                f"Dropdown field '{f.field_name}' needs dropdown_config.dropdown_name",
            )
        dropdown = await self.dropdowns.find_dropdown(company_id, name=binding.dropdown_name, active_only=True)
        if dropdown is None:
            raise NotFoundError("dropdown", binding.dropdown_name)
        binding.dropdown_id = dropdown.id

    async def _build_field(
        self, company_id: str, index: ConfigIndex, raw: Mapping[str, Any], display_order: int
    ) -> FieldConfig:
        payload = {k: v for k, v in dict(raw).items() if k not in ("field_id", "display_order")}
        payload.update(field_id=index.new_id("field"), display_order=display_order)
        new_field = _validated(FieldConfig, payload, "field")
        if new_field.field_type == "dropdown":
            await self._bind_dropdown(company_id, new_field)
        else:
            new_field.dropdown_config = None
        return new_field

    async def add_field(
        self, company_id: str, purpose: str, config_id: str, section_id: str, data: Mapping[str, Any]
    ) -> FieldConfig:
        doc, index = await self._load(company_id, purpose, config_id)
        section = index.section(section_id).section
        new_field = await self._build_field(company_id, index, data, display_order=len(section.fields))
        section.fields.append(new_field)
        await self._commit(doc, f"added {new_field.field_type} field {new_field.field_id} to {section_id}")
        return new_field

    async def update_field(
        self, company_id: str, purpose: str, config_id: str, field_id: str, changes: Mapping[str, Any]
    ) -> FieldConfig:
        doc, index = await self._load(company_id, purpose, config_id)
        loc = index.field(field_id)
        if changes.get("field_id", field_id) != field_id:
            raise ValidationError("immutable_id", "Field ids cannot be changed")
        current = loc.field
        payload = {**current.model_dump(), **{k: v for k, v in changes.items() if k not in ("field_id", "display_order")}}
        updated = _validated(FieldConfig, payload, "field")
        if updated.field_type == "dropdown":
            if current.field_type != "dropdown" or "dropdown_config" in changes:
                await self._bind_dropdown(company_id, updated)
        else:
            updated.dropdown_config = None

        fields = index.section(loc.section_id).section.fields
        fields[fields.index(current)] = updated
        await self._commit(doc, f"updated field {field_id}")
        return updated

    async def delete_field(self, company_id: str, purpose: str, config_id: str, field_id: str) -> DeleteResult:
        """
        Remove a field wherever it sits in the tree.

        Calculations referencing it are left in place (the reference then
        evaluates as 0); their ids are returned so the caller can act on them.
        """
        doc, index = await self._load(company_id, purpose, config_id)
        loc = index.field(field_id)
        fields = index.section(loc.section_id).section.fields
        fields.remove(loc.field)
        _renumber(fields)
        dangling = _referencing_calculations(doc, [field_id])
        self._warn_dangling(doc, dangling)
        await self._commit(doc, f"deleted field {field_id}")
        return DeleteResult(config=doc, removed_ids=[field_id], dangling_calculation_ids=dangling)

    async def reorder_fields(
        self, company_id: str, purpose: str, config_id: str, section_id: str, field_ids: Sequence[str]
    ) -> ConfigurationDocument:
        doc, index = await self._load(company_id, purpose, config_id)
        _reorder(index.section(section_id).section.fields, field_ids, "field_id", "fields")
        return await self._commit(doc, f"reordered fields of {section_id}")

    @staticmethod
    def _warn_dangling(doc: ConfigurationDocument, dangling: List[str]) -> None:
        if dangling:
            logger.warning(
                "Config %s: calculation(s) %s now reference removed fields",
                doc.id, ", ".join(dangling),
                extra={"config_id": doc.id, "company_id": doc.company_id},
            )

    # -- calculations ------------------------------------------------------

    def _calculations(self, doc: ConfigurationDocument, index: ConfigIndex, category_id: Optional[str]):
        if doc.is_inspection:
            if not category_id:
                raise ValidationError("category_required", "Inspection calculations belong to a category")
            return index.category(category_id).calculations
        return doc.calculations

    def _calculation(self, doc: ConfigurationDocument, index: ConfigIndex, category_id: Optional[str], calculation_id: str):
        loc = index.calculation(calculation_id)
        if doc.is_inspection and loc.category_id != category_id:
            raise NotFoundError("calculation", calculation_id)
        return loc

    @staticmethod
    def _checked_formula(index: ConfigIndex, formula: Sequence[Any]):
        tokens = normalize_formula(formula)
        unknown = [t.field_id for t in tokens if t.field_id and t.field_id not in index.fields]
        if unknown:
            raise ValidationError(
                "formula_unknown_field",
                f"Formula references fields not in this configuration: {', '.join(unknown)}",
            )
        return tokens

    async def add_calculation(
        self,
        company_id: str,
        purpose: str,
        config_id: str,
        data: Mapping[str, Any],
        category_id: Optional[str] = None,
    ) -> CalculationConfig:
        doc, index = await self._load(company_id, purpose, config_id)
        calculations = self._calculations(doc, index, category_id)
        display_name = (data.get("display_name") or "").strip()
        if not display_name:
            raise ValidationError("display_name_required", "Calculation display_name is required")
        internal_name = (data.get("internal_name") or _slug(display_name)).strip()
        if any(c.internal_name == internal_name for c in calculations):
            raise ValidationError("duplicate_internal_name", f"Calculation '{internal_name}' already exists here")

        formula = data.get("formula") or []
        calc = _validated(CalculationConfig, {
            "calculation_id": index.new_id("calculation"),
            "display_name": display_name,
            "internal_name": internal_name,
            "is_active": data.get("is_active", True),
            "formula": [],
        }, "calculation")
        if formula:
            calc.formula = self._checked_formula(index, formula)
        calculations.append(calc)
        await self._commit(doc, f"added calculation {calc.calculation_id}")
        return calc

    async def update_calculation_formula(
        self,
        company_id: str,
        purpose: str,
        config_id: str,
        calculation_id: str,
        formula: Sequence[Any],
        category_id: Optional[str] = None,
    ) -> CalculationConfig:
        doc, index = await self._load(company_id, purpose, config_id)
        calc = self._calculation(doc, index, category_id, calculation_id).calculation
        calc.formula = self._checked_formula(index, formula)
        await self._commit(doc, f"updated formula of {calculation_id}")
        return calc

    async def update_calculation(
        self,
        company_id: str,
        purpose: str,
        config_id: str,
        calculation_id: str,
        changes: Mapping[str, Any],
        category_id: Optional[str] = None,
    ) -> CalculationConfig:
        doc, index = await self._load(company_id, purpose, config_id)
        loc = self._calculation(doc, index, category_id, calculation_id)
        updates = {k: changes[k] for k in CALCULATION_FIELDS if k in changes}
        if "internal_name" in updates and any(
            c.internal_name == updates["internal_name"] and c.calculation_id != calculation_id for c in loc.container
        ):
            raise ValidationError("duplicate_internal_name", f"Calculation '{updates['internal_name']}' already exists here")
        updated = _validated(CalculationConfig, {**loc.calculation.model_dump(), **updates}, "calculation")
        loc.container[loc.container.index(loc.calculation)] = updated
        await self._commit(doc, f"updated calculation {calculation_id}")
        return updated

    async def toggle_calculation(
        self,
        company_id: str,
        purpose: str,
        config_id: str,
        calculation_id: str,
        is_active: Optional[bool] = None,
        category_id: Optional[str] = None,
    ) -> CalculationConfig:
        doc, index = await self._load(company_id, purpose, config_id)
        calc = self._calculation(doc, index, category_id, calculation_id).calculation
        calc.is_active = (not calc.is_active) if is_active is None else is_active
        await self._commit(doc, f"{'activated' if calc.is_active else 'deactivated'} calculation {calculation_id}")
        return calc

    async def delete_calculation(
        self,
        company_id: str,
        purpose: str,
        config_id: str,
        calculation_id: str,
        category_id: Optional[str] = None,
    ) -> DeleteResult:
        doc, index = await self._load(company_id, purpose, config_id)
        loc = self._calculation(doc, index, category_id, calculation_id)
        loc.container.remove(loc.calculation)
        await self._commit(doc, f"deleted calculation {calculation_id}")
        return DeleteResult(config=doc, removed_ids=[calculation_id])
