"""
config_index.py — Id -> location lookup over one configuration document.

Built once per loaded document. Every cross-tree lookup (find the section a
field lives in, check a formula's field references, delete by id) goes
through the index instead of walking the tree again.

Locations hold references into the document, so an index is only valid until
the document's structure changes; callers rebuild after structural edits.
"""
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple
import uuid

from app.models.config_schema import (
    CalculationConfig,
    CategoryConfig,
    ConfigurationDocument,
    FieldConfig,
    SectionConfig,
)
from app.services.errors import NotFoundError, ValidationError

ID_PREFIXES = {
    "category": "category",
    "section": "section",
    "field": "field",
    "calculation": "calc",
}


@dataclass
class SectionLocation:
    section: SectionConfig
    container: List[SectionConfig]
    category_id: Optional[str] = None   # None for trade-in


@dataclass
class FieldLocation:
    field: FieldConfig
    section_id: str
    category_id: Optional[str] = None


@dataclass
class CalculationLocation:
    calculation: CalculationConfig
    container: List[CalculationConfig]
    category_id: Optional[str] = None


class ConfigIndex:
    def __init__(self, doc: ConfigurationDocument):
        self.doc = doc
        self.categories: Dict[str, CategoryConfig] = {}
        self.sections: Dict[str, SectionLocation] = {}
        self.fields: Dict[str, FieldLocation] = {}
        self.calculations: Dict[str, CalculationLocation] = {}
        self.reserved: Set[str] = set()        # ids handed out by new_id, not yet in the tree

    @classmethod
    def build(cls, doc: ConfigurationDocument) -> "ConfigIndex":
        index = cls(doc)
        if doc.is_inspection:
            for category in doc.categories:
                index._add("category", category.category_id, index.categories, category)
                index._add_sections(category.sections, category.category_id)
                index._add_calculations(category.calculations, category.category_id)
        else:
            index._add_sections(doc.sections, None)
            index._add_calculations(doc.calculations, None)
        return index

    # -- building ----------------------------------------------------------

    def _add(self, kind: str, key: str, table: dict, value) -> None:
        if key in table:
            raise ValidationError("duplicate_id", f"Duplicate {kind} id '{key}' in configuration {self.doc.id}")
        table[key] = value

    def _add_sections(self, sections: List[SectionConfig], category_id: Optional[str]) -> None:
        for section in sections:
            self._add("section", section.section_id, self.sections,
                      SectionLocation(section, sections, category_id))
            for f in section.fields:
                self._add("field", f.field_id, self.fields,
                          FieldLocation(f, section.section_id, category_id))

    def _add_calculations(self, calculations: List[CalculationConfig], category_id: Optional[str]) -> None:
        for calc in calculations:
            self._add("calculation", calc.calculation_id, self.calculations,
                      CalculationLocation(calc, calculations, category_id))

    # -- lookups -----------------------------------------------------------

    def category(self, category_id: str) -> CategoryConfig:
        try:
            return self.categories[category_id]
        except KeyError:
            raise NotFoundError("category", category_id) from None

    def section(self, section_id: str) -> SectionLocation:
        try:
            return self.sections[section_id]
        except KeyError:
            raise NotFoundError("section", section_id) from None

    def field(self, field_id: str) -> FieldLocation:
        try:
            return self.fields[field_id]
        except KeyError:
            raise NotFoundError("field", field_id) from None

    def calculation(self, calculation_id: str) -> CalculationLocation:
        try:
            return self.calculations[calculation_id]
        except KeyError:
            raise NotFoundError("calculation", calculation_id) from None

    def has_id(self, some_id: str) -> bool:
        return (
            some_id in self.categories
            or some_id in self.sections
            or some_id in self.fields
            or some_id in self.calculations
            or some_id in self.reserved
        )

    def iter_fields(self) -> Iterator[Tuple[Optional[str], str, FieldConfig]]:
        """(category_id, section_id, field) for every field."""
        for loc in self.fields.values():
            yield loc.category_id, loc.section_id, loc.field

    def dropdown_bindings(self) -> Dict[str, List[str]]:
        """``{dropdown_id: [field_id, ...]}`` for every dropdown-bound field."""
        bindings: Dict[str, List[str]] = {}
        for _, _, f in self.iter_fields():
            if f.dropdown_config and f.dropdown_config.dropdown_id:
                bindings.setdefault(f.dropdown_config.dropdown_id, []).append(f.field_id)
        return bindings

    def new_id(self, kind: str) -> str:
        """Fresh ``{prefix}_{uuid4 hex}`` id not already used in this document."""
        prefix = ID_PREFIXES[kind]
        while True:
            candidate = f"{prefix}_{uuid.uuid4().hex}"
            if not self.has_id(candidate):
                self.reserved.add(candidate)
                return candidate
