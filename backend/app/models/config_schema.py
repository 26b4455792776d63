"""
Inspection / trade-in configuration documents.

A configuration is one JSON document per company x purpose x version:

    inspection:  categories[] -> sections[] -> fields[]   (+ calculations[] per category)
    tradein:     sections[] -> fields[]                   (+ calculations[] on the document)

These models are both the in-memory document the engine mutates and the wire
shape the form client binds to, so field names must not drift.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Purpose = Literal["inspection", "tradein"]
PURPOSES = ("inspection", "tradein")

FieldType = Literal[
    "text", "number", "currency", "date", "boolean",
    "dropdown", "image", "video", "multiplier", "calculation_field",
]

# Formula token vocabulary
OPERATORS = ("+", "-", "*", "/")
PARENTHESES = ("(", ")")

# Inspection configs are always created with these, in this order.
SEEDED_CATEGORIES: List[Dict[str, str]] = [
    {
        "category_id": "at_arrival",
        "category_name": "At Arrival",
        "description": "Initial vehicle inspection upon arrival",
    },
    {
        "category_id": "after_reconditioning",
        "category_name": "After Reconditioning",
        "description": "Inspection after vehicle reconditioning",
    },
    {
        "category_id": "after_grooming",
        "category_name": "After Grooming",
        "description": "Final inspection after grooming",
    },
]
SEEDED_CATEGORY_IDS = tuple(c["category_id"] for c in SEEDED_CATEGORIES)


class ValidationRules(BaseModel):
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    min_length: Optional[int] = Field(None, ge=0)
    max_length: Optional[int] = Field(None, ge=0)
    pattern: Optional[str] = None

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min_value is not None and self.max_value is not None and self.min_value > self.max_value:
            raise ValueError("min_value must not exceed max_value")
        if self.min_length is not None and self.max_length is not None and self.min_length > self.max_length:
            raise ValueError("min_length must not exceed max_length")
        if self.pattern:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"pattern is not a valid regular expression: {e}")
        return self


class DropdownConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    dropdown_id: Optional[str] = None
    dropdown_name: Optional[str] = None
    allow_multiple: bool = False
    custom_options: List[str] = Field(default_factory=list)


class FieldConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    field_id: str
    field_name: str
    field_type: FieldType
    is_required: bool = False
    validation_rules: Optional[ValidationRules] = None
    dropdown_config: Optional[DropdownConfig] = None
    has_image: bool = False
    has_notes: bool = False
    display_order: int = 0
    placeholder: Optional[str] = None
    help_text: Optional[str] = None

    @field_validator("field_type", mode="before")
    @classmethod
    def _legacy_multiplier_spelling(cls, v):
        # Older documents were written with the misspelled type name.
        return "multiplier" if v == "mutiplier" else v


class SectionConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    section_id: str
    section_name: str
    description: Optional[str] = None
    display_order: int = 0
    is_collapsible: bool = True
    is_expanded_by_default: bool = False
    is_workshop_section: bool = False
    fields: List[FieldConfig] = Field(default_factory=list)


class FormulaToken(BaseModel):
    """One formula element: a field reference or an operator, never both."""
    field_id: Optional[str] = None
    operation: Optional[str] = None
    order: int = 0


class CalculationConfig(BaseModel):
    calculation_id: str
    display_name: str
    internal_name: str
    is_active: bool = True
    formula: List[FormulaToken] = Field(default_factory=list)


class CategoryConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    category_id: str
    category_name: str
    description: Optional[str] = None
    display_order: int = 0
    is_active: bool = True
    sections: List[SectionConfig] = Field(default_factory=list)
    calculations: List[CalculationConfig] = Field(default_factory=list)


class ConfigSettings(BaseModel):
    require_photos: bool = True
    max_photos_per_section: int = Field(10, ge=0)
    allow_video_upload: bool = True
    max_video_size_mb: int = Field(100, ge=0)
    auto_save_interval: int = Field(30, ge=0)          # seconds
    require_digital_signature: bool = False
    require_customer_signature: bool = False


class ConditionMultipliers(BaseModel):
    excellent: float = 1.0
    good: float = 0.9
    fair: float = 0.8
    poor: float = 0.6


class MileageAdjustment(BaseModel):
    threshold: int = 15000              # miles per year
    penalty_per_mile: float = 0.10


class ValuationSettings(BaseModel):
    """Trade-in only."""
    use_market_data: bool = True
    market_data_sources: List[str] = Field(default_factory=list)
    depreciation_model: Literal["linear", "exponential", "custom"] = "linear"
    condition_multipliers: ConditionMultipliers = Field(default_factory=ConditionMultipliers)
    mileage_adjustment: MileageAdjustment = Field(default_factory=MileageAdjustment)


class ConfigurationDocument(BaseModel):
    id: str
    company_id: str
    purpose: Purpose
    config_name: str
    description: Optional[str] = None
    version: str = "1.0"
    is_active: bool = True
    is_default: bool = False
    created_by: Optional[str] = None
    settings: ConfigSettings = Field(default_factory=ConfigSettings)
    valuation_settings: Optional[ValuationSettings] = None
    # inspection shape
    categories: List[CategoryConfig] = Field(default_factory=list)
    # trade-in shape
    sections: List[SectionConfig] = Field(default_factory=list)
    calculations: List[CalculationConfig] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_inspection(self) -> bool:
        return self.purpose == "inspection"

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "config_name": self.config_name,
            "description": self.description,
            "version": self.version,
            "is_active": self.is_active,
            "is_default": self.is_default,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
