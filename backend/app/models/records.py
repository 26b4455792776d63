"""
Records the configuration engine reads from its collaborators.

Companies, dropdown masters and vehicles are owned by other parts of the ERP;
the engine only sees them through these shapes.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class S3Config(BaseModel):
    bucket: str
    region: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    url: Optional[str] = None


class CompanyRecord(BaseModel):
    id: str
    name: str
    s3_config: Optional[S3Config] = None


class DropdownValue(BaseModel):
    option_value: str
    display_value: str
    display_order: int = 0
    is_active: bool = True
    is_default: bool = False


class DropdownRecord(BaseModel):
    id: str
    company_id: str
    dropdown_name: str
    display_name: str
    description: Optional[str] = None
    allow_multiple_selection: bool = False
    is_active: bool = True
    values: List[DropdownValue] = Field(default_factory=list)

    def active_options(self) -> List[Dict[str, Any]]:
        """Active values in display order, as the form renders them."""
        ordered = sorted((v for v in self.values if v.is_active), key=lambda v: v.display_order)
        return [v.model_dump() for v in ordered]


class VehicleRecord(BaseModel):
    id: str
    company_id: str
    vehicle_stock_id: int
    vehicle_type: str
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    vin: Optional[str] = None
    plate_no: Optional[str] = None
    vehicle_hero_image: Optional[str] = None
    inspection_result: List[Dict[str, Any]] = Field(default_factory=list)
    trade_in_result: List[Dict[str, Any]] = Field(default_factory=list)
    inspection_report_pdf: List[Any] = Field(default_factory=list)
    tradein_report_pdf: List[Any] = Field(default_factory=list)
    last_inspection_config_id: Optional[str] = None
    last_tradein_config_id: Optional[str] = None

    def result_for(self, purpose: str) -> List[Dict[str, Any]]:
        return self.inspection_result if purpose == "inspection" else self.trade_in_result

    def last_config_id_for(self, purpose: str) -> Optional[str]:
        return self.last_inspection_config_id if purpose == "inspection" else self.last_tradein_config_id

    def summary(self) -> Dict[str, Any]:
        return {
            "vehicle_stock_id": self.vehicle_stock_id,
            "make": self.make,
            "model": self.model,
            "year": self.year,
            "vin": self.vin,
            "plate_no": self.plate_no,
            "vehicle_type": self.vehicle_type,
            "vehicle_hero_image": self.vehicle_hero_image,
        }
