"""
conftest.py — Shared pytest fixtures for the AutoERP configuration engine test suite.

No database or external service is needed. The engine's storage contracts
(ConfigurationStore, DropdownStore, CompanyDirectory, VehicleStore) are
satisfied by the in-memory stores below, which keep deep copies so a test
can tell exactly what was persisted.

Async services are driven with the ``run`` fixture (asyncio.run).

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import asyncio
import sys
import os
from datetime import datetime, timedelta, timezone
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from app.models.config_schema import ConfigurationDocument  # noqa: E402
from app.models.records import CompanyRecord, DropdownRecord, VehicleRecord  # noqa: E402
from app.services.errors import ConflictError  # noqa: E402


COMPANY_ID = "11111111-1111-4111-8111-111111111111"
OTHER_COMPANY_ID = "22222222-2222-4222-8222-222222222222"
INSPECTION_CONFIG_ID = "aaaaaaaa-0000-4000-8000-000000000001"
TRADEIN_CONFIG_ID = "aaaaaaaa-0000-4000-8000-000000000002"
PAINT_DROPDOWN_ID = "dddddddd-0000-4000-8000-000000000001"
INACTIVE_DROPDOWN_ID = "dddddddd-0000-4000-8000-000000000002"
FOREIGN_DROPDOWN_ID = "dddddddd-0000-4000-8000-000000000003"

_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------

class InMemoryConfigurationStore:
    """Mirrors SqlConfigurationStore, including the one-default-per-purpose index."""

    def __init__(self, docs=()):
        self.docs = {}
        self.save_calls = 0
        for doc in docs:
            self.docs[doc.id] = doc.model_copy(deep=True)

    def _scoped(self, company_id, purpose):
        return [d for d in self.docs.values() if d.company_id == company_id and d.purpose == purpose]

    @staticmethod
    def _newest_first(docs):
        return sorted(docs, key=lambda d: (d.is_default, d.updated_at or _EPOCH), reverse=True)

    async def get(self, company_id, purpose, config_id):
        doc = self.docs.get(config_id)
        if doc is None or doc.company_id != company_id or doc.purpose != purpose:
            return None
        return doc.model_copy(deep=True)

    async def find_active(self, company_id, purpose):
        active = self._newest_first(d for d in self._scoped(company_id, purpose) if d.is_active)
        return active[0].model_copy(deep=True) if active else None

    async def find_by_name(self, company_id, purpose, config_name):
        for d in self._scoped(company_id, purpose):
            if d.config_name == config_name:
                return d.model_copy(deep=True)
        return None

    async def find_default(self, company_id, purpose):
        for d in self._scoped(company_id, purpose):
            if d.is_default:
                return d.model_copy(deep=True)
        return None

    async def list(self, company_id, purpose, *, search="", status="all", offset=0, limit=20):
        docs = self._scoped(company_id, purpose)
        if search:
            needle = search.lower()
            docs = [d for d in docs if needle in d.config_name.lower() or needle in (d.description or "").lower()]
        if status != "all":
            docs = [d for d in docs if d.is_active == (status == "active")]
        docs = sorted(docs, key=lambda d: d.updated_at or _EPOCH, reverse=True)
        return [d.model_copy(deep=True) for d in docs[offset:offset + limit]], len(docs)

    async def list_active(self, company_id, purpose):
        return [d.model_copy(deep=True) for d in self._newest_first(
            d for d in self._scoped(company_id, purpose) if d.is_active
        )]

    async def save(self, *docs):
        staged = dict(self.docs)
        for doc in docs:
            staged[doc.id] = doc.model_copy(deep=True)
        defaults = {}
        for d in staged.values():
            if d.is_default:
                key = (d.company_id, d.purpose)
                if key in defaults:
                    raise ConflictError("duplicate default", conflicting_id=defaults[key])
                defaults[key] = d.id
        self.docs = staged
        self.save_calls += 1

    def stored(self, config_id) -> ConfigurationDocument:
        return self.docs[config_id]


class InMemoryDropdownStore:
    def __init__(self, dropdowns=()):
        self.dropdowns = list(dropdowns)

    async def find_dropdown(self, company_id, *, dropdown_id=None, name=None, active_only=True):
        for d in self.dropdowns:
            if d.company_id != company_id:
                continue
            if dropdown_id is not None and d.id != dropdown_id:
                continue
            if name is not None and d.dropdown_name != name:
                continue
            if active_only and not d.is_active:
                continue
            return d
        return None

    async def find_dropdowns(self, company_id, dropdown_ids):
        return [d for d in self.dropdowns if d.company_id == company_id and d.id in dropdown_ids]


class InMemoryCompanyDirectory:
    def __init__(self, companies=()):
        self.companies = {c.id: c for c in companies}

    async def get_company(self, company_id):
        return self.companies.get(company_id)


class InMemoryVehicleStore:
    def __init__(self, vehicles=()):
        self.vehicles = {}
        self.save_calls = 0
        for v in vehicles:
            self.vehicles[(v.company_id, v.vehicle_stock_id, v.vehicle_type)] = v.model_copy(deep=True)

    async def find_vehicle(self, company_id, vehicle_stock_id, vehicle_type):
        v = self.vehicles.get((company_id, vehicle_stock_id, vehicle_type))
        return v.model_copy(deep=True) if v else None

    async def save_vehicle(self, vehicle):
        self.vehicles[(vehicle.company_id, vehicle.vehicle_stock_id, vehicle.vehicle_type)] = vehicle.model_copy(deep=True)
        self.save_calls += 1

    def stored(self, company_id, vehicle_stock_id, vehicle_type) -> VehicleRecord:
        return self.vehicles[(company_id, vehicle_stock_id, vehicle_type)]


# ---------------------------------------------------------------------------
# Sample documents
# ---------------------------------------------------------------------------

def make_inspection_doc(**overrides) -> ConfigurationDocument:
    """
    Inspection config with one populated category:

      at_arrival
        sec_exterior: f_parts (currency), f_labour (currency), f_paint (dropdown -> paint_condition)
        calc_total = f_parts + f_labour
      after_reconditioning, after_grooming: empty
    """
    data = {
        "id": INSPECTION_CONFIG_ID,
        "company_id": COMPANY_ID,
        "purpose": "inspection",
        "config_name": "Standard Inspection",
        "is_active": True,
        "is_default": True,
        "updated_at": _EPOCH + timedelta(days=1),
        "categories": [
            {
                "category_id": "at_arrival",
                "category_name": "At Arrival",
                "display_order": 0,
                "sections": [
                    {
                        "section_id": "sec_exterior",
                        "section_name": "Exterior",
                        "display_order": 0,
                        "fields": [
                            {"field_id": "f_parts", "field_name": "Parts", "field_type": "currency", "display_order": 0},
                            {"field_id": "f_labour", "field_name": "Labour", "field_type": "currency", "display_order": 1},
                            {
                                "field_id": "f_paint",
                                "field_name": "Paint",
                                "field_type": "dropdown",
                                "display_order": 2,
                                "dropdown_config": {"dropdown_id": PAINT_DROPDOWN_ID, "dropdown_name": "paint_condition"},
                            },
                        ],
                    }
                ],
                "calculations": [
                    {
                        "calculation_id": "calc_total",
                        "display_name": "Total",
                        "internal_name": "total",
                        "formula": [
                            {"field_id": "f_parts", "order": 0},
                            {"operation": "+", "order": 1},
                            {"field_id": "f_labour", "order": 2},
                        ],
                    }
                ],
            },
            {"category_id": "after_reconditioning", "category_name": "After Reconditioning", "display_order": 1},
            {"category_id": "after_grooming", "category_name": "After Grooming", "display_order": 2},
        ],
    }
    data.update(overrides)
    return ConfigurationDocument.model_validate(data)


def make_tradein_doc(**overrides) -> ConfigurationDocument:
    """Trade-in config: sec_valuation with f_market and f_repairs (multiplier); calc_offer = f_market - f_repairs."""
    data = {
        "id": TRADEIN_CONFIG_ID,
        "company_id": COMPANY_ID,
        "purpose": "tradein",
        "config_name": "Standard Trade-in",
        "is_active": True,
        "is_default": True,
        "updated_at": _EPOCH + timedelta(days=1),
        "sections": [
            {
                "section_id": "sec_valuation",
                "section_name": "Valuation",
                "fields": [
                    {"field_id": "f_market", "field_name": "Market value", "field_type": "number", "display_order": 0},
                    {"field_id": "f_repairs", "field_name": "Repairs", "field_type": "multiplier", "display_order": 1},
                ],
            }
        ],
        "calculations": [
            {
                "calculation_id": "calc_offer",
                "display_name": "Offer",
                "internal_name": "offer",
                "formula": [
                    {"field_id": "f_market", "order": 0},
                    {"operation": "-", "order": 1},
                    {"field_id": "f_repairs", "order": 2},
                ],
            }
        ],
    }
    data.update(overrides)
    return ConfigurationDocument.model_validate(data)


def make_vehicle(**overrides) -> VehicleRecord:
    data = {
        "id": "vvvvvvvv-0000-4000-8000-000000000001",
        "company_id": COMPANY_ID,
        "vehicle_stock_id": 1001,
        "vehicle_type": "inspection",
        "make": "Toyota",
        "model": "Hilux",
        "year": 2021,
    }
    data.update(overrides)
    return VehicleRecord.model_validate(data)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def run():
    """Drive a coroutine to completion."""
    return asyncio.run


@pytest.fixture
def inspection_doc():
    return make_inspection_doc()


@pytest.fixture
def tradein_doc():
    return make_tradein_doc()


@pytest.fixture
def config_store(inspection_doc, tradein_doc):
    return InMemoryConfigurationStore([inspection_doc, tradein_doc])


@pytest.fixture
def dropdown_store():
    return InMemoryDropdownStore([
        DropdownRecord(
            id=PAINT_DROPDOWN_ID,
            company_id=COMPANY_ID,
            dropdown_name="paint_condition",
            display_name="Paint Condition",
            values=[
                {"option_value": "poor", "display_value": "Poor", "display_order": 2},
                {"option_value": "good", "display_value": "Good", "display_order": 0},
                {"option_value": "fair", "display_value": "Fair", "display_order": 1},
                {"option_value": "legacy", "display_value": "Legacy", "display_order": 3, "is_active": False},
            ],
        ),
        DropdownRecord(
            id=INACTIVE_DROPDOWN_ID,
            company_id=COMPANY_ID,
            dropdown_name="old_condition",
            display_name="Old Condition",
            is_active=False,
        ),
        DropdownRecord(
            id=FOREIGN_DROPDOWN_ID,
            company_id=OTHER_COMPANY_ID,
            dropdown_name="tyre_condition",
            display_name="Tyre Condition",
        ),
    ])


@pytest.fixture
def company_directory():
    return InMemoryCompanyDirectory([
        CompanyRecord(
            id=COMPANY_ID,
            name="Acme Motors",
            s3_config={"bucket": "acme-media", "region": "ap-southeast-2", "url": "https://acme-media.s3.amazonaws.com"},
        ),
        CompanyRecord(id=OTHER_COMPANY_ID, name="Other Dealer"),
    ])


@pytest.fixture
def vehicle_store():
    return InMemoryVehicleStore([make_vehicle()])


@pytest.fixture
def resolver(config_store, company_directory, dropdown_store, vehicle_store):
    from app.services.config_resolver import ConfigResolver
    return ConfigResolver(config_store, company_directory, dropdown_store, vehicle_store)


@pytest.fixture
def mutations(config_store, dropdown_store):
    from app.services.config_mutations import ConfigMutationService
    return ConfigMutationService(config_store, dropdown_store)


@pytest.fixture
def results(vehicle_store, config_store):
    from app.services.vehicle_results import VehicleResultService
    return VehicleResultService(vehicle_store, config_store)
