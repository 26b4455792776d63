"""
test_config_resolver.py — Tests for choosing and expanding the configuration a form renders.

Tests cover:
  - precedence: explicit id > vehicle's last-used id > active (default first)
  - explicit id ignores the active flag; missing explicit id is NotFound
  - stale vehicle reference falls back to the active configuration
  - dropdown expansion: active options in display order, missing dropdowns reported
  - payload shape: config, s3Config, dropdowns, company.lastConfigId, workshopSections
  - invalid purpose, unknown company, no active configuration
  - list_active_configurations
"""

from datetime import datetime, timezone

import pytest

from app.services.errors import NotFoundError, ValidationError
from conftest import (
    COMPANY_ID,
    INSPECTION_CONFIG_ID,
    OTHER_COMPANY_ID,
    PAINT_DROPDOWN_ID,
    TRADEIN_CONFIG_ID,
    make_inspection_doc,
)

SECOND_CONFIG_ID = "aaaaaaaa-0000-4000-8000-000000000003"


def add_second_inspection(config_store, **overrides):
    doc = make_inspection_doc(
        id=SECOND_CONFIG_ID,
        config_name="Quick Inspection",
        is_default=False,
        updated_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        **overrides,
    )
    config_store.docs[doc.id] = doc
    return doc


def set_last_config(vehicle_store, config_id):
    vehicle_store.vehicles[(COMPANY_ID, 1001, "inspection")].last_inspection_config_id = config_id


class TestPrecedence:
    def test_active_default_when_nothing_given(self, run, resolver, config_store):
        add_second_inspection(config_store)
        resolved = run(resolver.resolve(COMPANY_ID, "inspection"))
        assert resolved.config.id == INSPECTION_CONFIG_ID
        assert resolved.source == "active"

    def test_latest_updated_when_no_default(self, run, resolver, config_store):
        config_store.docs[INSPECTION_CONFIG_ID].is_default = False
        add_second_inspection(config_store)
        resolved = run(resolver.resolve(COMPANY_ID, "inspection"))
        assert resolved.config.id == SECOND_CONFIG_ID

    def test_explicit_id_wins(self, run, resolver, config_store, vehicle_store):
        add_second_inspection(config_store)
        set_last_config(vehicle_store, INSPECTION_CONFIG_ID)
        resolved = run(resolver.resolve(COMPANY_ID, "inspection", config_id=SECOND_CONFIG_ID, vehicle_stock_id=1001))
        assert resolved.config.id == SECOND_CONFIG_ID
        assert resolved.source == "explicit"

    def test_explicit_id_ignores_active_flag(self, run, resolver, config_store):
        add_second_inspection(config_store, is_active=False)
        resolved = run(resolver.resolve(COMPANY_ID, "inspection", config_id=SECOND_CONFIG_ID))
        assert resolved.config.id == SECOND_CONFIG_ID

    def test_unknown_explicit_id(self, run, resolver):
        with pytest.raises(NotFoundError):
            run(resolver.resolve(COMPANY_ID, "inspection", config_id="aaaaaaaa-0000-4000-8000-00000000dead"))

    def test_explicit_id_of_other_purpose_is_not_found(self, run, resolver):
        with pytest.raises(NotFoundError):
            run(resolver.resolve(COMPANY_ID, "inspection", config_id=TRADEIN_CONFIG_ID))

    def test_vehicle_last_config_beats_active(self, run, resolver, config_store, vehicle_store):
        add_second_inspection(config_store, is_active=False)
        set_last_config(vehicle_store, SECOND_CONFIG_ID)
        resolved = run(resolver.resolve(COMPANY_ID, "inspection", vehicle_stock_id=1001))
        assert resolved.config.id == SECOND_CONFIG_ID
        assert resolved.source == "vehicle"

    def test_stale_vehicle_reference_falls_back(self, run, resolver, vehicle_store):
        set_last_config(vehicle_store, "aaaaaaaa-0000-4000-8000-00000000dead")
        resolved = run(resolver.resolve(COMPANY_ID, "inspection", vehicle_stock_id=1001))
        assert resolved.config.id == INSPECTION_CONFIG_ID
        assert resolved.source == "active"

    def test_unknown_vehicle_resolves_without_it(self, run, resolver):
        resolved = run(resolver.resolve(COMPANY_ID, "inspection", vehicle_stock_id=9999))
        assert resolved.vehicle is None
        assert resolved.config.id == INSPECTION_CONFIG_ID

    def test_no_active_configuration(self, run, resolver, config_store):
        config_store.docs[TRADEIN_CONFIG_ID].is_active = False
        with pytest.raises(NotFoundError):
            run(resolver.resolve(COMPANY_ID, "tradein"))


class TestScoping:
    def test_invalid_purpose(self, run, resolver):
        with pytest.raises(ValidationError) as exc:
            run(resolver.resolve(COMPANY_ID, "service"))
        assert exc.value.invariant == "invalid_purpose"

    def test_unknown_company(self, run, resolver):
        with pytest.raises(NotFoundError) as exc:
            run(resolver.resolve("99999999-9999-4999-8999-999999999999", "inspection"))
        assert exc.value.entity == "company"

    def test_other_company_cannot_see_configuration(self, run, resolver):
        with pytest.raises(NotFoundError):
            run(resolver.resolve(OTHER_COMPANY_ID, "inspection", config_id=INSPECTION_CONFIG_ID))


class TestDropdownExpansion:
    def test_options_are_active_and_ordered(self, run, resolver):
        resolved = run(resolver.resolve(COMPANY_ID, "inspection"))
        options = resolved.dropdowns[PAINT_DROPDOWN_ID]["options"]
        assert [o["option_value"] for o in options] == ["good", "fair", "poor"]
        assert resolved.missing_dropdown_ids == []

    def test_options_injected_into_field(self, run, resolver):
        payload = run(resolver.resolve(COMPANY_ID, "inspection")).to_payload()
        paint = payload["config"]["categories"][0]["sections"][0]["fields"][2]
        assert paint["dropdown_config"]["dropdown_id"] == PAINT_DROPDOWN_ID
        assert [o["option_value"] for o in paint["dropdown_config"]["options"]] == ["good", "fair", "poor"]

    def test_missing_dropdown_reported(self, run, resolver, dropdown_store):
        dropdown_store.dropdowns = [d for d in dropdown_store.dropdowns if d.id != PAINT_DROPDOWN_ID]
        resolved = run(resolver.resolve(COMPANY_ID, "inspection"))
        assert resolved.missing_dropdown_ids == [PAINT_DROPDOWN_ID]
        assert resolved.to_payload()["missingDropdownIds"] == [PAINT_DROPDOWN_ID]

    def test_no_bindings(self, run, resolver):
        resolved = run(resolver.resolve(COMPANY_ID, "tradein"))
        assert resolved.dropdowns == {}
        assert "missingDropdownIds" not in resolved.to_payload()


class TestPayload:
    def test_shape(self, run, resolver):
        payload = run(resolver.resolve(COMPANY_ID, "inspection")).to_payload()
        assert payload["config"]["id"] == INSPECTION_CONFIG_ID
        assert payload["s3Config"]["bucket"] == "acme-media"
        assert payload["company"] == {"id": COMPANY_ID, "name": "Acme Motors", "lastConfigId": None}
        assert [d["dropdown_name"] for d in payload["dropdowns"]] == ["paint_condition"]
        assert "workshopSections" not in payload

    def test_company_without_storage(self, run, resolver, config_store):
        config_store.docs["other"] = make_inspection_doc(id="other", company_id=OTHER_COMPANY_ID)
        payload = run(resolver.resolve(OTHER_COMPANY_ID, "inspection")).to_payload()
        assert payload["s3Config"] is None

    def test_vehicle_workshop_sections_merged(self, run, resolver, vehicle_store):
        vehicle = vehicle_store.vehicles[(COMPANY_ID, 1001, "inspection")]
        vehicle.last_inspection_config_id = INSPECTION_CONFIG_ID
        vehicle.inspection_result = [{"category_id": "at_arrival", "sections": [{
            "section_id": "workshop_section_1",
            "section_name": "At Workshop - Add On",
            "is_workshop_section": True,
            "fields": [],
        }]}]
        payload = run(resolver.resolve(COMPANY_ID, "inspection", vehicle_stock_id=1001)).to_payload()
        section_ids = [s["section_id"] for s in payload["config"]["categories"][0]["sections"]]
        assert section_ids == ["sec_exterior", "workshop_section_1"]
        assert [s["section_id"] for s in payload["workshopSections"]] == ["workshop_section_1"]
        assert payload["company"]["lastConfigId"] == INSPECTION_CONFIG_ID

    def test_resolution_does_not_write(self, run, resolver, config_store, vehicle_store):
        run(resolver.resolve(COMPANY_ID, "inspection", vehicle_stock_id=1001))
        assert config_store.save_calls == 0
        assert vehicle_store.save_calls == 0


class TestListActive:
    def test_lists_active_only(self, run, resolver, config_store):
        add_second_inspection(config_store, is_active=False)
        items = run(resolver.list_active_configurations(COMPANY_ID, "inspection"))
        assert [i["id"] for i in items] == [INSPECTION_CONFIG_ID]
        assert set(items[0]) == {"id", "config_name", "description", "version", "created_at", "is_default"}
