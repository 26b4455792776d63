"""
test_vehicle_results.py — Tests for reading and saving vehicle result snapshots.

Tests cover:
  - get_result payload, unknown vehicle
  - save_result: replaces the snapshot, tags last-used config, appends report PDFs
  - snapshots stored exactly as sent (flat trade-in lists stay flat)
  - rejected inputs: non-list result, unknown config id (nothing written)
  - add_workshop_field persists the inserted field
"""

import pytest

from app.services.errors import NotFoundError, ValidationError
from conftest import COMPANY_ID, INSPECTION_CONFIG_ID, TRADEIN_CONFIG_ID, make_vehicle

SNAPSHOT = [{"category_id": "at_arrival", "sections": [
    {"section_id": "sec_exterior", "section_name": "Exterior", "fields": [{"field_id": "f_parts", "value": 120}]},
]}]


class TestGetResult:
    def test_payload(self, run, results):
        data = run(results.get_result(COMPANY_ID, 1001, "inspection"))
        assert data["vehicle"]["make"] == "Toyota"
        assert data["result"] == []
        assert data["lastConfigId"] is None
        assert data["reportPdfs"] == []

    def test_unknown_vehicle(self, run, results):
        with pytest.raises(NotFoundError):
            run(results.get_result(COMPANY_ID, 4242, "inspection"))

    def test_vehicle_type_must_match_purpose(self, run, results):
        with pytest.raises(NotFoundError):
            run(results.get_result(COMPANY_ID, 1001, "tradein"))


class TestSaveResult:
    def test_inspection(self, run, results, vehicle_store):
        run(results.save_result(
            COMPANY_ID, 1001, "inspection", SNAPSHOT,
            report_pdf_url="https://acme-media.s3.amazonaws.com/r1.pdf", config_id=INSPECTION_CONFIG_ID,
        ))
        stored = vehicle_store.stored(COMPANY_ID, 1001, "inspection")
        assert stored.inspection_result == SNAPSHOT
        assert stored.last_inspection_config_id == INSPECTION_CONFIG_ID
        assert stored.inspection_report_pdf == ["https://acme-media.s3.amazonaws.com/r1.pdf"]

    def test_report_pdfs_accumulate(self, run, results, vehicle_store):
        run(results.save_result(COMPANY_ID, 1001, "inspection", SNAPSHOT, report_pdf_url="a.pdf"))
        run(results.save_result(COMPANY_ID, 1001, "inspection", SNAPSHOT, report_pdf_url="b.pdf"))
        assert vehicle_store.stored(COMPANY_ID, 1001, "inspection").inspection_report_pdf == ["a.pdf", "b.pdf"]

    def test_without_config_id_keeps_previous(self, run, results, vehicle_store):
        run(results.save_result(COMPANY_ID, 1001, "inspection", SNAPSHOT, config_id=INSPECTION_CONFIG_ID))
        run(results.save_result(COMPANY_ID, 1001, "inspection", []))
        stored = vehicle_store.stored(COMPANY_ID, 1001, "inspection")
        assert stored.last_inspection_config_id == INSPECTION_CONFIG_ID
        assert stored.inspection_result == []

    def test_tradein_flat_result_is_stored_verbatim(self, run, results, vehicle_store):
        vehicle_store.vehicles[(COMPANY_ID, 2002, "tradein")] = make_vehicle(
            id="vvvvvvvv-0000-4000-8000-000000000002", vehicle_stock_id=2002, vehicle_type="tradein",
        )
        flat = [{"section_id": "sec_valuation", "section_name": "Valuation", "fields": []}]
        run(results.save_result(COMPANY_ID, 2002, "tradein", flat, config_id=TRADEIN_CONFIG_ID))
        stored = vehicle_store.stored(COMPANY_ID, 2002, "tradein")
        assert stored.trade_in_result == flat
        assert stored.last_tradein_config_id == TRADEIN_CONFIG_ID

        view = run(results.get_result(COMPANY_ID, 2002, "tradein"))
        assert view["result"] == flat

    def test_non_list_result(self, run, results, vehicle_store):
        with pytest.raises(ValidationError) as exc:
            run(results.save_result(COMPANY_ID, 1001, "inspection", {"sections": []}))
        assert exc.value.invariant == "invalid_result"
        assert vehicle_store.save_calls == 0

    def test_unknown_config_id(self, run, results, vehicle_store):
        with pytest.raises(NotFoundError):
            run(results.save_result(COMPANY_ID, 1001, "inspection", SNAPSHOT, config_id=TRADEIN_CONFIG_ID))
        assert vehicle_store.save_calls == 0


class TestAddWorkshopField:
    def test_persists_field(self, run, results, vehicle_store):
        inserted = run(results.add_workshop_field(
            COMPANY_ID, 1001, "inspection",
            {"field_name": "Windscreen chip", "field_type": "currency"}, category_id="at_arrival",
        ))
        stored = vehicle_store.stored(COMPANY_ID, 1001, "inspection")
        section = stored.inspection_result[0]["sections"][0]
        assert section["section_id"] == inserted.section_id
        assert section["fields"][0]["field_id"] == inserted.field["field_id"]

    def test_requires_category_for_inspection(self, run, results, vehicle_store):
        with pytest.raises(ValidationError):
            run(results.add_workshop_field(COMPANY_ID, 1001, "inspection", {"field_name": "x", "field_type": "text"}))
        assert vehicle_store.save_calls == 0
