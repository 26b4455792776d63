"""
workshop_merge.py — Overlay a vehicle's workshop sections onto its configuration.

During servicing a vehicle can pick up ad-hoc "workshop" sections and fields
that were never part of the base configuration. They live only in the vehicle's
saved result snapshot. On every load they are copied back onto the resolved
configuration so the form shows them again.

Snapshot shapes accepted:
  inspection: [{"category_id": .., "sections": [section, ...]}, ...]
  tradein:    [{"category_id": "tradein", "sections": [...]}]   (current)
              [section, ...]                                   (legacy flat list)

A section counts as workshop when its ``is_workshop_section`` flag is true.
Snapshots written before the flag existed have no such key; those sections are
recognised by the legacy markers instead.
"""
import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from app.models.config_schema import CategoryConfig, ConfigurationDocument, FieldConfig, SectionConfig
from app.services.config_index import ConfigIndex
from app.services.errors import ValidationError

logger = logging.getLogger("autoerp-config")

WORKSHOP_ADDITIONS_ID = "workshop_additions"
WORKSHOP_ADDITIONS_NAME = "Workshop Additions"
WORKSHOP_SECTION_NAME = "At Workshop - Add On"
TRADEIN_SNAPSHOT_CATEGORY = "tradein"

# Legacy markers for snapshots that predate ``is_workshop_section``
LEGACY_DISPLAY_NAME = "at_workshop_onstaging"
LEGACY_ID_TOKEN = "workshop_section"
LEGACY_NAME_TOKEN = "Workshop"


@dataclass
class MergedConfiguration:
    config: ConfigurationDocument
    workshop_sections: List[Dict[str, Any]] = field(default_factory=list)   # sections appended by this merge


@dataclass
class WorkshopFieldInsert:
    snapshot: List[Dict[str, Any]]
    category_id: Optional[str]
    section_id: str
    field: Dict[str, Any]
    created_section: bool = False


def is_workshop_section(section: Any) -> bool:
    if isinstance(section, SectionConfig):
        return section.is_workshop_section
    if not isinstance(section, Mapping):
        return False
    if "is_workshop_section" in section:
        return bool(section["is_workshop_section"])
    return (
        section.get("section_display_name") == LEGACY_DISPLAY_NAME
        or LEGACY_ID_TOKEN in str(section.get("section_id") or "")
        or LEGACY_NAME_TOKEN in str(section.get("section_name") or "")
    )


def _is_category_entry(entry: Mapping) -> bool:
    return "sections" in entry and "section_id" not in entry


def iter_snapshot_sections(snapshot: Optional[List[Any]]) -> Iterator[Tuple[Optional[str], Dict[str, Any]]]:
    """(category_id, section) for every section in a snapshot of either shape."""
    for entry in snapshot or []:
        if not isinstance(entry, Mapping):
            continue
        if _is_category_entry(entry):
            for section in entry.get("sections") or []:
                if isinstance(section, Mapping):
                    yield entry.get("category_id"), section
        elif "section_id" in entry:
            yield None, entry


def _workshop_category(config: ConfigurationDocument, category_id: Optional[str]) -> CategoryConfig:
    for category in config.categories:
        if category.category_id == category_id:
            return category
    for category in config.categories:
        if category.category_id == WORKSHOP_ADDITIONS_ID:
            return category
    category = CategoryConfig(
        category_id=WORKSHOP_ADDITIONS_ID,
        category_name=WORKSHOP_ADDITIONS_NAME,
        description="Workshop sections recorded on this vehicle",
        display_order=len(config.categories),
    )
    config.categories.append(category)
    return category


def merge(config: ConfigurationDocument, snapshot: Optional[List[Any]]) -> MergedConfiguration:
    """
    Append snapshot workshop sections missing from ``config``.

    Pure: ``config`` is left untouched, the result carries a deep copy.
    A section id already present anywhere in the configuration is never
    appended, so merging the same snapshot twice changes nothing.
    """
    merged = config.model_copy(deep=True)
    known = set(ConfigIndex.build(merged).sections)
    added: List[Dict[str, Any]] = []

    for category_id, raw in iter_snapshot_sections(snapshot):
        if not is_workshop_section(raw):
            continue
        section_id = raw.get("section_id")
        if not section_id or section_id in known:
            continue
        try:
            section = SectionConfig.model_validate({**copy.deepcopy(dict(raw)), "is_workshop_section": True})
        except PydanticValidationError as e:
            logger.warning(
                "Skipping malformed workshop section %s on config %s: %s",
                section_id, config.id, e.errors()[0].get("msg"),
            )
            continue

        if merged.is_inspection:
            target = _workshop_category(merged, category_id).sections
        else:
            target = merged.sections
        section.display_order = len(target)
        target.append(section)
        known.add(section_id)
        added.append(section.model_dump())

    if added:
        logger.info("Merged %d workshop section(s) into config %s", len(added), config.id)
    return MergedConfiguration(config=merged, workshop_sections=added)


def wrap_tradein_snapshot(snapshot: List[Any]) -> List[Dict[str, Any]]:
    if snapshot and all(isinstance(e, Mapping) and _is_category_entry(e) for e in snapshot):
        return snapshot
    sections = [s for _, s in iter_snapshot_sections(snapshot)]
    return [{"category_id": TRADEIN_SNAPSHOT_CATEGORY, "sections": sections}]


def insert_workshop_field(
    snapshot: Optional[List[Any]],
    purpose: str,
    field_data: Mapping[str, Any],
    category_id: Optional[str] = None,
) -> WorkshopFieldInsert:
    """
    Add an ad-hoc field to a vehicle snapshot's workshop section.

    Creates the "At Workshop - Add On" section (and, for inspection, the
    category entry) when missing. Trade-in snapshots are rewritten in the
    wrapped shape. Returns a new snapshot; the input is not modified.
    """
    if purpose == "inspection" and not category_id:
        raise ValidationError("category_required", "Inspection workshop fields need a category_id")

    result = copy.deepcopy(list(snapshot or []))
    if purpose == "inspection":
        target_category = category_id
    else:
        result = wrap_tradein_snapshot(result)
        target_category = result[0].get("category_id", TRADEIN_SNAPSHOT_CATEGORY)

    used_ids = set()
    for _, section in iter_snapshot_sections(result):
        used_ids.add(section.get("section_id"))
        for f in section.get("fields") or []:
            if isinstance(f, Mapping):
                used_ids.add(f.get("field_id"))

    payload = dict(field_data)
    payload.setdefault("field_id", f"field_{uuid.uuid4().hex}")
    if payload["field_id"] in used_ids:
        raise ValidationError("duplicate_id", f"Field id '{payload['field_id']}' already exists on this vehicle")
    try:
        new_field = FieldConfig.model_validate(payload).model_dump()
    except PydanticValidationError as e:
        raise ValidationError("invalid_payload", f"Invalid workshop field: {e.errors()[0].get('msg')}") from e

    category = next(
        (e for e in result if isinstance(e, dict) and _is_category_entry(e) and e.get("category_id") == target_category),
        None,
    )
    if category is None:
        category = {"category_id": target_category, "sections": []}
        result.append(category)

    section = next((s for s in category["sections"] if is_workshop_section(s)), None)
    created = section is None
    if created:
        section = {
            "section_id": f"{LEGACY_ID_TOKEN}_{uuid.uuid4().hex}",
            "section_name": WORKSHOP_SECTION_NAME,
            "section_display_name": LEGACY_DISPLAY_NAME,
            "is_workshop_section": True,
            "display_order": len(category["sections"]),
            "fields": [],
        }
        category["sections"].append(section)
    else:
        section["is_workshop_section"] = True
        section.setdefault("fields", [])

    new_field["display_order"] = len(section["fields"])
    section["fields"].append(new_field)
    return WorkshopFieldInsert(
        snapshot=result,
        category_id=target_category if purpose == "inspection" else None,
        section_id=section["section_id"],
        field=new_field,
        created_section=created,
    )
