"""Notion property mappings for contact sync.

Defines:
- NOTION_CONTACT_PROPERTY_MAP: Maps flattened contact fields to Notion
  database property names and types.
- flatten_contact(): Reduces a ContactRead to the single-valued fields Notion stores.
- to_notion_properties(): Converts a flattened dict to Notion API properties format.
- from_notion_properties(): Converts Notion page properties back to a flattened dict.
- projection_from_flat(): Builds a ContactProjection from a flattened dict.
- notion_schema_properties(): Property definitions used to extend a database.
"""

from __future__ import annotations

from typing import Any

from src.contact_sync.contacts.schemas import (
    ContactAddress,
    ContactEmail,
    ContactPhone,
    ContactRead,
)
from src.contact_sync.integrations.schemas import ContactProjection

# ── Notion Property Mappings ───────────────────────────────────────────────
# Maps flattened contact fields to Notion database property names and types.

NOTION_CONTACT_PROPERTY_MAP: dict[str, dict[str, str]] = {
    "display_name": {"notion_name": "Name", "type": "title"},
    "email": {"notion_name": "Email", "type": "email"},
    "phone": {"notion_name": "Phone", "type": "phone_number"},
    "address": {"notion_name": "Address", "type": "rich_text"},
    "job_title": {"notion_name": "Job Title", "type": "rich_text"},
    "notes": {"notion_name": "Notes", "type": "rich_text"},
}


# ── Conversion Functions ───────────────────────────────────────────────────


def flatten_contact(contact: ContactRead) -> dict[str, Any]:
    """Single-valued view of a contact: primary email, phone and address."""
    address = contact.primary_address
    return {
        "display_name": contact.display_name,
        "email": contact.primary_email,
        "phone": contact.primary_phone,
        "address": address.formatted_value if address else None,
        "job_title": contact.job_title,
        "notes": contact.notes,
    }


def to_notion_properties(
    data: dict[str, Any],
    property_map: dict[str, dict[str, str]] | None = None,
) -> dict[str, Any]:
    """Convert a flattened contact dict to Notion API properties format.

    A None value clears the property on the page, except for the title,
    which Notion requires and is therefore skipped.

    Args:
        data: Dict of flattened field names to values.
        property_map: Optional custom property map. Defaults to NOTION_CONTACT_PROPERTY_MAP.

    Returns:
        Dict suitable for the Notion API `properties` parameter.
    """
    if property_map is None:
        property_map = NOTION_CONTACT_PROPERTY_MAP

    properties: dict[str, Any] = {}

    for field_name, value in data.items():
        if field_name not in property_map:
            continue

        mapping = property_map[field_name]
        notion_name = mapping["notion_name"]
        prop_type = mapping["type"]

        if prop_type == "title":
            if value is None:
                continue
            properties[notion_name] = {
                "title": [{"text": {"content": str(value)}}]
            }
        elif prop_type == "rich_text":
            properties[notion_name] = {
                "rich_text": [{"text": {"content": str(value)}}] if value else []
            }
        elif prop_type in ("email", "phone_number"):
            properties[notion_name] = {prop_type: str(value) if value else None}

    return properties


def from_notion_properties(
    properties: dict[str, Any],
    property_map: dict[str, dict[str, str]] | None = None,
) -> dict[str, Any]:
    """Convert Notion page properties to a flattened contact dict.

    Properties the page does not carry are omitted from the result; present
    but empty properties map to None.

    Args:
        properties: Notion page `properties` dict.
        property_map: Optional custom property map. Defaults to NOTION_CONTACT_PROPERTY_MAP.
    """
    if property_map is None:
        property_map = NOTION_CONTACT_PROPERTY_MAP

    result: dict[str, Any] = {}

    # Build reverse map: notion_name -> (internal_name, type)
    reverse_map: dict[str, tuple[str, str]] = {}
    for internal_name, mapping in property_map.items():
        reverse_map[mapping["notion_name"]] = (internal_name, mapping["type"])

    for notion_name, prop_value in properties.items():
        if notion_name not in reverse_map:
            continue

        internal_name, prop_type = reverse_map[notion_name]
        result[internal_name] = _extract_notion_value(prop_value, prop_type)

    return result


def _extract_notion_value(prop_value: dict[str, Any], prop_type: str) -> Any:
    """Extract a Python value from a Notion property wrapper."""
    if not isinstance(prop_value, dict):
        return None

    if prop_type in ("title", "rich_text"):
        fragments = prop_value.get(prop_type) or []
        text = "".join(
            f.get("plain_text") or f.get("text", {}).get("content", "")
            for f in fragments
        )
        return text or None
    if prop_type in ("email", "phone_number"):
        return prop_value.get(prop_type) or None
    return None


def projection_from_flat(flat: dict[str, Any]) -> ContactProjection:
    """Build a ContactProjection from a flattened dict.

    Keys absent from flat stay None (not supplied). Present email, phone or
    address keys always yield a list, empty when the value was cleared.
    """
    projection = ContactProjection(
        display_name=flat.get("display_name"),
        job_title=flat.get("job_title"),
        notes=flat.get("notes"),
    )
    if "email" in flat:
        projection.emails = (
            [ContactEmail(value=flat["email"], primary=True)] if flat["email"] else []
        )
    if "phone" in flat:
        projection.phones = (
            [ContactPhone(value=flat["phone"], primary=True)] if flat["phone"] else []
        )
    if "address" in flat:
        projection.addresses = (
            [ContactAddress(formatted_value=flat["address"], primary=True)]
            if flat["address"]
            else []
        )
    return projection


def notion_schema_properties(
    property_map: dict[str, dict[str, str]] | None = None,
) -> dict[str, dict[str, Any]]:
    """Database property definitions for every non-title mapped field."""
    if property_map is None:
        property_map = NOTION_CONTACT_PROPERTY_MAP
    return {
        mapping["notion_name"]: {mapping["type"]: {}}
        for mapping in property_map.values()
        if mapping["type"] != "title"
    }
