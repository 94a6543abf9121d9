"""Tests for Notion property conversion."""

from __future__ import annotations

from datetime import datetime, timezone

from src.contact_sync.contacts.schemas import (
    ContactAddress,
    ContactEmail,
    ContactPhone,
    ContactRead,
)
from src.contact_sync.integrations.field_mapping import (
    flatten_contact,
    from_notion_properties,
    notion_schema_properties,
    projection_from_flat,
    to_notion_properties,
)


def _contact(**overrides) -> ContactRead:
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    fields = {
        "id": "c-1",
        "display_name": "Ada Lovelace",
        "emails": [
            ContactEmail(value="work@example.com"),
            ContactEmail(value="home@example.com", primary=True),
        ],
        "phones": [ContactPhone(value="+44 20 0000 0000")],
        "addresses": [ContactAddress(formatted_value="12 St James's Sq, London")],
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return ContactRead(**fields)


class TestFlattenContact:
    def test_primary_values_chosen(self):
        flat = flatten_contact(_contact())
        assert flat["email"] == "home@example.com"
        assert flat["phone"] == "+44 20 0000 0000"
        assert flat["address"] == "12 St James's Sq, London"

    def test_empty_collections_flatten_to_none(self):
        flat = flatten_contact(_contact(emails=[], phones=[], addresses=[]))
        assert flat["email"] is None
        assert flat["phone"] is None
        assert flat["address"] is None


class TestToNotionProperties:
    def test_property_shapes(self):
        props = to_notion_properties(
            {"display_name": "Ada", "email": "a@example.com", "job_title": "Analyst"}
        )
        assert props["Name"] == {"title": [{"text": {"content": "Ada"}}]}
        assert props["Email"] == {"email": "a@example.com"}
        assert props["Job Title"] == {"rich_text": [{"text": {"content": "Analyst"}}]}

    def test_none_clears_but_title_is_skipped(self):
        props = to_notion_properties({"display_name": None, "phone": None, "notes": None})
        assert "Name" not in props
        assert props["Phone"] == {"phone_number": None}
        assert props["Notes"] == {"rich_text": []}

    def test_unknown_fields_ignored(self):
        assert to_notion_properties({"favourite_colour": "blue"}) == {}


class TestFromNotionProperties:
    def test_reads_plain_text_and_scalars(self):
        flat = from_notion_properties(
            {
                "Name": {"title": [{"plain_text": "Ada "}, {"plain_text": "Lovelace"}]},
                "Phone": {"phone_number": "+1 555"},
                "Unmapped": {"number": 3},
            }
        )
        assert flat == {"display_name": "Ada Lovelace", "phone": "+1 555"}

    def test_empty_values_become_none(self):
        flat = from_notion_properties({"Notes": {"rich_text": []}, "Email": {"email": ""}})
        assert flat == {"notes": None, "email": None}


class TestProjectionFromFlat:
    def test_absent_keys_are_not_supplied(self):
        projection = projection_from_flat({"display_name": "Ada"})
        assert projection.display_name == "Ada"
        assert projection.emails is None
        assert projection.to_update().model_fields_set == {"display_name"}

    def test_cleared_values_become_empty_lists(self):
        projection = projection_from_flat({"email": None, "phone": "+1 555"})
        assert projection.emails == []
        assert projection.phones[0].value == "+1 555"
        assert projection.phones[0].primary is True


def test_schema_properties_exclude_title():
    schema = notion_schema_properties()
    assert "Name" not in schema
    assert schema["Email"] == {"email": {}}
    assert schema["Notes"] == {"rich_text": {}}
