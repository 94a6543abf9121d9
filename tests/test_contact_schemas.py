"""Tests for multi-valued field helpers used with capped providers."""

from __future__ import annotations

from src.contact_sync.contacts.schemas import (
    ContactAddress,
    ContactEmail,
    merge_capped_entries,
    representable_entries,
)


def _emails(*values: str, primary: str | None = None) -> list[ContactEmail]:
    return [ContactEmail(value=v, primary=v == primary) for v in values]


class TestRepresentableEntries:
    def test_primary_first(self):
        emails = _emails("a@x.com", "b@x.com", "c@x.com", primary="c@x.com")
        assert [e.value for e in representable_entries(emails, 1)] == ["c@x.com"]

    def test_list_order_without_primary(self):
        emails = _emails("a@x.com", "b@x.com", "c@x.com", "d@x.com")
        assert [e.value for e in representable_entries(emails, 3)] == [
            "a@x.com",
            "b@x.com",
            "c@x.com",
        ]


class TestMergeCappedEntries:
    def test_secondary_entries_survive(self):
        local = _emails("work@x.com", "home@x.com", primary="work@x.com")
        pulled = _emails("work@x.com", primary="work@x.com")

        merged = merge_capped_entries(local, pulled, 1)

        assert [(e.value, e.primary) for e in merged] == [
            ("work@x.com", True),
            ("home@x.com", False),
        ]

    def test_pulled_duplicate_of_secondary_not_repeated(self):
        local = _emails("work@x.com", "home@x.com", primary="work@x.com")
        pulled = _emails("home@x.com", primary="home@x.com")

        merged = merge_capped_entries(local, pulled, 1)

        assert [(e.value, e.primary) for e in merged] == [("home@x.com", True)]

    def test_cleared_field_keeps_unheld_entries(self):
        local = _emails("work@x.com", "home@x.com", primary="work@x.com")

        merged = merge_capped_entries(local, [], 1)

        assert [e.value for e in merged] == ["home@x.com"]

    def test_addresses_compared_by_content(self):
        local = [
            ContactAddress(formatted_value="1 Main St", primary=True),
            ContactAddress(formatted_value="2 Side St", label="home"),
        ]
        pulled = [ContactAddress(formatted_value="1 Main St, Springfield", primary=True)]

        merged = merge_capped_entries(local, pulled, 1)

        assert [a.formatted_value for a in merged] == ["1 Main St, Springfield", "2 Side St"]
        assert merged[1].label == "home"
