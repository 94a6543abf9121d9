"""Pydantic schemas for local contacts and tags."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ContactEmail(BaseModel):
    value: str
    label: str | None = None
    primary: bool = False


class ContactPhone(BaseModel):
    value: str
    label: str | None = None
    primary: bool = False


class ContactAddress(BaseModel):
    """Postal address; formatted_value is the single-line rendering."""

    label: str | None = None
    primary: bool = False
    formatted_value: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class ContactCreate(BaseModel):
    """Payload for creating a contact."""

    display_name: str
    first_name: str | None = None
    last_name: str | None = None
    job_title: str | None = None
    notes: str | None = None
    emails: list[ContactEmail] = Field(default_factory=list)
    phones: list[ContactPhone] = Field(default_factory=list)
    addresses: list[ContactAddress] = Field(default_factory=list)
    tag_ids: list[str] = Field(default_factory=list)


class ContactUpdate(BaseModel):
    """Partial update; only fields explicitly set are written."""

    display_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    job_title: str | None = None
    notes: str | None = None
    emails: list[ContactEmail] | None = None
    phones: list[ContactPhone] | None = None
    addresses: list[ContactAddress] | None = None


class ContactRead(BaseModel):
    id: str
    display_name: str
    first_name: str | None = None
    last_name: str | None = None
    job_title: str | None = None
    notes: str | None = None
    emails: list[ContactEmail] = Field(default_factory=list)
    phones: list[ContactPhone] = Field(default_factory=list)
    addresses: list[ContactAddress] = Field(default_factory=list)
    tag_ids: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @property
    def primary_email(self) -> str | None:
        return _primary(self.emails)

    @property
    def primary_phone(self) -> str | None:
        return _primary(self.phones)

    @property
    def primary_address(self) -> ContactAddress | None:
        if not self.addresses:
            return None
        return next((a for a in self.addresses if a.primary), self.addresses[0])


class TagRead(BaseModel):
    id: str
    name: str
    color: str | None = None


def _primary(entries: list[ContactEmail] | list[ContactPhone]) -> str | None:
    if not entries:
        return None
    chosen = next((e for e in entries if e.primary), entries[0])
    return chosen.value


def representable_entries(entries: list, capacity: int) -> list:
    """The entries a provider holding at most ``capacity`` of them receives.

    Primary entries come first, otherwise list order is kept.
    """
    return sorted(entries, key=lambda e: not e.primary)[:capacity]


def _entry_key(entry: BaseModel) -> tuple:
    return tuple(sorted(entry.model_dump(exclude={"primary", "label"}).items()))


def merge_capped_entries(local: list, pulled: list, capacity: int) -> list:
    """Combine entries pulled from a capped provider with the local list.

    The pulled entries replace the ones the provider could hold. Local
    entries beyond its capacity are kept after them, demoted to non-primary
    when the pull supplied a primary of its own.
    """
    held = {id(e) for e in representable_entries(local, capacity)}
    pulled_keys = {_entry_key(e) for e in pulled}
    kept = [
        e.model_copy(update={"primary": False}) if pulled else e
        for e in local
        if id(e) not in held and _entry_key(e) not in pulled_keys
    ]
    return list(pulled) + kept
