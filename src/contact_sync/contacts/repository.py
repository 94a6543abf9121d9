"""Contact repository: async CRUD for contacts and their tags.

Uses the session_factory callable pattern. JSON columns (emails, phones,
addresses) are serialized via Pydantic model_dump(mode="json") and
deserialized with model_validate().
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.contact_sync.contacts.models import ContactModel, ContactTagModel, TagModel
from src.contact_sync.contacts.schemas import (
    ContactAddress,
    ContactCreate,
    ContactEmail,
    ContactPhone,
    ContactRead,
    ContactUpdate,
    TagRead,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_contact(model: ContactModel, tag_ids: list[str]) -> ContactRead:
    """Convert ContactModel to ContactRead schema."""
    return ContactRead(
        id=str(model.id),
        display_name=model.display_name,
        first_name=model.first_name,
        last_name=model.last_name,
        job_title=model.job_title,
        notes=model.notes,
        emails=[ContactEmail.model_validate(e) for e in (model.emails or [])],
        phones=[ContactPhone.model_validate(p) for p in (model.phones or [])],
        addresses=[ContactAddress.model_validate(a) for a in (model.addresses or [])],
        tag_ids=tag_ids,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _dump_list(items: list) -> list[dict]:
    return [item.model_dump(mode="json") for item in items]


# ── Repository ──────────────────────────────────────────────────────────────


class ContactRepository:
    """Async CRUD operations for contacts and contact tags.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def _tag_ids(self, session: AsyncSession, contact_id: uuid.UUID) -> list[str]:
        stmt = select(ContactTagModel.tag_id).where(ContactTagModel.contact_id == contact_id)
        result = await session.execute(stmt)
        return [str(t) for t in result.scalars().all()]

    # ── Contacts ────────────────────────────────────────────────────────────

    async def create_contact(self, data: ContactCreate) -> ContactRead:
        """Create a contact and attach its initial tags.

        Args:
            data: ContactCreate schema with contact details.

        Returns:
            ContactRead with all persisted fields.
        """
        async for session in self._session_factory():
            model = ContactModel(
                display_name=data.display_name,
                first_name=data.first_name,
                last_name=data.last_name,
                job_title=data.job_title,
                notes=data.notes,
                emails=_dump_list(data.emails),
                phones=_dump_list(data.phones),
                addresses=_dump_list(data.addresses),
                updated_at=datetime.now(timezone.utc),
            )
            session.add(model)
            await session.flush()
            for tag_id in dict.fromkeys(data.tag_ids):
                session.add(ContactTagModel(contact_id=model.id, tag_id=uuid.UUID(tag_id)))
            await session.commit()
            await session.refresh(model)
            return _model_to_contact(model, list(dict.fromkeys(data.tag_ids)))

    async def get_contact(self, contact_id: str) -> ContactRead | None:
        """Get a contact by ID, or None if it does not exist."""
        async for session in self._session_factory():
            model = await session.get(ContactModel, uuid.UUID(contact_id))
            if model is None:
                return None
            return _model_to_contact(model, await self._tag_ids(session, model.id))

    async def list_contacts(self, tag_id: str | None = None) -> list[ContactRead]:
        """List contacts, optionally restricted to those carrying a tag.

        Args:
            tag_id: Tag UUID string. None returns every contact.

        Returns:
            List of ContactRead objects ordered by creation time.
        """
        async for session in self._session_factory():
            stmt = select(ContactModel).order_by(ContactModel.created_at)
            if tag_id is not None:
                stmt = stmt.join(
                    ContactTagModel, ContactTagModel.contact_id == ContactModel.id
                ).where(ContactTagModel.tag_id == uuid.UUID(tag_id))
            result = await session.execute(stmt)
            contacts = []
            for model in result.scalars().all():
                contacts.append(_model_to_contact(model, await self._tag_ids(session, model.id)))
            return contacts

    async def update_contact(self, contact_id: str, data: ContactUpdate) -> ContactRead | None:
        """Apply the explicitly set fields of a partial update.

        Always advances updated_at, even when no field value changes.

        Returns:
            Updated ContactRead, or None if the contact does not exist.
        """
        async for session in self._session_factory():
            model = await session.get(ContactModel, uuid.UUID(contact_id))
            if model is None:
                return None

            for field_name in data.model_fields_set:
                value = getattr(data, field_name)
                if field_name in ("emails", "phones", "addresses"):
                    value = _dump_list(value or [])
                setattr(model, field_name, value)
            model.updated_at = datetime.now(timezone.utc)

            await session.commit()
            await session.refresh(model)
            return _model_to_contact(model, await self._tag_ids(session, model.id))

    async def delete_contact(self, contact_id: str) -> bool:
        """Delete a contact. Links and tag associations cascade."""
        async for session in self._session_factory():
            result = await session.execute(
                delete(ContactModel).where(ContactModel.id == uuid.UUID(contact_id))
            )
            await session.commit()
            return result.rowcount > 0

    # ── Tags ────────────────────────────────────────────────────────────────

    async def get_tag(self, tag_id: str) -> TagRead | None:
        async for session in self._session_factory():
            model = await session.get(TagModel, uuid.UUID(tag_id))
            if model is None:
                return None
            return TagRead(id=str(model.id), name=model.name, color=model.color)

    async def add_tag(self, contact_id: str, tag_id: str) -> bool:
        """Attach a tag to a contact.

        Idempotent: attaching a tag the contact already carries is a no-op.
        Tag membership is not a synced field, so updated_at is left alone.

        Returns:
            True if the tag was newly attached.
        """
        async for session in self._session_factory():
            stmt = (
                pg_insert(ContactTagModel)
                .values(contact_id=uuid.UUID(contact_id), tag_id=uuid.UUID(tag_id))
                .on_conflict_do_nothing(index_elements=["contact_id", "tag_id"])
            )
            result = await session.execute(stmt)
            await session.commit()
            added = result.rowcount > 0
            if added:
                logger.info("contacts.tag_attached", contact_id=contact_id, tag_id=tag_id)
            return added
