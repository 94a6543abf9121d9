"""Local contact and tag storage consumed by the sync engine.

Provides SQLAlchemy models (Contact, Tag, ContactTag), Pydantic schemas for
the contact shape (multi-valued emails, phones, addresses) and
ContactRepository for async CRUD. Sync policy lives in
src.contact_sync.integrations; this package only stores data.
"""
