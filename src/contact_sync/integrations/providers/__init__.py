"""Concrete provider adapters.

- GoogleContactsAdapter: Google People API via service account delegation
- OutlookContactsAdapter: Microsoft Graph contacts via app-only token
- NotionAdapter: Notion databases as tag-routed containers
"""

from src.contact_sync.integrations.providers.google import GoogleContactsAdapter
from src.contact_sync.integrations.providers.notion import NotionAdapter
from src.contact_sync.integrations.providers.outlook import OutlookContactsAdapter

__all__ = [
    "GoogleContactsAdapter",
    "NotionAdapter",
    "OutlookContactsAdapter",
]
