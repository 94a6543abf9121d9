"""Whole-record last-write-wins conflict resolution.

Pure function of three timestamps; no I/O, no clock reads. Given the local
contact's updated_at, the external record's last-modified time and the
link's last_synced_at watermark, decides whether to push, pull or do nothing.
"""

from __future__ import annotations

from datetime import datetime, timezone

from src.contact_sync.integrations.schemas import ConflictResolution, SyncAction


def _as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC so comparisons never mix awareness."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_conflict(
    local_updated_at: datetime,
    external_last_modified: datetime | None,
    last_synced_at: datetime | None,
) -> ConflictResolution:
    """Decide the sync direction for one (contact, external record) pair.

    Rules:
    - No watermark: both sides count as changed, so a first sync never
      resolves to NO_ACTION.
    - Only local changed since the watermark: push.
    - Only external changed: pull.
    - Both changed: the newer timestamp wins; ties go to the external side,
      and an external record without a timestamp loses.
    - Neither changed: no action.

    Args:
        local_updated_at: Local contact's updated_at.
        external_last_modified: Provider's last-modified time, if reported.
        last_synced_at: Link watermark, None before the first success.

    Returns:
        ConflictResolution with the chosen action and a human-readable reason.
    """
    local = _as_utc(local_updated_at)
    external = _as_utc(external_last_modified)
    synced = _as_utc(last_synced_at)

    if synced is None:
        local_changed = True
        external_changed = True
    else:
        local_changed = local > synced
        external_changed = external is not None and external > synced

    if local_changed and external_changed:
        if external is None:
            return ConflictResolution(
                action=SyncAction.PUSH_LOCAL,
                reason="Both changed; external has no modification time, local wins",
            )
        if external >= local:
            return ConflictResolution(
                action=SyncAction.PULL_EXTERNAL,
                reason="Both changed; external is newer or equal, external wins",
            )
        return ConflictResolution(
            action=SyncAction.PUSH_LOCAL,
            reason="Both changed; local is newer, local wins",
        )

    if local_changed:
        return ConflictResolution(
            action=SyncAction.PUSH_LOCAL,
            reason="Local changed since last sync",
        )

    if external_changed:
        return ConflictResolution(
            action=SyncAction.PULL_EXTERNAL,
            reason="External changed since last sync",
        )

    return ConflictResolution(
        action=SyncAction.NO_ACTION,
        reason="No changes since last sync",
    )
