from __future__ import annotations

from asset_buddy.domain.models import AssetType

STAFF_ASSIGNABLE_TYPES: frozenset[AssetType] = frozenset(
    {AssetType.LAPTOP, AssetType.DESKTOP, AssetType.SYSTEM_UNIT}
)
ACCESSORIES_ALLOWED_TYPES: frozenset[AssetType] = frozenset({AssetType.LAPTOP})

REQUIRED_TERMS_COUNT = 5
NOTE_SEPARATOR = " | "


def is_staff_assignable_type(asset_type: AssetType) -> bool:
    return asset_type in STAFF_ASSIGNABLE_TYPES


def is_accessories_allowed_type(asset_type: AssetType) -> bool:
    return asset_type in ACCESSORIES_ALLOWED_TYPES


def append_note(existing: str | None, note: str | None) -> str | None:
    if note is None or not note.strip():
        return existing
    if existing is None or not existing.strip():
        return note.strip()
    return f"{existing}{NOTE_SEPARATOR}{note.strip()}"
