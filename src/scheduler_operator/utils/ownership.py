from __future__ import annotations

from typing import Any


def controller_owner_uid(obj: dict[str, Any]) -> str | None:
    """Return the uid of the controlling owner reference, if any."""
    metadata = obj.get("metadata") or {}
    for ref in metadata.get("ownerReferences") or []:
        if ref.get("controller"):
            return ref.get("uid")
    return None


def is_owned_by(obj: dict[str, Any], owner_uid: str) -> bool:
    """Whether the object's controller owner reference carries ``owner_uid``."""
    return bool(owner_uid) and controller_owner_uid(obj) == owner_uid


def check_adoptable(obj: dict[str, Any], owner_uid: str) -> tuple[bool, str]:
    """Check whether an existing child may be overwritten by the given owner.

    Returns:
        Tuple of (can_adopt: bool, reason: str)
    """
    existing_uid = controller_owner_uid(obj)
    if existing_uid is None:
        return True, "no controller owner reference"
    if existing_uid == owner_uid:
        return True, "matching owner UID"
    return False, f"controlled by a different owner: existing={existing_uid}, current={owner_uid}"
