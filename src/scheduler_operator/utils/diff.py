from __future__ import annotations

from typing import Any


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def owned_fields_equal(desired: Any, observed: Any) -> bool:
    """Structural equality restricted to the fields present in ``desired``.

    Keys the store adds on its own (defaults) are ignored. An empty value in
    ``desired`` matches an absent or empty value in ``observed``, so clearing a
    list is still detected as a change.
    """
    if isinstance(desired, dict):
        if not isinstance(observed, dict):
            return _is_empty(desired) and _is_empty(observed)
        for key, value in desired.items():
            other = observed.get(key)
            if _is_empty(value):
                if not _is_empty(other):
                    return False
                continue
            if not owned_fields_equal(value, other):
                return False
        return True
    if isinstance(desired, list):
        if not isinstance(observed, list):
            return _is_empty(desired) and _is_empty(observed)
        if len(desired) != len(observed):
            return False
        return all(owned_fields_equal(d, o) for d, o in zip(desired, observed))
    return desired == observed
