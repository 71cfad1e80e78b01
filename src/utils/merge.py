"""Field-level merge helpers.

Record types that support partial updates declare a per-field policy table
built from these functions, so every merge rule lives in exactly one place.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

MergeFn = Callable[[Any, Any], Any]


def replace(_old: Any, new: Any) -> Any:
    return new


def union_unique(old: Optional[Iterable[Any]], new: Optional[Iterable[Any]]) -> List[Any]:
    """Concatenate and de-duplicate, keeping first-seen order."""
    out: List[Any] = []
    for item in list(old or []) + list(new or []):
        if item not in out:
            out.append(item)
    return out


def append_capped(cap: int) -> MergeFn:
    """Append ``new`` after ``old`` and keep only the last ``cap`` items."""

    def _merge(old: Optional[Iterable[Any]], new: Optional[Iterable[Any]]) -> List[Any]:
        merged = list(old or []) + list(new or [])
        return merged[-cap:] if cap > 0 else []

    return _merge


def merge_keys(old: Optional[Mapping[str, Any]], new: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Shallow key merge; keys in ``new`` win."""
    out = dict(old or {})
    out.update(new or {})
    return out


def apply_policy(
    current: Mapping[str, Any],
    updates: Mapping[str, Any],
    policy: Mapping[str, MergeFn],
) -> Dict[str, Any]:
    """Merge ``updates`` into ``current`` field by field.

    Only fields named in ``policy`` are considered; unknown update keys are
    ignored and ``None`` values leave the current value untouched.
    """
    out = dict(current)
    for field_name, merge in policy.items():
        if field_name not in updates or updates[field_name] is None:
            continue
        out[field_name] = merge(current.get(field_name), updates[field_name])
    return out
