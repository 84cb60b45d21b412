"""Precedence rules used when folding configuration layers together."""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

Combinator = Callable[[Any, Any], Any]


def should_override(current: Any, incoming: Any) -> bool:
    """Return True when ``incoming`` may replace ``current``.

    An absent incoming value never wins, so a merge can fill or change a
    field but never clear it.
    """

    if incoming is None:
        return False
    return current is None or incoming != current


def override_scalar(current: Any, incoming: Any) -> Any:
    return incoming if should_override(current, incoming) else current


def override_collection(current: Optional[Sequence[Any]], incoming: Optional[Sequence[Any]]) -> Optional[Tuple[Any, ...]]:
    """Replace the whole collection; an empty incoming collection still wins."""

    if should_override(current, incoming):
        return tuple(incoming)  # type: ignore[arg-type]
    return tuple(current) if current is not None else None


def merge_mapping(current: Optional[Mapping[str, Any]], incoming: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Key-by-key merge where incoming entries win."""

    if incoming is None:
        return dict(current) if current is not None else None
    merged: Dict[str, Any] = dict(current or {})
    merged.update(incoming)
    return merged


# Fields a NodeConfig merge walks, in order. The legacy ``configuration``
# payload has no entry; it is rejected at parse time.
NODE_MERGE_RULES: Tuple[Tuple[str, Combinator], ...] = (
    # base fields
    ("host", override_scalar),
    ("port", override_scalar),
    ("max_session", override_scalar),
    ("debug", override_scalar),
    ("log", override_scalar),
    ("timeout", override_scalar),
    ("browser_timeout", override_scalar),
    ("custom", merge_mapping),
    # node fields
    ("capabilities", override_collection),
    ("down_polling_limit", override_scalar),
    ("hub", override_scalar),
    ("hub_host", override_scalar),
    ("hub_port", override_scalar),
    ("id", override_scalar),
    ("node_polling", override_scalar),
    ("node_status_check_timeout", override_scalar),
    ("proxy", override_scalar),
    ("register", override_scalar),
    ("register_cycle", override_scalar),
    ("remote_host", override_scalar),
    ("unregister_if_still_down_after", override_scalar),
    ("enable_platform_verification", override_scalar),
)


def merge_fields(current: Any, incoming: Any, rules: Sequence[Tuple[str, Combinator]] = NODE_MERGE_RULES) -> Dict[str, Any]:
    """Apply ``rules`` attribute by attribute and return the merged values."""

    return {
        name: combine(getattr(current, name), getattr(incoming, name))
        for name, combine in rules
    }
