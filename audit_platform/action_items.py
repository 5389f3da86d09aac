"""
audit_platform/action_items.py
==============================
Follow-up tasks derived from an analysis, merged with user-edited items.

Derivation runs every time periods or the analysis change, so it must be
idempotent: an item is added only when no existing item, and no item added
earlier in the same pass, has the same trimmed case-insensitive title.
"""
from __future__ import annotations
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .types import ActionItem, DocumentAnalysis, Priority

AnalysisLike = Union[DocumentAnalysis, Mapping[str, Any]]
ItemLike = Union[ActionItem, Mapping[str, Any]]

DEFAULT_OWNER = "Auditor"

# (path into the analysis JSON, title prefix, priority), in derivation order
FINDING_RULES: Tuple[Tuple[Tuple[str, ...], str, Priority], ...] = (
    (("complianceAndRisk", "missingOrInconsistent"), "Resolve:", "High"),
    (("complianceAndRisk", "unusualTransactions"), "Investigate unusual transaction:", "High"),
    (("complianceAndRisk", "nonComplianceNotes"), "Address non-compliance:", "High"),
    (("anomalies", "notes"), "Investigate anomaly:", "High"),
    (("aiSuggestions",), "Follow up:", "Medium"),
    (("risks",), "Mitigate risk:", "High"),
    (("opportunities",), "Explore opportunity:", "Low"),
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _as_dict(analysis: AnalysisLike) -> Mapping[str, Any]:
    if isinstance(analysis, DocumentAnalysis):
        return analysis.to_dict()
    return analysis or {}


def _as_item(item: ItemLike) -> ActionItem:
    return item if isinstance(item, ActionItem) else ActionItem.from_dict(item)


def _entries(analysis: Mapping[str, Any], path: Tuple[str, ...]) -> List[Any]:
    node: Any = analysis
    for key in path:
        if not isinstance(node, Mapping):
            return []
        node = node.get(key)
    return list(node) if isinstance(node, list) else []


def _entry_text(entry: Any) -> Optional[str]:
    """Text of a finding; suggestions may arrive as {"question": ...} objects."""
    if isinstance(entry, Mapping):
        entry = entry.get("question")
    if entry is None or isinstance(entry, (dict, list)):
        return None
    text = str(entry).strip()
    return text or None


def derive_action_items(
    analysis: AnalysisLike,
    existing: Iterable[ItemLike],
    id_factory: Callable[[], str] = _new_id,
) -> List[ActionItem]:
    """New items for every finding whose title is not already tracked."""
    payload = _as_dict(analysis)
    seen = {_as_item(it).dedup_key for it in existing}
    derived: List[ActionItem] = []

    for path, prefix, priority in FINDING_RULES:
        for entry in _entries(payload, path):
            text = _entry_text(entry)
            if text is None:
                continue
            title = f"{prefix} {text}"
            key = title.strip().lower()
            if key in seen:
                continue
            seen.add(key)
            derived.append(ActionItem(
                id=id_factory(), title=title, owner=DEFAULT_OWNER,
                priority=priority, completed=False,
            ))
    return derived


def merge_action_items(
    analysis: AnalysisLike,
    existing: Iterable[ItemLike],
    id_factory: Callable[[], str] = _new_id,
) -> List[ActionItem]:
    """Existing items (order and edits untouched) followed by newly derived ones."""
    current = [_as_item(it) for it in existing]
    return current + derive_action_items(analysis, current, id_factory)


# ─── Manual Edits ─────────────────────────────────────────────────────────────

def new_action_item(title: str = "New action item", priority: Priority = "Medium",
                    owner: str = DEFAULT_OWNER) -> ActionItem:
    return ActionItem(id=_new_id(), title=title, owner=owner, priority=priority)


def add_action_item(items: Iterable[ItemLike], item: Optional[ActionItem] = None) -> List[ActionItem]:
    return [_as_item(it) for it in items] + [item or new_action_item()]


def update_action_item(items: Iterable[ItemLike], item_id: str,
                       changes: Mapping[str, Any]) -> List[ActionItem]:
    """Apply a partial update to the item with ``item_id``; the id itself is immutable."""
    out: List[ActionItem] = []
    for it in items:
        item = _as_item(it)
        if item.id == item_id:
            merged: Dict[str, Any] = {**item.to_dict(), **dict(changes), "id": item.id}
            item = ActionItem.from_dict(merged)
        out.append(item)
    return out


def remove_action_item(items: Iterable[ItemLike], item_id: str) -> List[ActionItem]:
    return [item for item in (_as_item(it) for it in items) if item.id != item_id]


def items_to_dicts(items: Iterable[ItemLike]) -> List[Dict[str, Any]]:
    return [_as_item(it).to_dict() for it in items]
