"""
Menu snapshots - point-in-time copies of a venue's extracted menu.

Each persist of extracted dishes writes a MenuSnapshot and diffs it against
the previous one. Only tracked dishes (those carrying a product tag) produce
change entries:

    {"change_type": "dish_added" | "dish_removed" | "price_change" | "dish_modified",
     "dish_name": ..., "product_tag": ..., "old_value": ..., "new_value": ...}

Dishes are matched across snapshots by case-folded name.
"""

import hashlib
import json
from typing import Any, Dict, Iterable, List, Optional

DISH_ADDED = "dish_added"
DISH_REMOVED = "dish_removed"
PRICE_CHANGE = "price_change"
DISH_MODIFIED = "dish_modified"


def dish_entry(dish) -> Dict[str, Any]:
    """JSON-safe snapshot entry for a DishRecord."""
    entry = {
        "name": dish.name,
        "description": dish.description or "",
        "price": str(dish.price.amount) if dish.price else "",
        "currency": dish.price.currency if dish.price else "",
        "product_tag": dish.product_tag or "",
    }
    entry["hash"] = dish_hash(entry)
    return entry


def dish_hash(entry: Dict[str, Any]) -> str:
    normalized = {
        "name": entry["name"].strip().lower(),
        "description": (entry.get("description") or "").strip().lower(),
        "price": entry.get("price") or "",
        "product_tag": entry.get("product_tag") or "",
    }
    return hashlib.md5(json.dumps(normalized, sort_keys=True).encode("utf-8")).hexdigest()


def menu_hash(entries: Iterable[Dict[str, Any]]) -> str:
    return hashlib.md5(",".join(sorted(e["hash"] for e in entries)).encode("utf-8")).hexdigest()


def _change(change_type, entry, old_value=None, new_value=None) -> Dict[str, Any]:
    return {
        "change_type": change_type,
        "dish_name": entry["name"],
        "product_tag": entry.get("product_tag", ""),
        "old_value": old_value,
        "new_value": new_value,
    }


def compare_menus(
    before: Optional[List[Dict[str, Any]]], after: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """
    Changes to tracked dishes between two snapshot dish lists.

    With no previous snapshot every tracked dish counts as added.
    """
    if before is None:
        return [_change(DISH_ADDED, e, new_value=e["name"]) for e in after if e.get("product_tag")]

    if menu_hash(before) == menu_hash(after):
        return []

    before_by_name = {e["name"].strip().lower(): e for e in before}
    after_by_name = {e["name"].strip().lower(): e for e in after}
    changes = []

    for key, entry in before_by_name.items():
        if key not in after_by_name and entry.get("product_tag"):
            changes.append(_change(DISH_REMOVED, entry, old_value=entry["name"]))

    for key, entry in after_by_name.items():
        if key not in before_by_name and entry.get("product_tag"):
            changes.append(_change(DISH_ADDED, entry, new_value=entry["name"]))

    for key, old in before_by_name.items():
        new = after_by_name.get(key)
        if new is None or not (old.get("product_tag") or new.get("product_tag")):
            continue
        if old.get("price") != new.get("price"):
            changes.append(_change(PRICE_CHANGE, new, old_value=old.get("price"), new_value=new.get("price")))
        elif old["hash"] != new["hash"]:
            changes.append(_change(DISH_MODIFIED, new))

    return changes


def summarize_changes(changes: List[Dict[str, Any]]) -> Dict[str, int]:
    summary = {DISH_ADDED: 0, DISH_REMOVED: 0, PRICE_CHANGE: 0, DISH_MODIFIED: 0}
    for change in changes:
        summary[change["change_type"]] += 1
    return summary


def take_menu_snapshot(venue, dishes):
    """Write a snapshot of `dishes` for `venue`, diffed against its latest one."""
    from scout.models import MenuSnapshot

    entries = [dish_entry(d) for d in dishes]
    previous = venue.menu_snapshots.order_by("-taken_at", "-pk").first()
    changes = compare_menus(previous.dishes if previous else None, entries)

    return MenuSnapshot.objects.create(
        venue=venue,
        dishes=entries,
        dish_count=len(entries),
        tracked_dish_count=sum(1 for e in entries if e["product_tag"]),
        menu_hash=menu_hash(entries),
        changes=changes,
    )
