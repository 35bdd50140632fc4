"""
Sibling ordering and folder-tree helpers.

Pure functions over plain record dicts, shared by the remote and local paths
so both compute identical orders:

- siblings share (project_id, parent_id) for folders and
  (project_id, folder_id) for diagrams
- after any create, delete, move or reorder a sibling scope holds exactly
  the sort orders 0..N-1
"""

from collections import deque
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set


def _order_of(row: Mapping[str, Any]) -> int:
    value = row.get('sort_order')
    return value if isinstance(value, int) else 0


def sort_key(row: Mapping[str, Any]):
    """Listing order: sort_order, then creation time, then id."""
    return (_order_of(row), str(row.get('created_at') or ''), str(row.get('id') or ''))


def sort_records(rows: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    return sorted(rows, key=sort_key)


def in_scope(row: Mapping[str, Any], project_id: str, parent_field: str,
             parent_id: Optional[str]) -> bool:
    return row.get('project_id') == project_id and row.get(parent_field) == parent_id


def next_sort_order(siblings: Iterable[Mapping[str, Any]]) -> int:
    """max(sort_order) + 1 over siblings, 0 when there are none."""
    orders = [_order_of(row) for row in siblings]
    return max(orders) + 1 if orders else 0


def dense_ranks(siblings: Iterable[Mapping[str, Any]],
                requested: Optional[Mapping[str, float]] = None) -> Dict[str, int]:
    """
    Re-rank one sibling scope to 0..N-1.

    Rows named in requested are placed by their requested order and win ties
    against rows keeping their current order; the rank is otherwise stable
    (current order, creation time, id).

    Returns:
        Mapping id -> new sort_order for every sibling.
    """
    requested = requested or {}

    def rank_key(row):
        row_id = row.get('id')
        if row_id in requested:
            return (requested[row_id], 0) + sort_key(row)
        return (_order_of(row), 1) + sort_key(row)

    ordered = sorted(siblings, key=rank_key)
    return {row.get('id'): position for position, row in enumerate(ordered)}


def changed_ranks(siblings: List[Mapping[str, Any]],
                  requested: Optional[Mapping[str, float]] = None) -> Dict[str, int]:
    """Like dense_ranks, but only the ids whose sort_order actually changes."""
    current = {row.get('id'): row.get('sort_order') for row in siblings}
    return {
        row_id: rank
        for row_id, rank in dense_ranks(siblings, requested).items()
        if current.get(row_id) != rank
    }


def collect_descendants(folders: Iterable[Mapping[str, Any]], folder_id: str) -> Set[str]:
    """Ids of every transitive descendant of folder_id (the folder itself excluded)."""
    children: Dict[Optional[str], List[str]] = {}
    for folder in folders:
        children.setdefault(folder.get('parent_id'), []).append(folder.get('id'))

    found: Set[str] = set()
    queue = deque(children.get(folder_id, []))
    while queue:
        current = queue.popleft()
        if current in found or current == folder_id:
            continue
        found.add(current)
        queue.extend(children.get(current, []))
    return found


def validate_folder_hierarchy(folders: Iterable[Mapping[str, Any]], folder_id: str,
                              new_parent_id: Optional[str]) -> bool:
    """
    Whether moving folder_id under new_parent_id keeps the tree acyclic.

    Moving to the root is always valid; moving a folder under itself or any of
    its transitive descendants is not.
    """
    if new_parent_id is None:
        return True
    if new_parent_id == folder_id:
        return False
    return new_parent_id not in collect_descendants(list(folders), folder_id)


def build_folder_path(folders: Iterable[Mapping[str, Any]], folder_id: str) -> List[str]:
    """Folder names from the root down to folder_id; empty when the id is unknown."""
    by_id = {folder.get('id'): folder for folder in folders}
    names: List[str] = []
    seen: Set[str] = set()
    current = by_id.get(folder_id)
    while current is not None and current.get('id') not in seen:
        seen.add(current.get('id'))
        names.append(current.get('name') or '')
        current = by_id.get(current.get('parent_id'))
    names.reverse()
    return names
