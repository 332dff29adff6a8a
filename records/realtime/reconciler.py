"""
Keeps a local, filtered, ordered collection in step with change events.

One rule set for every live list: a row is in the collection exactly
when it matches the subscription filter.  Inserts and rows entering the
view are prepended (newest first), updates replace in place, and a row
that stops matching or is deleted is dropped.  Events carry post-images,
so applying the same event twice leaves the collection unchanged.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from records.services.feed import ChangeEvent

Row = Dict[str, Any]
Predicate = Callable[[Row], bool]


def filter_predicate(filters: Optional[Dict[str, Any]]) -> Predicate:
    """Build a row predicate from store-style equality filters.

    Supports ``field=value`` and ``field__in=[...]``; ``pk`` means ``id``.
    """
    checks = []
    for key, expected in (filters or {}).items():
        if key.endswith('__in'):
            name, allowed = key[:-4], set(expected)
            checks.append(lambda row, n=name, a=allowed: row.get('id' if n == 'pk' else n) in a)
        elif '__' in key:
            raise ValueError(f'unsupported live filter: {key}')
        else:
            checks.append(lambda row, n=key, v=expected: row.get('id' if n == 'pk' else n) == v)
    return lambda row: all(check(row) for check in checks)


class Reconciler:
    def __init__(self, predicate: Optional[Predicate] = None, key: str = 'id'):
        self.predicate = predicate or (lambda row: True)
        self.key = key
        self.items: List[Row] = []
        self.overlays: Dict[Any, Row] = {}

    def _index(self, k) -> Optional[int]:
        for i, row in enumerate(self.items):
            if row.get(self.key) == k:
                return i
        return None

    def _remove(self, k) -> bool:
        i = self._index(k)
        if i is None:
            return False
        del self.items[i]
        return True

    def _upsert(self, row: Row) -> bool:
        i = self._index(row.get(self.key))
        if i is None:
            self.items.insert(0, row)
            return True
        if self.items[i] == row:
            return False
        self.items[i] = row
        return True

    def reset(self, rows: List[Row]) -> None:
        """Replace the collection with a fresh snapshot; overlays are kept."""
        self.items = [dict(r) for r in rows if self.predicate(r)]

    def apply(self, event: ChangeEvent) -> bool:
        """Apply one event; returns True if the visible collection may have changed."""
        row = event.row
        if not row:
            return False
        k = row.get(self.key)
        had_overlay = self.overlays.pop(k, None) is not None
        if event.kind == 'delete':
            changed = self._remove(k)
        elif self.predicate(row):
            changed = self._upsert(dict(row))
        else:
            changed = self._remove(k)
        return changed or had_overlay

    def patch_locally(self, k, patch: Row) -> None:
        """Overlay an optimistic change until the feed reports on the row."""
        self.overlays[k] = dict(self.overlays.get(k, {}), **patch)

    def discard_local(self, k) -> bool:
        return self.overlays.pop(k, None) is not None

    def view(self) -> List[Row]:
        if not self.overlays:
            return list(self.items)
        out = []
        for row in self.items:
            patch = self.overlays.get(row.get(self.key))
            merged = dict(row, **patch) if patch else row
            if self.predicate(merged):
                out.append(merged)
        return out
