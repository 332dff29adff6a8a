"""
Entity store client over the Django ORM.

Rows are plain JSON-safe dicts keyed by column (foreign keys appear as
``<name>_id``).  Every successful write publishes a change event on the
table's feed once the surrounding transaction commits, so subscribers
never observe uncommitted state.  ``update`` is a compare-and-set: the
filters express the expected current state and the returned list holds
only the rows that actually changed.
"""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Sequence

from asgiref.sync import sync_to_async
from django.core.serializers.json import DjangoJSONEncoder
from django.db import InterfaceError, OperationalError, connection, transaction
from django.utils import timezone

from records.exceptions import StoreUnavailable
from records.models import Appointment, InternshipPeriod, Notification, Patient, Treatment, User
from records.services.feed import ChangeFeed

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

USER_COLUMNS = (
    'id', 'username', 'first_name', 'last_name', 'email', 'role', 'is_approved',
    'is_active', 'approved_by_id', 'approved_at', 'mobile', 'university', 'city',
    'class_year', 'working_days', 'date_joined', 'updated_at',
)

TABLES = {
    'users': (User, USER_COLUMNS, ('-date_joined', '-id')),
    'patients': (Patient, None, ('-created_at', '-id')),
    'treatments': (Treatment, None, ('-created_at', '-id')),
    'internships': (InternshipPeriod, None, ('-start_date', '-id')),
    'appointments': (Appointment, None, ('start_time', 'id')),
    'notifications': (Notification, None, ('-created_at', '-id')),
}


def to_row(values: Dict[str, Any]) -> Row:
    """Make an ORM values() dict safe for JSON and channel layers."""
    return json.loads(json.dumps(values, cls=DjangoJSONEncoder))


@contextmanager
def _guard(op: str, table: str):
    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        logger.warning("Store %s on %s failed: %s", op, table, exc)
        raise StoreUnavailable(f'{op} on {table} failed: {exc}') from exc


class EntityStore:
    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed or ChangeFeed()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _table(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f'unknown table: {table}') from None

    def _columns(self, table: str) -> Sequence[str]:
        model, columns, _ = self._table(table)
        return columns or [f.attname for f in model._meta.concrete_fields]

    def _rows(self, table: str, qs) -> List[Row]:
        return [to_row(v) for v in qs.values(*self._columns(table))]

    def _emit(self, table: str, kind: str, new: Optional[Row] = None, old: Optional[Row] = None) -> None:
        feed = self.feed

        def _send():
            try:
                feed.publish(feed.stamp(table, kind, new=new, old=old))
            except Exception:
                logger.exception("Change feed publish failed for %s %s", table, kind)

        transaction.on_commit(_send)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def select(self, table: str, filters: Optional[Dict[str, Any]] = None, *,
               order_by: Optional[Iterable[str]] = None, limit: Optional[int] = None) -> List[Row]:
        model, _, default_order = self._table(table)
        with _guard('select', table):
            qs = model.objects.filter(**(filters or {})).order_by(*(order_by or default_order))
            if limit:
                qs = qs[:limit]
            return self._rows(table, qs)

    def get(self, table: str, pk: Any) -> Optional[Row]:
        rows = self.select(table, {'pk': pk}, limit=1)
        return rows[0] if rows else None

    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        model, _, _ = self._table(table)
        with _guard('count', table):
            return model.objects.filter(**(filters or {})).count()

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def insert(self, table: str, row: Dict[str, Any]) -> Row:
        model, _, _ = self._table(table)
        with _guard('insert', table):
            with transaction.atomic():
                obj = model.objects.create(**row)
                new = self._rows(table, model.objects.filter(pk=obj.pk))[0]
                self._emit(table, 'insert', new=new)
        return new

    def insert_many(self, table: str, rows: Sequence[Dict[str, Any]]) -> List[Row]:
        """Insert ``rows`` in one batch and return their post-images."""
        if not rows:
            return []
        model, _, _ = self._table(table)
        with _guard('insert_many', table):
            with transaction.atomic():
                if connection.features.can_return_rows_from_bulk_insert:
                    objs = model.objects.bulk_create([model(**r) for r in rows])
                else:
                    objs = [model.objects.create(**r) for r in rows]
                created = self._rows(table, model.objects.filter(pk__in=[o.pk for o in objs]).order_by('pk'))
                for new in created:
                    self._emit(table, 'insert', new=new)
        return created

    def emit_insert(self, table: str, pk: Any) -> Optional[Row]:
        """Publish an insert for a row created outside the store (e.g. create_user)."""
        new = self.get(table, pk)
        if new is not None:
            self._emit(table, 'insert', new=new)
        return new

    def update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> List[Row]:
        model, _, _ = self._table(table)
        patch = dict(patch)
        if any(f.name == 'updated_at' for f in model._meta.concrete_fields):
            patch.setdefault('updated_at', timezone.now())
        with _guard('update', table):
            with transaction.atomic():
                locked = list(
                    model.objects.select_for_update().filter(**filters).values_list('pk', flat=True)
                )
                if not locked:
                    return []
                before = {r['id']: r for r in self._rows(table, model.objects.filter(pk__in=locked))}
                model.objects.filter(pk__in=locked).update(**patch)
                after = self._rows(table, model.objects.filter(pk__in=locked).order_by('pk'))
                for new in after:
                    self._emit(table, 'update', new=new, old=before.get(new['id']))
        return after

    def delete(self, table: str, filters: Dict[str, Any]) -> List[Row]:
        model, _, _ = self._table(table)
        with _guard('delete', table):
            with transaction.atomic():
                qs = model.objects.select_for_update().filter(**filters)
                gone = self._rows(table, qs)
                if gone:
                    model.objects.filter(pk__in=[r['id'] for r in gone]).delete()
                for old in gone:
                    self._emit(table, 'delete', old=old)
        return gone

    # ------------------------------------------------------------------
    # async twins
    # ------------------------------------------------------------------
    async def aselect(self, table, filters=None, **kwargs):
        return await sync_to_async(self.select)(table, filters, **kwargs)

    async def aget(self, table, pk):
        return await sync_to_async(self.get)(table, pk)

    async def ainsert(self, table, row):
        return await sync_to_async(self.insert)(table, row)

    async def ainsert_many(self, table, rows):
        return await sync_to_async(self.insert_many)(table, rows)

    async def aupdate(self, table, filters, patch):
        return await sync_to_async(self.update)(table, filters, patch)

    async def adelete(self, table, filters):
        return await sync_to_async(self.delete)(table, filters)


_store: Optional[EntityStore] = None


def get_store() -> EntityStore:
    global _store
    if _store is None:
        _store = EntityStore()
    return _store
