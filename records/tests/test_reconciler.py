import pytest

from records.realtime.reconciler import Reconciler, filter_predicate
from records.services.feed import ChangeEvent


def ev(kind, row, table='patients'):
    if kind == 'delete':
        return ChangeEvent(table=table, kind=kind, old=row)
    return ChangeEvent(table=table, kind=kind, new=row)


def ids(rows):
    return [r['id'] for r in rows]


def test_filter_predicate_equality_and_in():
    match = filter_predicate({'status': 'pending', 'added_by_id__in': [1, 2]})
    assert match({'status': 'pending', 'added_by_id': 2})
    assert not match({'status': 'approved', 'added_by_id': 2})
    assert not match({'status': 'pending', 'added_by_id': 5})
    assert filter_predicate({'pk': 4})({'id': 4})
    assert filter_predicate(None)({'anything': 1})


def test_filter_predicate_rejects_other_lookups():
    with pytest.raises(ValueError):
        filter_predicate({'created_at__gte': '2024-01-01'})


def test_insert_prepends_and_update_replaces_in_place():
    r = Reconciler()
    r.reset([{'id': 2, 'v': 'b'}, {'id': 1, 'v': 'a'}])
    assert r.apply(ev('insert', {'id': 3, 'v': 'c'}))
    assert ids(r.view()) == [3, 2, 1]
    assert r.apply(ev('update', {'id': 1, 'v': 'a2'}))
    assert r.view()[2] == {'id': 1, 'v': 'a2'}


def test_duplicate_events_are_idempotent():
    r = Reconciler()
    r.reset([{'id': 1, 'v': 'a'}])
    event = ev('update', {'id': 1, 'v': 'z'})
    assert r.apply(event)
    assert not r.apply(event)
    assert r.view() == [{'id': 1, 'v': 'z'}]


def test_row_leaves_and_enters_filtered_view():
    r = Reconciler(filter_predicate({'status': 'pending'}))
    r.reset([{'id': 1, 'status': 'pending'}, {'id': 2, 'status': 'approved'}])
    assert ids(r.view()) == [1]
    r.apply(ev('update', {'id': 1, 'status': 'approved'}))
    assert r.view() == []
    # a row that starts matching is treated like an insert
    r.apply(ev('update', {'id': 2, 'status': 'pending'}))
    assert ids(r.view()) == [2]


def test_delete_removes_and_unknown_delete_is_noop():
    r = Reconciler()
    r.reset([{'id': 1}])
    assert not r.apply(ev('delete', {'id': 9}))
    assert r.apply(ev('delete', {'id': 1}))
    assert r.view() == []


def test_overlay_is_cleared_by_feed_event():
    r = Reconciler(filter_predicate({'status': 'pending'}))
    r.reset([{'id': 1, 'status': 'pending'}, {'id': 2, 'status': 'pending'}])
    r.patch_locally(1, {'status': 'approved'})
    # optimistic change takes the row out of the pending list
    assert ids(r.view()) == [2]
    assert r.apply(ev('update', {'id': 1, 'status': 'approved'}))
    assert r.overlays == {}
    assert ids(r.view()) == [2]


def test_discarded_overlay_restores_row():
    r = Reconciler()
    r.reset([{'id': 1, 'is_read': False}])
    r.patch_locally(1, {'is_read': True})
    assert r.view()[0]['is_read'] is True
    assert r.discard_local(1)
    assert r.view()[0]['is_read'] is False
    assert not r.discard_local(1)


def test_reset_filters_snapshot_rows():
    r = Reconciler(filter_predicate({'user_id': 4}))
    r.reset([{'id': 1, 'user_id': 4}, {'id': 2, 'user_id': 5}])
    assert ids(r.view()) == [1]
