import asyncio

import pytest
from django.core.cache import cache

from records.exceptions import StoreUnavailable
from records.models import Patient, Treatment, User
from records.realtime.reconciler import filter_predicate

PASSWORD = 'Cl1nic#Pass'


@pytest.fixture(autouse=True)
def _clear_cache():
    # throttle counters live in the cache
    cache.clear()
    yield
    cache.clear()


def make_account(username, role='student', *, approved=True, active=True, **extra):
    return User.objects.create_user(
        username=username, password=PASSWORD, role=role,
        is_approved=approved, is_active=active, **extra,
    )


@pytest.fixture
def accounts(db):
    """One approved account per role plus an unapproved doctor."""
    return {
        'student': make_account('student1', 'student', first_name='Sam', last_name='Student'),
        'other_student': make_account('student2', 'student'),
        'doctor': make_account('doctor1', 'doctor', first_name='Dana', last_name='Doctor'),
        'admin': make_account('admin1', 'admin'),
        'supervisor': make_account('supervisor1', 'supervisor'),
        'pending_doctor': make_account('doctor2', 'doctor', approved=False),
    }


def make_patient(added_by, status='pending', **extra):
    fields = dict(first_name='Jane', last_name='Roe', phone='555-0100', medical_history='asthma')
    fields.update(extra)
    return Patient.objects.create(added_by=added_by, status=status, **fields)


def make_treatment(patient, student, approval_status='pending', status='planned', **extra):
    fields = dict(treatment_type='Filling', teeth_numbers=[16])
    fields.update(extra)
    return Treatment.objects.create(
        patient=patient, student=student, approval_status=approval_status, status=status, **fields,
    )


class FakeStore:
    """In-memory stand-in for EntityStore reads, with scripted outages."""

    def __init__(self, tables=None, *, failures=0, fail_writes=False):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.failures = failures
        self.fail_writes = fail_writes
        self.calls = 0
        self.before_return = None

    def select(self, table, filters=None, *, order_by=None, limit=None):
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise StoreUnavailable(f'select on {table} failed')
        match = filter_predicate(filters)
        rows = [dict(r) for r in self.tables.get(table, []) if match(r)]
        return rows[:limit] if limit else rows

    def get(self, table, pk):
        rows = self.select(table, {'id': pk})
        return rows[0] if rows else None

    def update(self, table, filters, patch):
        if self.fail_writes:
            raise StoreUnavailable(f'update on {table} failed')
        match = filter_predicate(filters)
        changed = []
        for row in self.tables.get(table, []):
            if match(row):
                row.update(patch)
                changed.append(dict(row))
        return changed

    async def aselect(self, table, filters=None, **kwargs):
        rows = self.select(table, filters, **kwargs)
        if self.before_return is not None:
            await self.before_return()
        return rows


async def wait_until(predicate, timeout=2.0):
    """Poll ``predicate`` while the event loop delivers feed messages."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError('condition not met in time')
        await asyncio.sleep(0.01)
