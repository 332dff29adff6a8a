"""Live views: derivation, optimistic mutators and rollback."""
from types import SimpleNamespace

import pytest
from channels.layers import InMemoryChannelLayer

from conftest import FakeStore, wait_until
from records.exceptions import AlreadyDecided, IllegalTransition, StoreUnavailable, Unauthorized
from records.realtime.live import (
    AppointmentsView, DashboardView, InternshipsView, NotificationsView, PatientsView, UsersView, dashboard_summary,
)
from records.services.feed import ChangeFeed


def person(uid, role, approved=True):
    return SimpleNamespace(id=uid, username=f'{role}{uid}', role=role, is_approved=approved,
                           is_authenticated=True, is_superuser=False)


STUDENT = person(1, 'student')
DOCTOR = person(2, 'doctor')


def tables():
    return {
        'patients': [
            {'id': 12, 'first_name': 'Ann', 'status': 'pending', 'added_by_id': 1, 'medical_history': 'none'},
            {'id': 11, 'first_name': 'Jane', 'status': 'approved', 'added_by_id': 1, 'medical_history': 'asthma'},
            {'id': 10, 'first_name': 'Bob', 'status': 'pending', 'added_by_id': 5, 'medical_history': ''},
        ],
        'treatments': [
            {'id': 21, 'student_id': 1, 'status': 'in_progress', 'approval_status': 'approved'},
            {'id': 20, 'student_id': 1, 'status': 'planned', 'approval_status': 'pending'},
        ],
        'users': [
            {'id': 5, 'role': 'student', 'is_approved': False},
            {'id': 1, 'role': 'student', 'is_approved': True},
            {'id': 3, 'role': 'supervisor', 'is_approved': False},
        ],
        'notifications': [
            {'id': 31, 'user_id': 2, 'is_read': False},
            {'id': 30, 'user_id': 2, 'is_read': True},
            {'id': 29, 'user_id': 1, 'is_read': False},
        ],
        'internships': [
            {'id': 41, 'user_id': 1, 'status': 'in_progress', 'hours_completed': 40, 'total_required_hours': 160},
            {'id': 40, 'user_id': 1, 'status': 'completed', 'hours_completed': 160, 'total_required_hours': 160},
            {'id': 39, 'user_id': 5, 'status': 'pending', 'hours_completed': 0, 'total_required_hours': 160},
        ],
        'appointments': [
            {'id': 52, 'student_id': 1, 'status': 'scheduled', 'start_time': '2026-03-02T10:00:00+00:00'},
            {'id': 51, 'student_id': 1, 'status': 'cancelled', 'start_time': '2026-03-01T09:00:00+00:00'},
            {'id': 50, 'student_id': 5, 'status': 'confirmed', 'start_time': '2026-03-01T08:00:00+00:00'},
        ],
    }


@pytest.fixture
def layer():
    return InMemoryChannelLayer()


@pytest.fixture
def feed(layer):
    return ChangeFeed(channel_layer=layer)


def test_dashboard_summary_counts():
    summary = dashboard_summary(
        patients=tables()['patients'], treatments=tables()['treatments'],
        users=None, notifications=tables()['notifications'],
    )
    assert summary['patients'] == 3 and summary['pendingPatients'] == 2
    assert summary['pendingTreatments'] == 1 and summary['completedTreatments'] == 0
    assert summary['pendingUsers'] is None
    assert summary['unreadNotifications'] == 2


@pytest.mark.asyncio
async def test_doctor_dashboard_follows_the_feed(layer, feed):
    view = DashboardView(DOCTOR, store=FakeStore(tables()), channel_layer=layer)
    states = []
    view.add_listener(states.append)
    await view.start()
    try:
        s = view.state
        assert s['role'] == 'doctor' and s['loading'] is False and s['error'] is None
        assert s['summary']['pendingPatients'] == 2
        assert s['summary']['pendingUsers'] == 1  # doctors only manage students
        assert s['notifications']['unreadCount'] == 1

        await feed.apublish(feed.stamp('patients', 'update', new=dict(tables()['patients'][0], status='approved')))
        await wait_until(lambda: view.state['summary']['pendingPatients'] == 1)
        assert states[-1] is view.state
    finally:
        await view.close()


@pytest.mark.asyncio
async def test_student_views_are_scoped(layer, feed):
    view = DashboardView(STUDENT, store=FakeStore(tables()), channel_layer=layer)
    await view.start()
    try:
        assert 'users' not in view.children
        patients = view.state['patients']['items']
        assert [p['id'] for p in patients] == [12, 11]
        # pending patient is summary only
        assert 'medical_history' not in patients[0]
        assert patients[1]['medical_history'] == 'asthma'
        # pending treatment proposals are not shown to the student
        assert [t['id'] for t in view.state['treatments']['items']] == [21]

        await feed.apublish(feed.stamp('treatments', 'update', new={
            'id': 20, 'student_id': 1, 'status': 'planned', 'approval_status': 'approved'}))
        await wait_until(lambda: len(view.state['treatments']['items']) == 2)
    finally:
        await view.close()


@pytest.mark.asyncio
async def test_optimistic_approve_is_confirmed_by_feed(layer, feed):
    seen_during_call = []

    def transition(entity, pk, action, actor, **params):
        seen_during_call.append([p['status'] for p in view.patients.rows if p['id'] == pk])
        return {'id': pk, 'status': 'approved'}

    view = PatientsView(DOCTOR, store=FakeStore(tables()), channel_layer=layer, transition=transition)
    await view.start()
    try:
        await view.approve(12)
        assert seen_during_call == [['approved']]
        assert view.patients.reconciler.overlays == {12: {'status': 'approved'}}

        await feed.apublish(feed.stamp('patients', 'update', new=dict(tables()['patients'][0], status='approved')))
        await wait_until(lambda: not view.patients.reconciler.overlays)
        assert view.state['counts']['approved'] == 2
    finally:
        await view.close()


@pytest.mark.asyncio
async def test_rejected_transition_rolls_back(layer):
    def transition(entity, pk, action, actor, **params):
        raise AlreadyDecided('patient 12 is already rejected', current='rejected')

    view = PatientsView(DOCTOR, store=FakeStore(tables()), channel_layer=layer, transition=transition)
    await view.start()
    try:
        with pytest.raises(AlreadyDecided):
            await view.approve(12)
        assert view.patients.reconciler.overlays == {}
        assert view.state['counts']['pending'] == 2
    finally:
        await view.close()


@pytest.mark.asyncio
async def test_mark_all_as_read_rolls_back_on_store_failure(layer):
    store = FakeStore(tables(), fail_writes=True)
    view = NotificationsView(DOCTOR, store=store, channel_layer=layer)
    await view.start()
    try:
        with pytest.raises(StoreUnavailable):
            await view.mark_all_as_read()
        assert view.state['unreadCount'] == 1
    finally:
        await view.close()


@pytest.mark.asyncio
async def test_mark_all_as_read_clears_unread(layer):
    view = NotificationsView(DOCTOR, store=FakeStore(tables()), channel_layer=layer)
    await view.start()
    try:
        assert await view.mark_all_as_read() == 1
        assert view.state['unreadCount'] == 0
        assert await view.mark_all_as_read() == 0
    finally:
        await view.close()


def test_user_management_needs_manager_role(layer):
    with pytest.raises(Unauthorized):
        UsersView(person(3, 'supervisor'), store=FakeStore(tables()), channel_layer=layer)


@pytest.mark.asyncio
async def test_dispatch_routes_and_rejects_unknown_actions(layer):
    calls = []

    def transition(entity, pk, action, actor, **params):
        calls.append((entity, pk, action, params))
        return {'id': pk}

    view = DashboardView(DOCTOR, store=FakeStore(tables()), channel_layer=layer, transition=transition)
    await view.start()
    try:
        await view.dispatch('set_status', 'treatment', 20, status='in_progress')
        await view.dispatch('approve', 'user', 5)
        assert calls == [('treatment', 20, 'set_status', {'status': 'in_progress'}),
                         ('user', 5, 'approve', {})]
        with pytest.raises(IllegalTransition):
            await view.dispatch('archive', 'patient', 12)
        with pytest.raises(IllegalTransition):
            await view.dispatch('approve', 'ward', 1)
    finally:
        await view.close()


@pytest.mark.asyncio
async def test_student_sees_own_internships_and_appointments(layer, feed):
    view = DashboardView(STUDENT, store=FakeStore(tables()), channel_layer=layer)
    await view.start()
    try:
        internships = view.state['internships']
        assert [i['id'] for i in internships['items']] == [41, 40]
        assert internships['counts']['in_progress'] == 1 and internships['counts']['completed'] == 1
        assert internships['hours'] == {'completed': 200, 'required': 320}
        # earliest slot first
        assert [a['id'] for a in view.state['appointments']['items']] == [51, 52]
        summary = view.state['summary']
        assert summary['activeInternships'] == 1
        assert summary['internshipsAwaitingApproval'] == 1
        assert summary['upcomingAppointments'] == 1

        await feed.apublish(feed.stamp('appointments', 'update', new=dict(tables()['appointments'][0], status='cancelled')))
        await wait_until(lambda: view.state['summary']['upcomingAppointments'] == 0)
    finally:
        await view.close()


@pytest.mark.asyncio
async def test_internship_approval_rolls_back_when_refused(layer):
    def transition(entity, pk, action, actor, **params):
        raise Unauthorized('only the assigned supervisor may approve this period')

    view = InternshipsView(DOCTOR, store=FakeStore(tables()), channel_layer=layer, transition=transition)
    await view.start()
    try:
        with pytest.raises(Unauthorized):
            await view.approve(40)
        assert view.internships.reconciler.overlays == {}
        assert view.state['counts']['approved'] == 0
    finally:
        await view.close()


@pytest.mark.asyncio
async def test_dispatch_reaches_internships_and_appointments(layer):
    calls = []

    def transition(entity, pk, action, actor, **params):
        calls.append((entity, pk, action, params))
        return {'id': pk}

    view = DashboardView(DOCTOR, store=FakeStore(tables()), channel_layer=layer, transition=transition)
    await view.start()
    try:
        await view.dispatch('approve', 'internship', 40)
        await view.dispatch('set_status', 'appointment', 52, status='confirmed')
        assert calls == [('internship', 40, 'approve', {}),
                         ('appointment', 52, 'set_status', {'status': 'confirmed'})]
        # appointments are never approved
        with pytest.raises(IllegalTransition):
            await view.dispatch('approve', 'appointment', 52)
    finally:
        await view.close()


@pytest.mark.asyncio
async def test_appointment_status_is_applied_optimistically(layer):
    seen = []

    def transition(entity, pk, action, actor, **params):
        seen.append([a['status'] for a in view.appointments.rows if a['id'] == pk])
        return {'id': pk, 'status': params['status']}

    view = AppointmentsView(DOCTOR, store=FakeStore(tables()), channel_layer=layer, transition=transition)
    await view.start()
    try:
        await view.set_status(50, 'completed')
        assert seen == [['completed']]
    finally:
        await view.close()
