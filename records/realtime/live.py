"""
Role-scoped live views over change feed subscriptions.

A view owns one or more :class:`ChangeFeedSubscriber` (or child views),
re-derives its state synchronously whenever any of them changes and
hands the new state to its listeners.  Derivation is pure: the module
level helpers below compute every list, count and badge from the
subscribed rows and are reused by the one-shot HTTP dashboard.

Mutators apply an optimistic overlay, run the workflow transition and
drop the overlay again if the transition is rejected; on success the
overlay is cleared by the feed event that carries the committed row.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from asgiref.sync import sync_to_async

from records.exceptions import IllegalTransition, Unauthorized, WorkflowError
from records.permissions import (
    appointment_scope, internship_scope, patient_scope, present_patient, role_of, treatment_scope, user_scope,
)
from records.realtime.subscriber import ChangeFeedSubscriber
from records.services import notifications as notification_service
from records.services import workflow
from records.services.transitions import APPOINTMENT_STATES, APPROVED, CLINICAL_ORDER, INTERNSHIP_ORDER

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
StateListener = Callable[[Dict[str, Any]], None]
INTERNSHIP_STATES = INTERNSHIP_ORDER + (APPROVED,)


# ---------------------------------------------------------------------
# Pure derivations
# ---------------------------------------------------------------------
def approval_counts(rows: List[Row], field: str = 'status') -> Dict[str, int]:
    counts = {'pending': 0, 'approved': 0, 'rejected': 0}
    for row in rows:
        if row.get(field) in counts:
            counts[row[field]] += 1
    counts['total'] = len(rows)
    return counts


def pending_accounts(rows: List[Row]) -> List[Row]:
    return [r for r in rows if not r.get('is_approved')]


def unread_count(rows: List[Row]) -> int:
    return sum(1 for r in rows if not r.get('is_read'))


def status_counts(rows: List[Row], states) -> Dict[str, int]:
    counts = {s: 0 for s in states}
    for row in rows:
        if row.get('status') in counts:
            counts[row['status']] += 1
    counts['total'] = len(rows)
    return counts


def clinical_counts(rows: List[Row]) -> Dict[str, int]:
    return status_counts(rows, CLINICAL_ORDER)


def internship_hours(rows: List[Row]) -> Dict[str, int]:
    return {
        'completed': sum(r.get('hours_completed') or 0 for r in rows),
        'required': sum(r.get('total_required_hours') or 0 for r in rows),
    }


def dashboard_summary(*, patients: List[Row], treatments: List[Row],
                      users: Optional[List[Row]], notifications: List[Row],
                      internships: Optional[List[Row]] = None,
                      appointments: Optional[List[Row]] = None) -> Dict[str, Any]:
    p = approval_counts(patients)
    t = approval_counts(treatments, 'approval_status')
    i = status_counts(internships or [], INTERNSHIP_STATES)
    a = status_counts(appointments or [], APPOINTMENT_STATES)
    return {
        'patients': p['total'],
        'pendingPatients': p['pending'],
        'approvedPatients': p['approved'],
        'treatments': t['total'],
        'pendingTreatments': t['pending'],
        'completedTreatments': clinical_counts(treatments)['completed'],
        'pendingUsers': len(pending_accounts(users)) if users is not None else None,
        'unreadNotifications': unread_count(notifications),
        'activeInternships': i['in_progress'],
        'internshipsAwaitingApproval': i['completed'],
        'upcomingAppointments': a['scheduled'] + a['confirmed'],
    }


# ---------------------------------------------------------------------
# Live views
# ---------------------------------------------------------------------
class LiveView:
    def __init__(self, actor, *, store=None, channel_layer=None, transition=None):
        self.actor = actor
        self.role = role_of(actor)
        self.store = store
        self.channel_layer = channel_layer
        self._transition = transition or workflow.transition
        self.sources: List[ChangeFeedSubscriber] = []
        self.listeners: List[StateListener] = []
        self.state: Dict[str, Any] = {}
        self.closed = False

    def subscribe_to(self, table: str, filters: Optional[Dict[str, Any]] = None) -> ChangeFeedSubscriber:
        sub = ChangeFeedSubscriber(table, filters, store=self.store, channel_layer=self.channel_layer)
        sub.add_listener(lambda _sub: self.refresh())
        self.sources.append(sub)
        return sub

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self.listeners.append(listener)

        def remove():
            if listener in self.listeners:
                self.listeners.remove(listener)
        return remove

    @property
    def loading(self) -> bool:
        return any(s.loading for s in self.sources)

    @property
    def error(self) -> Optional[str]:
        for s in self.sources:
            if s.error is not None:
                return str(s.error)
        return None

    def derive(self) -> Dict[str, Any]:
        raise NotImplementedError

    def refresh(self) -> None:
        if self.closed:
            return
        self.state = self.derive()
        for listener in list(self.listeners):
            listener(self.state)

    async def start(self) -> 'LiveView':
        for sub in self.sources:
            await sub.subscribe()
        self.refresh()
        return self

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.listeners.clear()
        for sub in self.sources:
            await sub.unsubscribe()

    async def run_transition(self, entity: str, pk: int, action: str, **params) -> Row:
        return await sync_to_async(self._transition)(entity, pk, action, self.actor, **params)

    async def optimistic(self, sub: ChangeFeedSubscriber, pk: int, patch: Row, call):
        sub.patch_locally(pk, patch)
        try:
            return await call()
        except WorkflowError:
            sub.discard_local(pk)
            raise


class PatientsView(LiveView):
    def __init__(self, actor, **kwargs):
        super().__init__(actor, **kwargs)
        self.patients = self.subscribe_to('patients', patient_scope(actor))

    def derive(self) -> Dict[str, Any]:
        rows = self.patients.rows
        return {
            'items': [present_patient(r, self.actor) for r in rows],
            'counts': approval_counts(rows),
            'loading': self.loading,
            'error': self.error,
        }

    async def approve(self, pk: int) -> Row:
        return await self.optimistic(self.patients, pk, {'status': 'approved'},
                                     lambda: self.run_transition('patient', pk, 'approve'))

    async def reject(self, pk: int) -> Row:
        return await self.optimistic(self.patients, pk, {'status': 'rejected'},
                                     lambda: self.run_transition('patient', pk, 'reject'))


class TreatmentsView(LiveView):
    def __init__(self, actor, **kwargs):
        super().__init__(actor, **kwargs)
        self.treatments = self.subscribe_to('treatments', treatment_scope(actor))

    def derive(self) -> Dict[str, Any]:
        rows = self.treatments.rows
        return {
            'items': rows,
            'counts': clinical_counts(rows),
            'approvalCounts': approval_counts(rows, 'approval_status'),
            'loading': self.loading,
            'error': self.error,
        }

    async def approve(self, pk: int) -> Row:
        return await self.optimistic(self.treatments, pk, {'approval_status': 'approved'},
                                     lambda: self.run_transition('treatment', pk, 'approve'))

    async def reject(self, pk: int) -> Row:
        return await self.optimistic(self.treatments, pk, {'approval_status': 'rejected'},
                                     lambda: self.run_transition('treatment', pk, 'reject'))

    async def set_status(self, pk: int, status: str) -> Row:
        return await self.optimistic(self.treatments, pk, {'status': status},
                                     lambda: self.run_transition('treatment', pk, 'set_status', status=status))


class UsersView(LiveView):
    def __init__(self, actor, **kwargs):
        super().__init__(actor, **kwargs)
        scope = user_scope(actor)
        if scope is None:
            raise Unauthorized('user management is not available for this role')
        self.users = self.subscribe_to('users', scope)

    def derive(self) -> Dict[str, Any]:
        rows = self.users.rows
        pending = pending_accounts(rows)
        return {
            'items': rows,
            'pending': pending,
            'counts': {'pending': len(pending), 'approved': len(rows) - len(pending), 'total': len(rows)},
            'loading': self.loading,
            'error': self.error,
        }

    async def approve(self, pk: int) -> Row:
        return await self.optimistic(self.users, pk, {'is_approved': True},
                                     lambda: self.run_transition('user', pk, 'approve'))


class NotificationsView(LiveView):
    def __init__(self, actor, **kwargs):
        super().__init__(actor, **kwargs)
        self.notifications = self.subscribe_to('notifications', {'user_id': actor.id})

    def derive(self) -> Dict[str, Any]:
        rows = self.notifications.rows
        return {
            'notifications': rows,
            'unreadCount': unread_count(rows),
            'loading': self.loading,
            'error': self.error,
        }

    async def mark_as_read(self, pk: int) -> Row:
        call = sync_to_async(notification_service.mark_read)
        return await self.optimistic(self.notifications, pk, {'is_read': True},
                                     lambda: call(self.actor, pk, store=self.store))

    async def mark_all_as_read(self) -> int:
        unread = [r['id'] for r in self.notifications.rows if not r.get('is_read')]
        for pk in unread:
            self.notifications.reconciler.patch_locally(pk, {'is_read': True})
        self.refresh()
        try:
            return await sync_to_async(notification_service.mark_all_read)(self.actor, store=self.store)
        except WorkflowError:
            for pk in unread:
                self.notifications.reconciler.discard_local(pk)
            self.refresh()
            raise


class InternshipsView(LiveView):
    def __init__(self, actor, **kwargs):
        super().__init__(actor, **kwargs)
        self.internships = self.subscribe_to('internships', internship_scope(actor))

    def derive(self) -> Dict[str, Any]:
        rows = self.internships.rows
        return {
            'items': rows,
            'counts': status_counts(rows, INTERNSHIP_STATES),
            'hours': internship_hours(rows),
            'loading': self.loading,
            'error': self.error,
        }

    async def approve(self, pk: int) -> Row:
        return await self.optimistic(self.internships, pk, {'status': 'approved'},
                                     lambda: self.run_transition('internship', pk, 'approve'))

    async def set_status(self, pk: int, status: str) -> Row:
        return await self.optimistic(self.internships, pk, {'status': status},
                                     lambda: self.run_transition('internship', pk, 'set_status', status=status))


class AppointmentsView(LiveView):
    def __init__(self, actor, **kwargs):
        super().__init__(actor, **kwargs)
        self.appointments = self.subscribe_to('appointments', appointment_scope(actor))

    def derive(self) -> Dict[str, Any]:
        rows = sorted(self.appointments.rows, key=lambda r: (r.get('start_time') or '', r.get('id') or 0))
        return {
            'items': rows,
            'counts': status_counts(rows, APPOINTMENT_STATES),
            'loading': self.loading,
            'error': self.error,
        }

    async def set_status(self, pk: int, status: str) -> Row:
        return await self.optimistic(self.appointments, pk, {'status': status},
                                     lambda: self.run_transition('appointment', pk, 'set_status', status=status))


class DashboardView(LiveView):
    """Composes the child views a role is entitled to into one state."""

    def __init__(self, actor, **kwargs):
        super().__init__(actor, **kwargs)
        self.children: Dict[str, LiveView] = {
            'patients': PatientsView(actor, **kwargs),
            'treatments': TreatmentsView(actor, **kwargs),
            'internships': InternshipsView(actor, **kwargs),
            'appointments': AppointmentsView(actor, **kwargs),
            'notifications': NotificationsView(actor, **kwargs),
        }
        if user_scope(actor) is not None:
            self.children['users'] = UsersView(actor, **kwargs)
        for child in self.children.values():
            child.add_listener(lambda _state: self.refresh())

    @property
    def loading(self) -> bool:
        return any(c.loading for c in self.children.values())

    @property
    def error(self) -> Optional[str]:
        for c in self.children.values():
            if c.error:
                return c.error
        return None

    def derive(self) -> Dict[str, Any]:
        users = self.children.get('users')
        state = {name: child.state for name, child in self.children.items()}
        state['role'] = self.role
        state['summary'] = dashboard_summary(
            patients=self.children['patients'].patients.rows,
            treatments=self.children['treatments'].treatments.rows,
            users=users.users.rows if users is not None else None,
            notifications=self.children['notifications'].notifications.rows,
            internships=self.children['internships'].internships.rows,
            appointments=self.children['appointments'].appointments.rows,
        )
        state['loading'] = self.loading
        state['error'] = self.error
        return state

    async def start(self) -> 'DashboardView':
        for child in self.children.values():
            await child.start()
        self.refresh()
        return self

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.listeners.clear()
        for child in self.children.values():
            await child.close()

    async def dispatch(self, action: str, entity: Optional[str] = None, pk: Optional[int] = None, **params):
        """Route a client action to the child view that owns it."""
        if action == 'mark_all_read':
            return await self.children['notifications'].mark_all_as_read()
        if action == 'mark_read' and pk is not None:
            return await self.children['notifications'].mark_as_read(pk)
        child = {
            'patient': 'patients', 'treatment': 'treatments', 'user': 'users',
            'internship': 'internships', 'appointment': 'appointments',
        }.get(entity or '')
        view = self.children.get(child) if child else None
        if view is None or pk is None:
            raise IllegalTransition(f'unsupported action {action} on {entity}')
        if action in ('approve', 'reject') and hasattr(view, action):
            return await getattr(view, action)(pk)
        if action == 'set_status' and hasattr(view, 'set_status'):
            return await view.set_status(pk, params.get('status') or '')
        raise IllegalTransition(f'unsupported action {action} on {entity}')
