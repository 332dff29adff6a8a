"""
Notification fan-out service.

Turns workflow events into one notification row per recipient (written
by a single batched insert) and exposes the read-state API used by the
notification center.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import DatabaseError

from records.exceptions import FanoutFailed, NotFound, StoreUnavailable
from records.permissions import ADMIN, DOCTOR, SUPERVISOR
from records.services.store import EntityStore, get_store

logger = logging.getLogger(__name__)

PATIENT_PENDING = 'PatientPendingApproval'
PATIENT_STATUS = 'PatientApprovalStatus'
TREATMENT_PENDING = 'TreatmentPendingApproval'
TREATMENT_STATUS = 'TreatmentApprovalStatus'
USER_APPROVED = 'UserApproved'
INTERNSHIP_PENDING = 'InternshipAwaitingApproval'
INTERNSHIP_APPROVED = 'InternshipApproved'
APPOINTMENT_SCHEDULED = 'AppointmentScheduled'
APPOINTMENT_CANCELLED = 'AppointmentCancelled'

EVENT_TYPES = (
    PATIENT_PENDING, PATIENT_STATUS, TREATMENT_PENDING, TREATMENT_STATUS, USER_APPROVED,
    INTERNSHIP_PENDING, INTERNSHIP_APPROVED, APPOINTMENT_SCHEDULED, APPOINTMENT_CANCELLED,
)


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)


def _approver_roles(event_type: str) -> List[str]:
    roles = [DOCTOR, ADMIN]
    if event_type == PATIENT_PENDING and getattr(settings, 'NOTIFY_SUPERVISORS_ON_PATIENT_PENDING', False):
        roles.append(SUPERVISOR)
    return roles


def audience(event: NotificationEvent, store: EntityStore) -> List[int]:
    """Recipient user ids for ``event``, de-duplicated, in stable order."""
    p = event.payload
    if event.type == INTERNSHIP_PENDING and p.get('supervisor_id'):
        ids = [p['supervisor_id']]
    elif event.type in (PATIENT_PENDING, TREATMENT_PENDING, INTERNSHIP_PENDING):
        rows = store.select('users', {
            'role__in': _approver_roles(event.type), 'is_active': True, 'is_approved': True,
        }, order_by=('id',))
        ids = [r['id'] for r in rows]
    elif event.type == PATIENT_STATUS:
        ids = [p.get('added_by_id')]
    elif event.type == TREATMENT_STATUS:
        ids = [p.get('student_id')]
    elif event.type in (USER_APPROVED, INTERNSHIP_APPROVED):
        ids = [p.get('user_id')]
    elif event.type in (APPOINTMENT_SCHEDULED, APPOINTMENT_CANCELLED):
        # everyone on the booking except whoever made the change
        ids = [i for i in (p.get('student_id'), p.get('supervisor_id')) if i != p.get('actor_id')]
    else:
        raise ValueError(f'unknown notification event: {event.type}')
    return [i for i in dict.fromkeys(ids) if i is not None]


def _content(event: NotificationEvent) -> Dict[str, Any]:
    p = event.payload
    if event.type == PATIENT_PENDING:
        return {
            'title': 'New patient awaiting approval',
            'message': f"{p.get('patient_name', 'A patient')} was added by {p.get('added_by_name', 'a student')} and needs review.",
            'type': 'approval', 'related_entity_type': 'patient', 'related_entity_id': p.get('patient_id'),
        }
    if event.type == PATIENT_STATUS:
        approved = p.get('status') == 'approved'
        return {
            'title': 'Patient approved' if approved else 'Patient rejected',
            'message': f"Your patient {p.get('patient_name', '')} was {p.get('status')}.",
            'type': 'success' if approved else 'error',
            'related_entity_type': 'patient', 'related_entity_id': p.get('patient_id'),
        }
    if event.type == TREATMENT_PENDING:
        return {
            'title': 'New treatment awaiting approval',
            'message': f"{p.get('treatment_type', 'A treatment')} for {p.get('patient_name', 'a patient')} needs review.",
            'type': 'approval', 'related_entity_type': 'treatment', 'related_entity_id': p.get('treatment_id'),
        }
    if event.type == TREATMENT_STATUS:
        approved = p.get('status') == 'approved'
        return {
            'title': 'Treatment approved' if approved else 'Treatment rejected',
            'message': f"Your {p.get('treatment_type', 'treatment')} proposal was {p.get('status')}.",
            'type': 'success' if approved else 'error',
            'related_entity_type': 'treatment', 'related_entity_id': p.get('treatment_id'),
        }
    if event.type == INTERNSHIP_PENDING:
        return {
            'title': 'Internship period awaiting approval',
            'message': f"{p.get('student_name', 'A student')} completed {p.get('location', 'an internship period')} and needs sign-off.",
            'type': 'approval', 'related_entity_type': 'internship', 'related_entity_id': p.get('internship_id'),
        }
    if event.type == INTERNSHIP_APPROVED:
        return {
            'title': 'Internship period approved',
            'message': f"Your internship period at {p.get('location', '')} was approved.",
            'type': 'success', 'related_entity_type': 'internship', 'related_entity_id': p.get('internship_id'),
        }
    if event.type == APPOINTMENT_SCHEDULED:
        return {
            'title': 'Appointment scheduled',
            'message': f"{p.get('title', 'An appointment')} on {p.get('start_time', '')}.",
            'type': 'info', 'related_entity_type': 'appointment', 'related_entity_id': p.get('appointment_id'),
        }
    if event.type == APPOINTMENT_CANCELLED:
        return {
            'title': 'Appointment cancelled',
            'message': f"{p.get('title', 'An appointment')} on {p.get('start_time', '')} was cancelled.",
            'type': 'warning', 'related_entity_type': 'appointment', 'related_entity_id': p.get('appointment_id'),
        }
    return {
        'title': 'Account approved',
        'message': 'Your account has been approved. You can now use the dashboard.',
        'type': 'success', 'related_entity_type': 'user', 'related_entity_id': p.get('user_id'),
    }


def notify(event: NotificationEvent, *, store: Optional[EntityStore] = None) -> List[int]:
    """Write one notification per audience member; return the recipients.

    Raises :class:`FanoutFailed` when the audience cannot be read or the
    rows cannot be written.  Nothing is retried here; the outbox does that.
    """
    store = store or get_store()
    try:
        recipients = audience(event, store)
        if not recipients:
            logger.info("No recipients for %s", event.type)
            return []
        content = _content(event)
        store.insert_many('notifications', [dict(content, user_id=uid, is_read=False) for uid in recipients])
    except (StoreUnavailable, DatabaseError) as exc:
        raise FanoutFailed(f'{event.type}: {exc}', event_type=event.type) from exc
    logger.info("Fanned out %s to %d recipient(s)", event.type, len(recipients))
    return recipients


# ---------------------------------------------------------------------
# Read-state API
# ---------------------------------------------------------------------
def list_for_user(user, *, limit: int = 50, only_unread: bool = False,
                  store: Optional[EntityStore] = None) -> List[Dict[str, Any]]:
    store = store or get_store()
    filters: Dict[str, Any] = {'user_id': user.id}
    if only_unread:
        filters['is_read'] = False
    return store.select('notifications', filters, order_by=('-created_at', '-id'), limit=limit)


def unread_count(user, *, store: Optional[EntityStore] = None) -> int:
    store = store or get_store()
    return store.count('notifications', {'user_id': user.id, 'is_read': False})


def mark_read(user, notification_id: int, *, store: Optional[EntityStore] = None) -> Dict[str, Any]:
    """Mark one of ``user``'s notifications read; already-read is a no-op."""
    store = store or get_store()
    row = store.get('notifications', notification_id)
    if row is None or row['user_id'] != user.id:
        raise NotFound('notification not found')
    if row['is_read']:
        return row
    rows = store.update('notifications', {'id': notification_id, 'user_id': user.id, 'is_read': False},
                        {'is_read': True})
    return rows[0] if rows else store.get('notifications', notification_id)


def mark_all_read(user, *, store: Optional[EntityStore] = None) -> int:
    """Mark every unread notification of ``user`` read; returns how many changed."""
    store = store or get_store()
    return len(store.update('notifications', {'user_id': user.id, 'is_read': False}, {'is_read': True}))


def delete_notification(user, notification_id: int, *, store: Optional[EntityStore] = None) -> None:
    store = store or get_store()
    if not store.delete('notifications', {'id': notification_id, 'user_id': user.id}):
        raise NotFound('notification not found')
