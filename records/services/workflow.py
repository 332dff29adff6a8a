"""
Approval workflow execution.

Each operation authorizes the actor against ``records.permissions``,
loads the current row, asks ``records.services.transitions`` for the
next state and writes it with a compare-and-set update conditioned on
the state it was read in.  The outbox job for the notification is
queued in the same transaction, so a committed decision always has its
fan-out pending, and a lost race writes nothing at all.

Appointments are additionally checked against the live bookings of
their student and supervisor before the slot is written.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from records.exceptions import AlreadyDecided, IllegalTransition, NotFound, ScheduleConflict, Unauthorized
from records.permissions import (
    DOCTOR, SIGNUP_ROLES, STUDENT, SUPERVISOR, can_act, is_approved, owns, role_of,
)
from records.services import outbox, transitions
from records.services.audit import log_action
from records.services.notifications import (
    APPOINTMENT_CANCELLED, APPOINTMENT_SCHEDULED, INTERNSHIP_APPROVED, INTERNSHIP_PENDING,
    PATIENT_PENDING, PATIENT_STATUS, TREATMENT_PENDING, TREATMENT_STATUS, USER_APPROVED,
)
from records.services.store import EntityStore, get_store

logger = logging.getLogger(__name__)

User = get_user_model()

PATIENT_FIELDS = (
    'first_name', 'last_name', 'email', 'phone', 'date_of_birth', 'address',
    'emergency_contact', 'emergency_phone', 'medical_history', 'allergies', 'notes', 'last_visit',
)
TREATMENT_FIELDS = (
    'treatment_type', 'description', 'teeth_numbers', 'priority', 'start_date', 'end_date', 'notes',
)
PROFILE_FIELDS = (
    'first_name', 'last_name', 'email', 'mobile', 'university', 'city', 'class_year', 'working_days',
)


def _pick(data: Dict[str, Any], fields) -> Dict[str, Any]:
    return {k: data[k] for k in fields if k in data}


def _display_name(user) -> str:
    return user.get_full_name() or user.username


def _patient_name(row: Dict[str, Any]) -> str:
    return f"{row.get('first_name', '')} {row.get('last_name', '')}".strip()


def _require(actor, entity: str, action: str) -> None:
    if not can_act(actor, entity, action):
        raise Unauthorized(f'{role_of(actor) or "anonymous"} may not {action} {entity}')


def _load(store: EntityStore, table: str, pk) -> Dict[str, Any]:
    row = store.get(table, pk)
    if row is None:
        raise NotFound(f'{table[:-1]} {pk} not found')
    return row


def _check_supervisor(store: EntityStore, supervisor_id: Optional[int]) -> None:
    """``None`` clears the assignment; anything else must be an approved supervisor."""
    if supervisor_id is None:
        return
    sup = store.get('users', supervisor_id)
    if sup is None or sup['role'] != SUPERVISOR or not sup['is_approved'] or not sup['is_active']:
        raise IllegalTransition('supervisor must be an approved supervisor account')


def _check_student(store: EntityStore, student_id: Optional[int]) -> None:
    row = store.get('users', student_id) if student_id is not None else None
    if row is None or row['role'] != STUDENT:
        raise IllegalTransition('work must be assigned to a student account')


def _lost_race(store: EntityStore, table: str, pk, field: str):
    """The conditional update matched nothing: report who won."""
    row = store.get(table, pk)
    if row is None:
        raise NotFound(f'{table[:-1]} {pk} not found')
    raise AlreadyDecided(f'{table[:-1]} {pk} is already {row[field]}', current=row[field])


# ---------------------------------------------------------------------
# Patients
# ---------------------------------------------------------------------
def submit_patient(actor, data: Dict[str, Any], *, store: Optional[EntityStore] = None) -> Dict[str, Any]:
    """Register a patient as pending and queue the approver notice."""
    store = store or get_store()
    _require(actor, 'patient', 'create')
    with transaction.atomic():
        row = store.insert('patients', dict(
            _pick(data, PATIENT_FIELDS), added_by_id=actor.id, status=transitions.PENDING,
        ))
        outbox.enqueue(PATIENT_PENDING, {
            'patient_id': row['id'],
            'patient_name': _patient_name(row),
            'added_by_id': actor.id,
            'added_by_name': _display_name(actor),
        })
        log_action(user=actor, action='patient_submit', object_type='patient', object_id=row['id'])
    logger.info("Patient %s submitted by %s", row['id'], actor.username)
    return row


def decide_patient(actor, patient_id: int, action: str, *, store: Optional[EntityStore] = None) -> Dict[str, Any]:
    store = store or get_store()
    if action not in transitions.DECISIONS:
        raise IllegalTransition(f'unknown patient action: {action}')
    _require(actor, 'patient', action)
    with transaction.atomic():
        current = _load(store, 'patients', patient_id)
        target = transitions.decide(current['status'], action)
        rows = store.update(
            'patients',
            {'id': patient_id, 'status': current['status']},
            {'status': target, 'approved_by_id': actor.id, 'approved_at': timezone.now()},
        )
        if not rows:
            _lost_race(store, 'patients', patient_id, 'status')
        row = rows[0]
        outbox.enqueue(PATIENT_STATUS, {
            'patient_id': row['id'],
            'patient_name': _patient_name(row),
            'status': target,
            'added_by_id': row['added_by_id'],
        })
        log_action(user=actor, action=f'patient_{action}', object_type='patient', object_id=row['id'],
                   detail={'from': current['status'], 'to': target})
    logger.info("Patient %s %s by %s", patient_id, target, actor.username)
    return row


def approve_patient(actor, patient_id: int, **kwargs) -> Dict[str, Any]:
    return decide_patient(actor, patient_id, 'approve', **kwargs)


def reject_patient(actor, patient_id: int, **kwargs) -> Dict[str, Any]:
    return decide_patient(actor, patient_id, 'reject', **kwargs)


# ---------------------------------------------------------------------
# Treatments
# ---------------------------------------------------------------------
def _assigned_student(store: EntityStore, actor, patient: Dict[str, Any], data: Dict[str, Any]) -> int:
    """Students work for themselves; approvers name a student or default to the patient owner."""
    if role_of(actor) == STUDENT:
        return actor.id
    student_id = data.get('student_id') or patient['added_by_id']
    _check_student(store, student_id)
    return student_id


def propose_treatment(actor, patient_id: int, data: Dict[str, Any], *,
                      store: Optional[EntityStore] = None) -> Dict[str, Any]:
    """Add a pending treatment to an approved patient."""
    store = store or get_store()
    _require(actor, 'treatment', 'propose')
    status = data.get('status') or transitions.PLANNED
    if status not in transitions.CLINICAL_ORDER:
        raise IllegalTransition(f'unknown treatment status: {status}')
    with transaction.atomic():
        patient = _load(store, 'patients', patient_id)
        if role_of(actor) == STUDENT and patient['added_by_id'] != actor.id:
            raise Unauthorized('patient belongs to another student')
        if patient['status'] != transitions.APPROVED:
            raise IllegalTransition('treatments can only be added to approved patients')
        student_id = _assigned_student(store, actor, patient, data)
        _check_supervisor(store, data.get('supervisor_id'))
        row = store.insert('treatments', dict(
            _pick(data, TREATMENT_FIELDS),
            patient_id=patient_id,
            student_id=student_id,
            supervisor_id=data.get('supervisor_id'),
            status=status,
            approval_status=transitions.PENDING,
        ))
        outbox.enqueue(TREATMENT_PENDING, {
            'treatment_id': row['id'],
            'treatment_type': row['treatment_type'],
            'patient_id': patient_id,
            'patient_name': _patient_name(patient),
            'student_id': student_id,
        })
        log_action(user=actor, action='treatment_propose', object_type='treatment', object_id=row['id'],
                   detail={'patientId': patient_id})
    return row


def decide_treatment(actor, treatment_id: int, action: str, *,
                     store: Optional[EntityStore] = None) -> Dict[str, Any]:
    """Approve or reject a pending treatment; its clinical status is untouched."""
    store = store or get_store()
    if action not in transitions.DECISIONS:
        raise IllegalTransition(f'unknown treatment action: {action}')
    _require(actor, 'treatment', action)
    with transaction.atomic():
        current = _load(store, 'treatments', treatment_id)
        target = transitions.decide(current['approval_status'], action)
        rows = store.update(
            'treatments',
            {'id': treatment_id, 'approval_status': current['approval_status']},
            {'approval_status': target, 'approved_by_id': actor.id, 'approved_at': timezone.now()},
        )
        if not rows:
            _lost_race(store, 'treatments', treatment_id, 'approval_status')
        row = rows[0]
        outbox.enqueue(TREATMENT_STATUS, {
            'treatment_id': row['id'],
            'treatment_type': row['treatment_type'],
            'status': target,
            'student_id': row['student_id'],
        })
        log_action(user=actor, action=f'treatment_{action}', object_type='treatment', object_id=row['id'],
                   detail={'from': current['approval_status'], 'to': target})
    logger.info("Treatment %s %s by %s", treatment_id, target, actor.username)
    return row


def approve_treatment(actor, treatment_id: int, **kwargs) -> Dict[str, Any]:
    return decide_treatment(actor, treatment_id, 'approve', **kwargs)


def reject_treatment(actor, treatment_id: int, **kwargs) -> Dict[str, Any]:
    return decide_treatment(actor, treatment_id, 'reject', **kwargs)


def set_treatment_status(actor, treatment_id: int, status: str, *,
                         store: Optional[EntityStore] = None) -> Dict[str, Any]:
    store = store or get_store()
    _require(actor, 'treatment', 'set_status')
    with transaction.atomic():
        current = _load(store, 'treatments', treatment_id)
        if role_of(actor) == STUDENT and current['student_id'] != actor.id:
            raise Unauthorized('treatment belongs to another student')
        target = transitions.advance_clinical(current['status'], status)
        patch: Dict[str, Any] = {'status': target}
        today = timezone.localdate()
        if target == transitions.COMPLETED:
            patch['end_date'] = today
        if not current.get('start_date'):
            patch['start_date'] = today
        rows = store.update('treatments', {'id': treatment_id, 'status': current['status']}, patch)
        if not rows:
            _lost_race(store, 'treatments', treatment_id, 'status')
        log_action(user=actor, action='treatment_status', object_type='treatment', object_id=treatment_id,
                   detail={'from': current['status'], 'to': target})
    return rows[0]


def assign_supervisor(actor, treatment_id: int, supervisor_id: Optional[int], *,
                      store: Optional[EntityStore] = None) -> Dict[str, Any]:
    store = store or get_store()
    _require(actor, 'treatment', 'assign_supervisor')
    _check_supervisor(store, supervisor_id)
    with transaction.atomic():
        rows = store.update('treatments', {'id': treatment_id}, {'supervisor_id': supervisor_id})
        if not rows:
            raise NotFound(f'treatment {treatment_id} not found')
        log_action(user=actor, action='treatment_supervisor', object_type='treatment', object_id=treatment_id,
                   detail={'supervisorId': supervisor_id})
    return rows[0]


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
def approve_user(actor, user_id: int, *, store: Optional[EntityStore] = None) -> Dict[str, Any]:
    """Approve a pending account; Doctors may only approve students."""
    store = store or get_store()
    _require(actor, 'user', 'approve')
    with transaction.atomic():
        current = _load(store, 'users', user_id)
        if role_of(actor) == DOCTOR and current['role'] != STUDENT:
            raise Unauthorized('doctors may only approve student accounts')
        transitions.approve_account(current['is_approved'])
        rows = store.update(
            'users',
            {'id': user_id, 'is_approved': False},
            {'is_approved': True, 'approved_by_id': actor.id, 'approved_at': timezone.now()},
        )
        if not rows:
            _lost_race(store, 'users', user_id, 'is_approved')
        outbox.enqueue(USER_APPROVED, {'user_id': user_id})
        log_action(user=actor, action='user_approve', object_type='user', object_id=user_id)
    logger.info("User %s approved by %s", user_id, actor.username)
    return rows[0]


def register_user(data: Dict[str, Any], *, store: Optional[EntityStore] = None) -> User:
    """Self-service signup; the account waits for approval."""
    store = store or get_store()
    role = data.get('role') or STUDENT
    if role not in SIGNUP_ROLES:
        raise Unauthorized(f'{role} accounts cannot be self-registered')
    with transaction.atomic():
        user = User.objects.create_user(
            username=data['username'], password=data['password'], role=role, is_approved=False,
            **_pick(data, PROFILE_FIELDS),
        )
        store.emit_insert('users', user.id)
        log_action(user=user, action='signup', object_type='user', object_id=user.id, detail={'role': role})
    return user


def create_doctor_account(actor, data: Dict[str, Any], *, store: Optional[EntityStore] = None) -> User:
    """Admin-only path creating a pre-approved Doctor."""
    store = store or get_store()
    _require(actor, 'user', 'create_doctor')
    with transaction.atomic():
        user = User.objects.create_user(
            username=data['username'], password=data['password'], role=DOCTOR,
            is_approved=True, approved_by=actor, approved_at=timezone.now(),
            **_pick(data, PROFILE_FIELDS),
        )
        store.emit_insert('users', user.id)
        log_action(user=actor, action='doctor_create', object_type='user', object_id=user.id)
    return user


def update_profile(actor, user_id: int, data: Dict[str, Any], *,
                   store: Optional[EntityStore] = None) -> Dict[str, Any]:
    store = store or get_store()
    if getattr(actor, 'id', None) != user_id and not can_act(actor, 'user', 'edit_profile'):
        raise Unauthorized('cannot edit another user profile')
    patch = _pick(data, PROFILE_FIELDS)
    if not patch:
        return _load(store, 'users', user_id)
    rows = store.update('users', {'id': user_id}, patch)
    if not rows:
        raise NotFound(f'user {user_id} not found')
    return rows[0]


# ---------------------------------------------------------------------
# Internship periods
# ---------------------------------------------------------------------
INTERNSHIP_FIELDS = (
    'location', 'round', 'start_date', 'end_date', 'hours_completed', 'total_required_hours', 'notes',
)


def _check_period(row: Dict[str, Any]) -> None:
    start, end = row.get('start_date'), row.get('end_date')
    if start and end and str(end) < str(start):
        raise IllegalTransition('internship period ends before it starts')


def _load_owned(store: EntityStore, actor, table: str, pk, owner_field: str) -> Dict[str, Any]:
    row = _load(store, table, pk)
    if not owns(actor, row, owner_field):
        # other students' rows are invisible, not forbidden
        raise NotFound(f'{table[:-1]} {pk} not found')
    return row


def _owner_name(store: EntityStore, user_id: int) -> str:
    owner = store.get('users', user_id) or {}
    full = f"{owner.get('first_name', '')} {owner.get('last_name', '')}".strip()
    return full or owner.get('username', '')


def create_internship(actor, data: Dict[str, Any], *, store: Optional[EntityStore] = None) -> Dict[str, Any]:
    """Log a planned internship period; Admins may log one for a student."""
    store = store or get_store()
    _require(actor, 'internship', 'create')
    if role_of(actor) == STUDENT:
        user_id = actor.id
    else:
        user_id = data.get('user_id')
        _check_student(store, user_id)
    _check_supervisor(store, data.get('supervisor_id'))
    fields = _pick(data, INTERNSHIP_FIELDS)
    _check_period(fields)
    with transaction.atomic():
        row = store.insert('internships', dict(
            fields, user_id=user_id, supervisor_id=data.get('supervisor_id'), status=transitions.PENDING,
        ))
        log_action(user=actor, action='internship_create', object_type='internship', object_id=row['id'])
    return row


def update_internship(actor, internship_id: int, data: Dict[str, Any], *,
                      store: Optional[EntityStore] = None) -> Dict[str, Any]:
    """Edit details or log hours; an approved period is frozen."""
    store = store or get_store()
    _require(actor, 'internship', 'update')
    patch = _pick(data, INTERNSHIP_FIELDS)
    if 'supervisor_id' in data:
        _check_supervisor(store, data['supervisor_id'])
        patch['supervisor_id'] = data['supervisor_id']
    with transaction.atomic():
        current = _load_owned(store, actor, 'internships', internship_id, 'user_id')
        if current['status'] == transitions.APPROVED:
            raise AlreadyDecided(f'internship {internship_id} is already approved', current=current['status'])
        _check_period(dict(current, **patch))
        if not patch:
            return current
        rows = store.update('internships', {'id': internship_id, 'status': current['status']}, patch)
        if not rows:
            _lost_race(store, 'internships', internship_id, 'status')
        log_action(user=actor, action='internship_update', object_type='internship', object_id=internship_id,
                   detail={'fields': sorted(patch)})
    return rows[0]


def set_internship_status(actor, internship_id: int, status: str, *,
                          store: Optional[EntityStore] = None) -> Dict[str, Any]:
    store = store or get_store()
    _require(actor, 'internship', 'set_status')
    with transaction.atomic():
        current = _load_owned(store, actor, 'internships', internship_id, 'user_id')
        target = transitions.advance_internship(current['status'], status)
        rows = store.update('internships', {'id': internship_id, 'status': current['status']}, {'status': target})
        if not rows:
            _lost_race(store, 'internships', internship_id, 'status')
        row = rows[0]
        if target == transitions.COMPLETED:
            outbox.enqueue(INTERNSHIP_PENDING, {
                'internship_id': row['id'],
                'location': row['location'],
                'user_id': row['user_id'],
                'student_name': _owner_name(store, row['user_id']),
                'supervisor_id': row['supervisor_id'],
            })
        log_action(user=actor, action='internship_status', object_type='internship', object_id=internship_id,
                   detail={'from': current['status'], 'to': target})
    return row


def approve_internship(actor, internship_id: int, *, store: Optional[EntityStore] = None) -> Dict[str, Any]:
    """Sign off a completed period; Supervisors only the periods assigned to them."""
    store = store or get_store()
    _require(actor, 'internship', 'approve')
    with transaction.atomic():
        current = _load(store, 'internships', internship_id)
        if role_of(actor) == SUPERVISOR and current['supervisor_id'] != actor.id:
            raise Unauthorized('internship period is supervised by someone else')
        target = transitions.approve_internship(current['status'])
        rows = store.update(
            'internships',
            {'id': internship_id, 'status': current['status']},
            {'status': target, 'approved_by_id': actor.id, 'approved_at': timezone.now()},
        )
        if not rows:
            _lost_race(store, 'internships', internship_id, 'status')
        row = rows[0]
        outbox.enqueue(INTERNSHIP_APPROVED, {
            'internship_id': row['id'], 'location': row['location'], 'user_id': row['user_id'],
        })
        log_action(user=actor, action='internship_approve', object_type='internship', object_id=internship_id)
    logger.info("Internship %s approved by %s", internship_id, actor.username)
    return row


def delete_internship(actor, internship_id: int, *, store: Optional[EntityStore] = None) -> None:
    """Students may withdraw a period until it starts; Admins at any time."""
    store = store or get_store()
    _require(actor, 'internship', 'delete')
    with transaction.atomic():
        current = _load_owned(store, actor, 'internships', internship_id, 'user_id')
        filters = {'id': internship_id}
        if role_of(actor) == STUDENT:
            if current['status'] != transitions.PENDING:
                raise IllegalTransition('only pending internship periods can be withdrawn', current=current['status'])
            filters['status'] = transitions.PENDING
        if not store.delete('internships', filters):
            _lost_race(store, 'internships', internship_id, 'status')
        log_action(user=actor, action='internship_delete', object_type='internship', object_id=internship_id)


# ---------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------
def _check_slot(store: EntityStore, people, start, end, *, exclude: Optional[int] = None) -> None:
    """Refuse a slot that overlaps a live booking of any of ``people``.

    Runs inside the caller's transaction with the people's user rows
    locked, so two bookings for the same person cannot both pass.
    """
    people = [p for p in dict.fromkeys(people) if p is not None]
    if end <= start:
        raise IllegalTransition('appointment must end after it starts')
    list(User.objects.select_for_update().filter(pk__in=people).values_list('pk', flat=True))
    window = {'start_time__lt': end, 'end_time__gt': start, 'status__in': transitions.BOOKED_STATES}
    for field in ('student_id__in', 'supervisor_id__in'):
        for row in store.select('appointments', dict(window, **{field: people})):
            if row['id'] != exclude:
                raise ScheduleConflict(
                    f"slot overlaps appointment {row['id']} ({row['start_time']} - {row['end_time']})",
                    appointment_id=row['id'],
                )


def _appointment_event(event_type: str, row: Dict[str, Any], actor) -> None:
    outbox.enqueue(event_type, {
        'appointment_id': row['id'],
        'title': row['title'],
        'start_time': row['start_time'],
        'student_id': row['student_id'],
        'supervisor_id': row['supervisor_id'],
        'actor_id': actor.id,
    })


def schedule_appointment(actor, patient_id: int, data: Dict[str, Any], *,
                         store: Optional[EntityStore] = None) -> Dict[str, Any]:
    """Book an approved patient into a free slot for the student (and supervisor)."""
    store = store or get_store()
    _require(actor, 'appointment', 'create')
    with transaction.atomic():
        patient = _load(store, 'patients', patient_id)
        if role_of(actor) == STUDENT and patient['added_by_id'] != actor.id:
            raise Unauthorized('patient belongs to another student')
        if patient['status'] != transitions.APPROVED:
            raise IllegalTransition('appointments can only be booked for approved patients')
        student_id = _assigned_student(store, actor, patient, data)
        supervisor_id = data.get('supervisor_id')
        _check_supervisor(store, supervisor_id)
        _check_slot(store, [student_id, supervisor_id], data['start_time'], data['end_time'])
        row = store.insert('appointments', dict(
            title=data['title'],
            description=data.get('description', ''),
            start_time=data['start_time'],
            end_time=data['end_time'],
            patient_id=patient_id,
            student_id=student_id,
            supervisor_id=supervisor_id,
            status=transitions.SCHEDULED,
        ))
        _appointment_event(APPOINTMENT_SCHEDULED, row, actor)
        log_action(user=actor, action='appointment_schedule', object_type='appointment', object_id=row['id'],
                   detail={'patientId': patient_id})
    return row


def reschedule_appointment(actor, appointment_id: int, start, end, *,
                           store: Optional[EntityStore] = None) -> Dict[str, Any]:
    """Move a live booking; a confirmed one goes back to scheduled."""
    store = store or get_store()
    _require(actor, 'appointment', 'reschedule')
    with transaction.atomic():
        current = _load_owned(store, actor, 'appointments', appointment_id, 'student_id')
        if current['status'] not in transitions.APPOINTMENT_MOVES:
            raise AlreadyDecided(f"appointment already {current['status']}", current=current['status'])
        _check_slot(store, [current['student_id'], current['supervisor_id']], start, end, exclude=appointment_id)
        rows = store.update(
            'appointments',
            {'id': appointment_id, 'status': current['status']},
            {'start_time': start, 'end_time': end, 'status': transitions.SCHEDULED},
        )
        if not rows:
            _lost_race(store, 'appointments', appointment_id, 'status')
        _appointment_event(APPOINTMENT_SCHEDULED, rows[0], actor)
        log_action(user=actor, action='appointment_reschedule', object_type='appointment',
                   object_id=appointment_id, detail={'from': current['start_time'], 'to': rows[0]['start_time']})
    return rows[0]


def set_appointment_status(actor, appointment_id: int, status: str, *,
                           store: Optional[EntityStore] = None) -> Dict[str, Any]:
    store = store or get_store()
    _require(actor, 'appointment', 'set_status')
    with transaction.atomic():
        current = _load_owned(store, actor, 'appointments', appointment_id, 'student_id')
        target = transitions.advance_appointment(current['status'], status)
        rows = store.update('appointments', {'id': appointment_id, 'status': current['status']}, {'status': target})
        if not rows:
            _lost_race(store, 'appointments', appointment_id, 'status')
        if target == transitions.CANCELLED:
            _appointment_event(APPOINTMENT_CANCELLED, rows[0], actor)
        log_action(user=actor, action='appointment_status', object_type='appointment', object_id=appointment_id,
                   detail={'from': current['status'], 'to': target})
    return rows[0]


def assign_appointment_supervisor(actor, appointment_id: int, supervisor_id: Optional[int], *,
                                  store: Optional[EntityStore] = None) -> Dict[str, Any]:
    store = store or get_store()
    _require(actor, 'appointment', 'assign_supervisor')
    _check_supervisor(store, supervisor_id)
    with transaction.atomic():
        current = _load(store, 'appointments', appointment_id)
        if current['status'] not in transitions.APPOINTMENT_MOVES:
            raise AlreadyDecided(f"appointment already {current['status']}", current=current['status'])
        if supervisor_id is not None:
            _check_slot(store, [supervisor_id], parse_datetime(current['start_time']),
                        parse_datetime(current['end_time']), exclude=appointment_id)
        rows = store.update('appointments', {'id': appointment_id, 'status': current['status']},
                            {'supervisor_id': supervisor_id})
        if not rows:
            _lost_race(store, 'appointments', appointment_id, 'status')
        if supervisor_id is not None:
            _appointment_event(APPOINTMENT_SCHEDULED, rows[0], actor)
        log_action(user=actor, action='appointment_supervisor', object_type='appointment',
                   object_id=appointment_id, detail={'supervisorId': supervisor_id})
    return rows[0]


# ---------------------------------------------------------------------
# Generic entry point used by the live views and websocket actions
# ---------------------------------------------------------------------
def transition(entity: str, entity_id: int, action: str, actor, **params) -> Dict[str, Any]:
    store = params.pop('store', None)
    if entity == 'patient' and action in transitions.DECISIONS:
        return decide_patient(actor, entity_id, action, store=store)
    if entity == 'treatment' and action in transitions.DECISIONS:
        return decide_treatment(actor, entity_id, action, store=store)
    if entity == 'treatment' and action == 'set_status':
        return set_treatment_status(actor, entity_id, params.get('status') or '', store=store)
    if entity == 'treatment' and action == 'assign_supervisor':
        return assign_supervisor(actor, entity_id, params.get('supervisor_id'), store=store)
    if entity == 'user' and action == 'approve':
        return approve_user(actor, entity_id, store=store)
    if entity == 'internship' and action == 'approve':
        return approve_internship(actor, entity_id, store=store)
    if entity == 'internship' and action == 'set_status':
        return set_internship_status(actor, entity_id, params.get('status') or '', store=store)
    if entity == 'appointment' and action == 'set_status':
        return set_appointment_status(actor, entity_id, params.get('status') or '', store=store)
    if entity == 'appointment' and action == 'assign_supervisor':
        return assign_appointment_supervisor(actor, entity_id, params.get('supervisor_id'), store=store)
    if not is_approved(actor):
        raise Unauthorized('account is not approved')
    raise IllegalTransition(f'unsupported transition {entity}.{action}')
