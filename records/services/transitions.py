"""
Legal states and transitions of the approval workflow.

Pure functions: given the current state and the requested action they
return the next state or raise a :class:`TransitionRejected` subclass.
Authorization is checked separately against ``records.permissions``.
"""
from __future__ import annotations

from records.exceptions import AlreadyDecided, IllegalTransition

PENDING = 'pending'
APPROVED = 'approved'
REJECTED = 'rejected'

DECISIONS = {'approve': APPROVED, 'reject': REJECTED}
APPROVAL_STATES = (PENDING, APPROVED, REJECTED)

PLANNED = 'planned'
IN_PROGRESS = 'in_progress'
COMPLETED = 'completed'
CLINICAL_ORDER = (PLANNED, IN_PROGRESS, COMPLETED)


def decide(current: str, action: str) -> str:
    """Next approval state for ``approve``/``reject`` from ``current``.

    Shared by Patient.status and Treatment.approval_status:
    pending -> approved | rejected, both terminal.
    """
    if action not in DECISIONS:
        raise IllegalTransition(f'unknown decision: {action}')
    if current not in APPROVAL_STATES:
        raise IllegalTransition(f'unknown approval state: {current}')
    if current != PENDING:
        raise AlreadyDecided(f'already {current}', current=current)
    return DECISIONS[action]


def advance_clinical(current: str, target: str) -> str:
    """Next clinical status; moves forward only, skipping allowed."""
    if target not in CLINICAL_ORDER:
        raise IllegalTransition(f'unknown treatment status: {target}')
    if current not in CLINICAL_ORDER:
        raise IllegalTransition(f'unknown treatment status: {current}')
    if current == COMPLETED:
        raise AlreadyDecided('treatment already completed', current=current)
    if CLINICAL_ORDER.index(target) <= CLINICAL_ORDER.index(current):
        raise IllegalTransition(f'cannot move treatment from {current} to {target}', current=current)
    return target


def approve_account(is_approved: bool) -> bool:
    """Account approval is one-way: False -> True."""
    if is_approved:
        raise AlreadyDecided('account already approved', current=True)
    return True


# Internship periods: the Student walks pending -> in_progress -> completed,
# then an approver signs the completed period off.
INTERNSHIP_ORDER = (PENDING, IN_PROGRESS, COMPLETED)


def advance_internship(current: str, target: str) -> str:
    if current == APPROVED:
        raise AlreadyDecided('internship period already approved', current=current)
    if target not in INTERNSHIP_ORDER or current not in INTERNSHIP_ORDER:
        raise IllegalTransition(f'cannot move internship from {current} to {target}', current=current)
    if INTERNSHIP_ORDER.index(target) <= INTERNSHIP_ORDER.index(current):
        raise IllegalTransition(f'cannot move internship from {current} to {target}', current=current)
    return target


def approve_internship(current: str) -> str:
    if current == APPROVED:
        raise AlreadyDecided('internship period already approved', current=current)
    if current != COMPLETED:
        raise IllegalTransition('only completed internship periods can be approved', current=current)
    return APPROVED


SCHEDULED = 'scheduled'
CONFIRMED = 'confirmed'
CANCELLED = 'cancelled'
NO_SHOW = 'no_show'
APPOINTMENT_STATES = (SCHEDULED, CONFIRMED, COMPLETED, CANCELLED, NO_SHOW)
APPOINTMENT_MOVES = {
    SCHEDULED: frozenset({CONFIRMED, COMPLETED, CANCELLED, NO_SHOW}),
    CONFIRMED: frozenset({COMPLETED, CANCELLED, NO_SHOW}),
}
# slots held by anything but a cancelled booking
BOOKED_STATES = (SCHEDULED, CONFIRMED, COMPLETED, NO_SHOW)


def advance_appointment(current: str, target: str) -> str:
    if target not in APPOINTMENT_STATES or current not in APPOINTMENT_STATES:
        raise IllegalTransition(f'unknown appointment status: {target}', current=current)
    if current not in APPOINTMENT_MOVES:
        raise AlreadyDecided(f'appointment already {current}', current=current)
    if target not in APPOINTMENT_MOVES[current]:
        raise IllegalTransition(f'cannot move appointment from {current} to {target}', current=current)
    return target
