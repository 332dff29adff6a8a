"""
Role policy for the approval workflow.

``POLICY`` is the single table saying which roles may perform which
action on which entity.  The state machine, the DRF permission classes
and the live dashboard views all consult it through :func:`can` /
:func:`can_act`.  Row visibility per role lives here as well.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from rest_framework.permissions import BasePermission

STUDENT = 'student'
DOCTOR = 'doctor'
SUPERVISOR = 'supervisor'
ADMIN = 'admin'

ROLES = (STUDENT, DOCTOR, SUPERVISOR, ADMIN)
APPROVER_ROLES = frozenset({DOCTOR, SUPERVISOR, ADMIN})
# roles a self-service signup may request
SIGNUP_ROLES = frozenset({STUDENT, SUPERVISOR})

POLICY: Dict[tuple, frozenset] = {
    ('patient', 'create'): frozenset({STUDENT, DOCTOR, ADMIN}),
    ('patient', 'approve'): frozenset({DOCTOR, SUPERVISOR, ADMIN}),
    ('patient', 'reject'): frozenset({DOCTOR, SUPERVISOR, ADMIN}),
    ('patient', 'view_all'): frozenset({DOCTOR, SUPERVISOR, ADMIN}),
    ('treatment', 'propose'): frozenset({STUDENT, DOCTOR, ADMIN}),
    ('treatment', 'approve'): frozenset({DOCTOR, ADMIN}),
    ('treatment', 'reject'): frozenset({DOCTOR, ADMIN}),
    ('treatment', 'set_status'): frozenset({STUDENT, DOCTOR, SUPERVISOR, ADMIN}),
    ('treatment', 'assign_supervisor'): frozenset({DOCTOR, ADMIN}),
    ('treatment', 'view_all'): frozenset({DOCTOR, SUPERVISOR, ADMIN}),
    ('internship', 'create'): frozenset({STUDENT, ADMIN}),
    ('internship', 'update'): frozenset({STUDENT, ADMIN}),
    ('internship', 'set_status'): frozenset({STUDENT, ADMIN}),
    ('internship', 'approve'): frozenset({SUPERVISOR, DOCTOR, ADMIN}),
    ('internship', 'delete'): frozenset({STUDENT, ADMIN}),
    ('internship', 'view_all'): frozenset({DOCTOR, ADMIN}),
    ('appointment', 'create'): frozenset({STUDENT, DOCTOR, ADMIN}),
    ('appointment', 'reschedule'): frozenset({STUDENT, DOCTOR, ADMIN}),
    ('appointment', 'set_status'): frozenset({STUDENT, SUPERVISOR, DOCTOR, ADMIN}),
    ('appointment', 'assign_supervisor'): frozenset({DOCTOR, ADMIN}),
    ('appointment', 'view_all'): frozenset({DOCTOR, ADMIN}),
    ('user', 'approve'): frozenset({DOCTOR, ADMIN}),
    ('user', 'list'): frozenset({DOCTOR, ADMIN}),
    ('user', 'create_doctor'): frozenset({ADMIN}),
    ('user', 'edit_profile'): frozenset({ADMIN}),
}

# Fields a Student may see on a patient that is not approved yet.
PATIENT_SUMMARY_FIELDS = (
    'id', 'first_name', 'last_name', 'status', 'added_by_id',
    'approved_by_id', 'approved_at', 'created_at', 'updated_at',
)


def role_of(user) -> Optional[str]:
    if not user or not getattr(user, 'is_authenticated', False):
        return None
    if getattr(user, 'is_superuser', False):
        return ADMIN
    return getattr(user, 'role', None)


def is_approved(user) -> bool:
    if not user or not getattr(user, 'is_authenticated', False):
        return False
    return bool(getattr(user, 'is_superuser', False) or getattr(user, 'is_approved', False))


def can(role: Optional[str], entity: str, action: str) -> bool:
    return role in POLICY.get((entity, action), ())


def can_act(user, entity: str, action: str) -> bool:
    """True when ``user`` is approved and its role is allowed the action."""
    return is_approved(user) and can(role_of(user), entity, action)


def patient_scope(user) -> Dict[str, Any]:
    """Store filters restricting patients to what ``user`` may list."""
    if can(role_of(user), 'patient', 'view_all'):
        return {}
    return {'added_by_id': getattr(user, 'id', None)}


def treatment_scope(user) -> Dict[str, Any]:
    if can(role_of(user), 'treatment', 'view_all'):
        return {}
    return {'student_id': getattr(user, 'id', None), 'approval_status': 'approved'}


def _assigned_scope(user, entity: str, owner_field: str) -> Dict[str, Any]:
    role = role_of(user)
    if can(role, entity, 'view_all'):
        return {}
    if role == SUPERVISOR:
        return {'supervisor_id': getattr(user, 'id', None)}
    return {owner_field: getattr(user, 'id', None)}


def internship_scope(user) -> Dict[str, Any]:
    """Own periods for Students, assigned ones for Supervisors, all otherwise."""
    return _assigned_scope(user, 'internship', 'user_id')


def appointment_scope(user) -> Dict[str, Any]:
    return _assigned_scope(user, 'appointment', 'student_id')


def owns(user, row: Dict[str, Any], owner_field: str) -> bool:
    """Students act on their own rows, Supervisors on rows assigned to them."""
    role = role_of(user)
    if role == STUDENT:
        return row.get(owner_field) == user.id
    if role == SUPERVISOR:
        return row.get('supervisor_id') == user.id
    return True


def user_scope(user) -> Optional[Dict[str, Any]]:
    """Admins see every account, Doctors the students; others nothing."""
    role = role_of(user)
    if role == ADMIN:
        return {}
    if role == DOCTOR:
        return {'role': STUDENT}
    return None


def present_patient(row: Dict[str, Any], user) -> Dict[str, Any]:
    """Strip the clinical profile from a Student's not-yet-approved patient."""
    if role_of(user) != STUDENT or row.get('status') == 'approved':
        return row
    return {k: row.get(k) for k in PATIENT_SUMMARY_FIELDS}


class IsApprovedUser(BasePermission):
    """Authenticated and approved accounts only."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return is_approved(getattr(request, 'user', None))


class IsAdminRole(BasePermission):
    """Allow access only to approved Admins."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, 'user', None)
        return is_approved(user) and role_of(user) == ADMIN


class CanManageUsers(BasePermission):
    """Admins and Doctors (listing and approving accounts)."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return can_act(getattr(request, 'user', None), 'user', 'list')
