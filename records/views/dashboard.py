"""
One-shot dashboard summary.

Same derivation as the live websocket dashboard, computed from a single
read of each role-scoped collection.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.permissions import (
    IsApprovedUser, appointment_scope, internship_scope, patient_scope, role_of, treatment_scope, user_scope,
)
from records.realtime.live import INTERNSHIP_STATES, approval_counts, clinical_counts, dashboard_summary, status_counts
from records.services.store import get_store


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def dashboard(request):
    store = get_store()
    user = request.user
    patients = store.select('patients', patient_scope(user), limit=None)
    treatments = store.select('treatments', treatment_scope(user), limit=None)
    scope = user_scope(user)
    users = store.select('users', scope, limit=None) if scope is not None else None
    notifications = store.select('notifications', {'user_id': user.id, 'is_read': False}, limit=None)
    internships = store.select('internships', internship_scope(user), limit=None)
    appointments = store.select('appointments', appointment_scope(user), limit=None)
    return Response({'ok': True, 'data': {
        'role': role_of(user),
        'summary': dashboard_summary(patients=patients, treatments=treatments,
                                     users=users, notifications=notifications,
                                     internships=internships, appointments=appointments),
        'patientCounts': approval_counts(patients),
        'treatmentCounts': clinical_counts(treatments),
        'treatmentApprovalCounts': approval_counts(treatments, 'approval_status'),
        'internshipCounts': status_counts(internships, INTERNSHIP_STATES),
    }})
