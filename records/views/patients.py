"""
Patient endpoints.

Students register patients and list only their own; approvers list
every patient and decide pending ones.  A Student cannot open the full
profile of a patient that is not approved yet.
"""
from __future__ import annotations

from django.db.models import Q
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import UserRateThrottle

from records.exceptions import NotFound, Unauthorized
from records.models import Patient
from records.permissions import IsApprovedUser, STUDENT, patient_scope, present_patient, role_of
from records.serializers.patient import PatientCreateSerializer, PatientListQuerySerializer
from records.services import workflow
from records.services.audit import history
from records.services.store import get_store


class PatientWriteThrottle(UserRateThrottle):
    scope = 'patient_write'


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def list_patients(request):
    q = PatientListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    filters = patient_scope(request.user)
    if q.validated_data.get('status'):
        filters['status'] = q.validated_data['status']
    term = (q.validated_data.get('q') or '').strip()
    if term:
        # name search narrows the id set; scope filters still apply below
        ids = Patient.objects.filter(
            Q(first_name__icontains=term) | Q(last_name__icontains=term) | Q(email__icontains=term)
        ).values_list('id', flat=True)
        filters['id__in'] = list(ids)
    rows = get_store().select('patients', filters, limit=q.validated_data.get('limit') or 200)
    return Response({'ok': True, 'data': [present_patient(r, request.user) for r in rows]})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
@throttle_classes([PatientWriteThrottle])
def create_patient(request):
    s = PatientCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    row = workflow.submit_patient(request.user, s.validated_data)
    return Response({'ok': True, 'data': row}, status=201)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def patient_detail(request, patient_id: int):
    """Full profile with treatments; Students only for their approved patients."""
    store = get_store()
    row = store.get('patients', patient_id)
    scope = patient_scope(request.user)
    if row is None or any(row.get(k) != v for k, v in scope.items()):
        raise NotFound('patient not found')
    if role_of(request.user) == STUDENT and row['status'] != 'approved':
        raise Unauthorized('patient profile is available once the patient is approved')
    treatments = store.select('treatments', {'patient_id': patient_id})
    if role_of(request.user) == STUDENT:
        treatments = [t for t in treatments
                      if t['student_id'] == request.user.id and t['approval_status'] == 'approved']
    return Response({'ok': True, 'data': dict(
        row, treatments=treatments, history=history('patient', patient_id),
    )})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def approve_patient(request, patient_id: int):
    row = workflow.approve_patient(request.user, patient_id)
    return Response({'ok': True, 'data': row})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def reject_patient(request, patient_id: int):
    row = workflow.reject_patient(request.user, patient_id)
    return Response({'ok': True, 'data': row})
