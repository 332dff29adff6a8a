"""
Appointment endpoints: book, move, progress and staff a chair slot.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.permissions import IsApprovedUser, appointment_scope
from records.serializers.appointment import (
    AppointmentCreateSerializer,
    AppointmentListQuerySerializer,
    AppointmentRescheduleSerializer,
    AppointmentStatusSerializer,
    AppointmentSupervisorSerializer,
)
from records.services import workflow
from records.services.store import get_store


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def list_appointments(request):
    q = AppointmentListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = dict(q.validated_data)
    limit = vd.pop('limit', None) or 200
    start, end = vd.pop('start', None), vd.pop('end', None)
    if start:
        vd['start_time__gte'] = start
    if end:
        vd['start_time__lte'] = end
    filters = dict(vd, **appointment_scope(request.user))
    rows = get_store().select('appointments', filters, limit=limit)
    return Response({'ok': True, 'data': rows})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def schedule_appointment(request, patient_id: int):
    s = AppointmentCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    row = workflow.schedule_appointment(request.user, patient_id, s.validated_data)
    return Response({'ok': True, 'data': row}, status=201)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def reschedule_appointment(request, appointment_id: int):
    s = AppointmentRescheduleSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    row = workflow.reschedule_appointment(
        request.user, appointment_id, s.validated_data['start_time'], s.validated_data['end_time'],
    )
    return Response({'ok': True, 'data': row})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def appointment_status(request, appointment_id: int):
    s = AppointmentStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    row = workflow.set_appointment_status(request.user, appointment_id, s.validated_data['status'])
    return Response({'ok': True, 'data': row})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def appointment_supervisor(request, appointment_id: int):
    s = AppointmentSupervisorSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    row = workflow.assign_appointment_supervisor(request.user, appointment_id, s.validated_data['supervisor_id'])
    return Response({'ok': True, 'data': row})
