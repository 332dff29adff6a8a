"""
Treatment endpoints: propose, decide, advance clinical status.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.permissions import IsApprovedUser, treatment_scope
from records.serializers.treatment import (
    TreatmentCreateSerializer,
    TreatmentListQuerySerializer,
    TreatmentStatusSerializer,
    TreatmentSupervisorSerializer,
)
from records.services import workflow
from records.services.store import get_store


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def list_treatments(request):
    q = TreatmentListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = dict(q.validated_data)
    limit = vd.pop('limit', None) or 200
    # scope wins over any conflicting query filter
    filters = dict(vd, **treatment_scope(request.user))
    rows = get_store().select('treatments', filters, limit=limit)
    return Response({'ok': True, 'data': rows})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def propose_treatment(request, patient_id: int):
    s = TreatmentCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    row = workflow.propose_treatment(request.user, patient_id, s.validated_data)
    return Response({'ok': True, 'data': row}, status=201)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def approve_treatment(request, treatment_id: int):
    return Response({'ok': True, 'data': workflow.approve_treatment(request.user, treatment_id)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def reject_treatment(request, treatment_id: int):
    return Response({'ok': True, 'data': workflow.reject_treatment(request.user, treatment_id)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def treatment_status(request, treatment_id: int):
    """Move clinical status forward; approval status is left as is."""
    s = TreatmentStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    row = workflow.set_treatment_status(request.user, treatment_id, s.validated_data['status'])
    return Response({'ok': True, 'data': row})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def treatment_supervisor(request, treatment_id: int):
    s = TreatmentSupervisorSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    row = workflow.assign_supervisor(request.user, treatment_id, s.validated_data['supervisor_id'])
    return Response({'ok': True, 'data': row})
