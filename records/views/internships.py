"""
Internship period endpoints.

Students log their rotations and walk them to ``completed``; the
assigned Supervisor (or any Doctor/Admin) signs completed periods off.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.permissions import IsApprovedUser, internship_scope
from records.serializers.internship import (
    InternshipListQuerySerializer,
    InternshipSerializer,
    InternshipStatusSerializer,
)
from records.services import workflow
from records.services.store import get_store


def _progress(row):
    required = row.get('total_required_hours') or 0
    pct = round(100 * row.get('hours_completed', 0) / required) if required else 0
    return dict(row, progress=min(100, pct))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def list_internships(request):
    q = InternshipListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = dict(q.validated_data)
    limit = vd.pop('limit', None) or 200
    filters = dict(vd, **internship_scope(request.user))
    rows = get_store().select('internships', filters, limit=limit)
    return Response({'ok': True, 'data': [_progress(r) for r in rows]})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def create_internship(request):
    s = InternshipSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    row = workflow.create_internship(request.user, s.validated_data)
    return Response({'ok': True, 'data': _progress(row)}, status=201)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def update_internship(request, internship_id: int):
    s = InternshipSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    row = workflow.update_internship(request.user, internship_id, s.validated_data)
    return Response({'ok': True, 'data': _progress(row)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def internship_status(request, internship_id: int):
    s = InternshipStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    row = workflow.set_internship_status(request.user, internship_id, s.validated_data['status'])
    return Response({'ok': True, 'data': _progress(row)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def approve_internship(request, internship_id: int):
    return Response({'ok': True, 'data': _progress(workflow.approve_internship(request.user, internship_id))})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsApprovedUser])
def delete_internship(request, internship_id: int):
    workflow.delete_internship(request.user, internship_id)
    return Response({'ok': True})
