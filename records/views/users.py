"""
Account endpoints: profile, listing, approval and Admin-only Doctor creation.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.auth_views import user_payload
from records.permissions import CanManageUsers, IsAdminRole, user_scope
from records.serializers.auth import DoctorCreateSerializer, ProfileSerializer
from records.services import workflow
from records.services.store import get_store


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def my_profile(request):
    """Own profile; reachable before approval so the client can show status."""
    store = get_store()
    if request.method == 'GET':
        return Response({'ok': True, 'data': store.get('users', request.user.id)})
    s = ProfileSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    row = workflow.update_profile(request.user, request.user.id, s.validated_data)
    return Response({'ok': True, 'data': row})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def update_user_profile(request, user_id: int):
    s = ProfileSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    row = workflow.update_profile(request.user, user_id, s.validated_data)
    return Response({'ok': True, 'data': row})


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanManageUsers])
def list_users(request):
    filters = dict(user_scope(request.user) or {})
    role = request.query_params.get('role')
    if role and 'role' not in filters:
        filters['role'] = role
    pending = request.query_params.get('pending')
    if pending in ('1', 'true'):
        filters['is_approved'] = False
    rows = get_store().select('users', filters, limit=500)
    return Response({'ok': True, 'data': rows})


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManageUsers])
def approve_user(request, user_id: int):
    return Response({'ok': True, 'data': workflow.approve_user(request.user, user_id)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def create_doctor(request):
    s = DoctorCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = workflow.create_doctor_account(request.user, s.validated_data)
    return Response({'ok': True, 'user': user_payload(user)}, status=201)
