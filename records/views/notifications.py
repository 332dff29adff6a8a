"""
Notification center endpoints for the signed-in user.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from records.services import notifications


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_notifications(request):
    only_unread = request.query_params.get('unread') in ('1', 'true')
    try:
        limit = min(200, max(1, int(request.query_params.get('limit') or 50)))
    except ValueError:
        limit = 50
    rows = notifications.list_for_user(request.user, limit=limit, only_unread=only_unread)
    return Response({'ok': True, 'data': rows, 'unreadCount': notifications.unread_count(request.user)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def unread_count(request):
    return Response({'ok': True, 'unreadCount': notifications.unread_count(request.user)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def mark_read(request, notification_id: int):
    row = notifications.mark_read(request.user, notification_id)
    return Response({'ok': True, 'data': row})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def mark_all_read(request):
    changed = notifications.mark_all_read(request.user)
    return Response({'ok': True, 'updated': changed, 'unreadCount': notifications.unread_count(request.user)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def delete_notification(request, notification_id: int):
    notifications.delete_notification(request.user, notification_id)
    return Response({'ok': True})
