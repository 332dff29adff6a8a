"""
Authentication views: login, signup and JWT refresh/logout.

Kept apart from the authentication class (see ``records.authentication``)
to avoid circular imports when Django REST framework initialises
authentication classes.
"""
from __future__ import annotations

import logging

from django.contrib.auth import authenticate, login, logout
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenRefreshView
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import SimpleRateThrottle

from records.serializers.auth import LoginSerializer, SignupSerializer
from records.services.audit import log_action
from records.services.workflow import register_user

from .models import User

logger = logging.getLogger(__name__)


class LoginRateThrottle(SimpleRateThrottle):
    """Per-IP limit on login attempts."""
    scope = 'login'

    def get_cache_key(self, request, view):
        return self.cache_format % {'scope': self.scope, 'ident': self.get_ident(request)}


class SignupRateThrottle(LoginRateThrottle):
    scope = 'signup'


def user_payload(user: User) -> dict:
    return {
        'id': user.id,
        'username': user.username,
        'name': user.get_full_name() or user.username,
        'role': user.role,
        'isApproved': user.is_approved,
    }


# ---------------------------------------------------------------------
# Username/password login (no role bypass)
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def login_view(request):
    """
    Login with username/password.  Unapproved accounts may sign in but
    ``isApproved`` tells the client to show the waiting screen.
    """
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    username = s.validated_data['username']
    password = s.validated_data['password']

    user = authenticate(request, username=username, password=password)
    if not user:
        logger.info("Failed login for %s", username)
        log_action(user=None, action='login', object_type='user', object_id=None,
                   detail={'result': 'fail', 'username': username, 'ip': request.META.get('REMOTE_ADDR')})
        return Response({'ok': False, 'error': {'code': 'invalid_credentials',
                                                'message': 'invalid username or password'}}, status=400)

    log_action(user=user, action='login', object_type='user', object_id=user.id,
               detail={'result': 'ok', 'ip': request.META.get('REMOTE_ADDR')})
    # session cookie authenticates the dashboard websocket
    login(request._request, user)

    token_obj, _ = Token.objects.get_or_create(user=user)
    refresh = RefreshToken.for_user(user)
    return Response({
        'ok': True,
        'token': token_obj.key,
        'jwt_access': str(refresh.access_token),
        'jwt_refresh': str(refresh),
        'role': user.role,
        'user': user_payload(user),
    }, status=200)


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([SignupRateThrottle])
def signup_view(request):
    """Self-service registration for students and supervisors."""
    s = SignupSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    user = register_user(s.validated_data)
    return Response({'ok': True, 'user': user_payload(user)}, status=201)


# ---------------------------------------------------------------------
# JWT: refresh & logout
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Return a new access token from refresh token."""
    view = TokenRefreshView.as_view()
    resp = view(request._request)
    data = dict(resp.data)
    if 'access' in data and 'jwt_access' not in data:
        data['jwt_access'] = data.pop('access')
    return Response(data, status=resp.status_code)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def jwt_logout_view(request):
    """Blacklist current user's refresh tokens (all or a given one)."""
    refresh = request.data.get('refresh')
    count = 0
    if refresh:
        try:
            RefreshToken(refresh).blacklist()
            count = 1
        except TokenError as e:
            return Response({'ok': False, 'error': {'code': 'invalid_token', 'message': str(e)}}, status=400)
    else:
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    Token.objects.filter(user=request.user).delete()
    logout(request._request)
    return Response({'ok': True, 'blacklisted': count})
