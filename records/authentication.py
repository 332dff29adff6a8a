"""
Token authentication with expiry.

Login tokens (``Authorization: Token <key>``) stop working
``AUTH_TOKEN_TTL_HOURS`` after they were issued; the expired key is
deleted so the next login issues a fresh one.  JWT access tokens are
handled by simplejwt and carry their own lifetime.
"""
from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone
from rest_framework import authentication, exceptions

logger = logging.getLogger(__name__)


class TokenAuthentication(authentication.TokenAuthentication):
    keyword = 'Token'

    def authenticate_credentials(self, key):
        user, token = super().authenticate_credentials(key)
        ttl = getattr(settings, 'AUTH_TOKEN_TTL_HOURS', 0)
        if ttl and token.created < timezone.now() - timedelta(hours=ttl):
            logger.info("Expired login token for user %s", user.pk)
            token.delete()
            raise exceptions.AuthenticationFailed('Token has expired.')
        return user, token
