import bleach
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import serializers

from records.models import User


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField()
    password = serializers.CharField()

    def validate_username(self, v):
        v = (v or '').strip()
        if not v:
            raise serializers.ValidationError('username is required')
        return v

    def validate_password(self, v):
        if not v:
            raise serializers.ValidationError('password is required')
        return v


class ProfileSerializer(serializers.Serializer):
    firstName = serializers.CharField(source='first_name', required=False, allow_blank=True, max_length=150)
    lastName = serializers.CharField(source='last_name', required=False, allow_blank=True, max_length=150)
    email = serializers.EmailField(required=False, allow_blank=True)
    mobile = serializers.CharField(required=False, allow_blank=True, max_length=32)
    university = serializers.CharField(required=False, allow_blank=True, max_length=255)
    city = serializers.CharField(required=False, allow_blank=True, max_length=128)
    classYear = serializers.CharField(source='class_year', required=False, allow_blank=True, max_length=32)
    workingDays = serializers.ListField(
        source='working_days', child=serializers.CharField(max_length=16), required=False, allow_empty=True,
    )

    def validate(self, attrs):
        for key, value in list(attrs.items()):
            if isinstance(value, str):
                attrs[key] = bleach.clean(value.strip(), strip=True)
        return attrs


class AccountCreateSerializer(ProfileSerializer):
    username = serializers.CharField(max_length=150)
    password = serializers.CharField(write_only=True)

    def validate_username(self, v):
        v = (v or '').strip()
        if User.objects.filter(username=v).exists():
            raise serializers.ValidationError('username already taken')
        return v

    def validate_password(self, v):
        try:
            validate_password(v)
        except DjangoValidationError as e:
            raise serializers.ValidationError(e.messages)
        return v

    def validate(self, attrs):
        password = attrs.pop('password', None)
        attrs = super().validate(attrs)
        attrs['password'] = password
        return attrs


class SignupSerializer(AccountCreateSerializer):
    role = serializers.ChoiceField(choices=['student', 'supervisor'], required=False, default='student')


class DoctorCreateSerializer(AccountCreateSerializer):
    pass
