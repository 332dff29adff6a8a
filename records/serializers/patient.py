import bleach
from rest_framework import serializers


def _clean(v):
    return bleach.clean((v or '').strip(), strip=True)


class PatientCreateSerializer(serializers.Serializer):
    firstName = serializers.CharField(source='first_name', max_length=128)
    lastName = serializers.CharField(source='last_name', max_length=128)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(required=False, allow_blank=True, max_length=32)
    dateOfBirth = serializers.DateField(source='date_of_birth', required=False, allow_null=True)
    address = serializers.CharField(required=False, allow_blank=True, max_length=1000)
    emergencyContact = serializers.CharField(source='emergency_contact', required=False, allow_blank=True, max_length=255)
    emergencyPhone = serializers.CharField(source='emergency_phone', required=False, allow_blank=True, max_length=32)
    medicalHistory = serializers.CharField(source='medical_history', required=False, allow_blank=True, max_length=5000)
    allergies = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=5000)
    lastVisit = serializers.DateField(source='last_visit', required=False, allow_null=True)

    def validate_firstName(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('first name is required')
        return v

    def validate_lastName(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('last name is required')
        return v

    def validate(self, attrs):
        for key in ('phone', 'address', 'emergency_contact', 'emergency_phone',
                    'medical_history', 'allergies', 'notes'):
            if key in attrs:
                attrs[key] = _clean(attrs[key])
        return attrs


class PatientListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=['pending', 'approved', 'rejected'], required=False)
    q = serializers.CharField(max_length=64, required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=500)
